"""Compliance aggregator: rule findings + retrieval enrichment -> ComplianceReport.

Detection is synchronous and deterministic. Retrieval of alternative
language and policy references fans out concurrently, one bounded slot
per finding, and only ever adds suggestions: a slow, failing or cancelled
retrieval leaves the findings themselves untouched.
"""

import asyncio
import dataclasses
import logging
import time
from difflib import SequenceMatcher
from typing import Callable, Optional, Sequence

from .config import (
    ALTERNATIVE_MIN_SIMILARITY, DEDUP_PREFIX_CHARS, DEDUP_SEVERITY_PREFIX_CHARS,
    FINDING_PENALTY, RETRIEVAL_CONCURRENCY, RETRIEVAL_TIMEOUT, RISK_SCORE_CAP,
)
from .errors import ContractInputError
from .models import (
    ALTERNATIVE_LANGUAGE, FAR_REQUIREMENT, LOW, POLICY, SEVERITY_WEIGHTS, AnalysisOptions,
    ComplianceReport, Finding, KnowledgeChunk, category_matches, severity_rank,
)
from .retrieval import SemanticRetrievalClient
from .rules import RuleEngine
from .rulebook import Rulebook
from .term_weighting import TermWeightingModel

logger = logging.getLogger(__name__)

DuplicatePredicate = Callable[[Finding, Finding], bool]

# Characters of contract text on either side of a match used as retrieval context.
_QUERY_CONTEXT_CHARS = 200


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------

def _same_place(a: Finding, b: Finding) -> bool:
    """Same kind; the same rule for missing clauses, overlapping spans for text findings."""
    if a.kind != b.kind:
        return False
    if a.is_missing_clause:
        return a.rule_id == b.rule_id
    return a.start < b.end and b.start < a.end


def prefix_duplicates(
    prefix_chars: int = DEDUP_PREFIX_CHARS,
    severity_prefix_chars: int = DEDUP_SEVERITY_PREFIX_CHARS,
) -> DuplicatePredicate:
    """Duplicates share a description prefix, or a shorter prefix plus severity."""

    def is_duplicate(a: Finding, b: Finding) -> bool:
        if not _same_place(a, b):
            return False
        if a.description[:prefix_chars] == b.description[:prefix_chars]:
            return True
        return (a.severity == b.severity
                and a.description[:severity_prefix_chars] == b.description[:severity_prefix_chars])

    return is_duplicate


def exact_duplicates(a: Finding, b: Finding) -> bool:
    return _same_place(a, b) and a.description == b.description


def fuzzy_duplicates(threshold: float = 0.85) -> DuplicatePredicate:
    """Duplicates whose descriptions are at least ``threshold`` similar (difflib ratio)."""

    def is_duplicate(a: Finding, b: Finding) -> bool:
        if not _same_place(a, b):
            return False
        ratio = SequenceMatcher(None, a.description.lower(), b.description.lower()).ratio()
        return ratio >= threshold

    return is_duplicate


def deduplicate(findings: Sequence[Finding], is_duplicate: DuplicatePredicate) -> list[Finding]:
    """Keep the first of each group of duplicates, preserving order."""
    kept: list[Finding] = []
    for f in findings:
        if not any(is_duplicate(k, f) for k in kept):
            kept.append(f)
    return kept


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def risk_score(findings: Sequence[Finding]) -> float:
    total = sum(SEVERITY_WEIGHTS[f.severity] for f in findings)
    return min(RISK_SCORE_CAP, total / 10)


def compliance_score(findings: Sequence[Finding]) -> int:
    return max(0, 100 - FINDING_PENALTY * len(findings))


def overall_risk(findings: Sequence[Finding]) -> str:
    """Tier of the most severe finding; LOW for a clean report."""
    if not findings:
        return LOW
    return min((f.severity for f in findings), key=severity_rank)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class ComplianceAggregator:
    """Runs the rule engine, filters and deduplicates, then enriches with alternatives.

    With a ``retrieval`` client, alternatives come from semantic search.
    Without one, the approved ``lexical_alternatives`` are ranked with the
    term-weighting model instead.
    """

    def __init__(
        self,
        rule_engine: RuleEngine,
        retrieval: Optional[SemanticRetrievalClient] = None,
        lexical_alternatives: Sequence[KnowledgeChunk] = (),
        is_duplicate: Optional[DuplicatePredicate] = None,
        concurrency: int = RETRIEVAL_CONCURRENCY,
        call_timeout: float = RETRIEVAL_TIMEOUT,
        min_alternative_similarity: float = ALTERNATIVE_MIN_SIMILARITY,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.rule_engine = rule_engine
        self.retrieval = retrieval
        self.lexical_alternatives = [c for c in lexical_alternatives if c.approved]
        self.is_duplicate = is_duplicate or prefix_duplicates()
        self.concurrency = concurrency
        self.call_timeout = call_timeout
        self.min_alternative_similarity = min_alternative_similarity
        self._rules = {
            r.rule_id: r
            for r in rule_engine.missing_clause_rules + rule_engine.prohibited_language_rules
        }

    @classmethod
    def from_rulebook(
        cls,
        rulebook: Rulebook,
        retrieval: Optional[SemanticRetrievalClient] = None,
        **kwargs,
    ) -> "ComplianceAggregator":
        term_model = TermWeightingModel(rulebook.corpus())
        engine = RuleEngine(rulebook.rules, term_model=term_model)
        return cls(engine, retrieval, lexical_alternatives=rulebook.alternatives, **kwargs)

    @property
    def term_model(self) -> Optional[TermWeightingModel]:
        return self.rule_engine.term_model

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def analyze_sync(
        self,
        contract_text: str,
        options: Optional[AnalysisOptions] = None,
    ) -> ComplianceReport:
        return asyncio.run(self.analyze(contract_text, options))

    async def analyze(
        self,
        contract_text: str,
        options: Optional[AnalysisOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ComplianceReport:
        """Analyze one contract.

        ``options.timeout`` bounds the whole retrieval phase; setting
        ``cancel_event`` stops it early. Either way the report is still
        returned, with alternatives for whichever lookups had finished.
        """
        if contract_text is None or not isinstance(contract_text, str):
            raise ContractInputError("contract_text must be a string")
        options = options or AnalysisOptions()
        if not 0.0 <= options.min_confidence <= 1.0:
            raise ContractInputError(f"min_confidence out of range: {options.min_confidence}")

        t0 = time.perf_counter()
        raw = self.rule_engine.detect(
            contract_text,
            check_missing_clauses=options.check_missing_clauses,
            check_prohibited_language=options.check_prohibited_language,
        )
        confident = [f for f in raw if f.confidence >= options.min_confidence]
        findings = deduplicate(confident, self.is_duplicate)

        alternatives: dict[str, tuple[KnowledgeChunk, ...]] = {}
        source, status = "none", "not_requested"
        if options.include_alternatives and findings:
            k = max(1, options.alternatives_per_finding)
            if self.retrieval is not None:
                source = "semantic"
                retrieved, references, status = await self._retrieve_all(
                    contract_text, findings, k, options.timeout, cancel_event,
                )
            else:
                source, status = "lexical", "complete"
                retrieved = self._lexical_alternatives(contract_text, findings, k)
                references = {}
            findings, alternatives = self._attach(findings, retrieved, references)

        report = ComplianceReport(
            findings=tuple(findings),
            overall_risk=overall_risk(findings),
            risk_score=risk_score(findings),
            compliance_score=compliance_score(findings),
            alternatives=alternatives,
            metadata={
                "rules_evaluated": self.rule_engine.rule_count,
                "raw_findings": len(raw),
                "below_min_confidence": len(raw) - len(confident),
                "duplicates_removed": len(confident) - len(findings),
                "alternatives_source": source,
                "retrieval_status": status,
                "policy_references": sum(1 for f in findings if f.policy_reference),
                "elapsed_seconds": round(time.perf_counter() - t0, 3),
                "options": dataclasses.asdict(options),
            },
        )
        logger.info(
            "Analysis complete: %d findings, overall risk %s, compliance %d",
            len(findings), report.overall_risk, report.compliance_score,
        )
        return report

    # ------------------------------------------------------------------
    # Retrieval fan-out
    # ------------------------------------------------------------------

    async def _retrieve_all(
        self,
        contract_text: str,
        findings: Sequence[Finding],
        k: int,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[dict[str, list[KnowledgeChunk]], dict[str, KnowledgeChunk], str]:
        sem = asyncio.Semaphore(self.concurrency)

        async def lookups(finding: Finding):
            chunks = await self._alternatives_for(finding, contract_text, k)
            reference = await self._policy_reference_for(finding, contract_text)
            return chunks, reference

        async def one(finding: Finding):
            async with sem:
                try:
                    chunks, reference = await asyncio.wait_for(lookups(finding), self.call_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Retrieval for %s timed out after %.1fs",
                                   finding.finding_id, self.call_timeout)
                    chunks, reference = [], None
            return finding.finding_id, chunks, reference

        tasks = [asyncio.create_task(one(f)) for f in findings]
        all_done = asyncio.gather(*tasks, return_exceptions=True)
        waiters = {all_done}
        stop = None
        if cancel_event is not None:
            stop = asyncio.create_task(cancel_event.wait())
            waiters.add(stop)

        try:
            await asyncio.wait(waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if stop is not None:
                stop.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if stop is not None:
                await asyncio.gather(stop, return_exceptions=True)
            await asyncio.gather(all_done, return_exceptions=True)

        results, references = {}, {}
        for t in tasks:
            if t.cancelled():
                continue
            if t.exception() is not None:
                logger.warning("Retrieval task failed: %s", t.exception())
                continue
            finding_id, chunks, reference = t.result()
            results[finding_id] = chunks
            if reference is not None:
                references[finding_id] = reference

        if pending:
            status = "cancelled" if cancel_event is not None and cancel_event.is_set() else "deadline_exceeded"
            logger.warning("Retrieval stopped (%s); %d of %d lookups unfinished",
                           status, len(pending), len(tasks))
        else:
            status = "complete"
        return results, references, status

    async def _alternatives_for(
        self,
        finding: Finding,
        contract_text: str,
        k: int,
    ) -> list[KnowledgeChunk]:
        chunks = await self.retrieval.retrieve_with_fallback(
            self._query_for(finding, contract_text),
            chunk_type=ALTERNATIVE_LANGUAGE,
            k=k,
            category=finding.category or None,
            approved_only=True,
        )
        rule = self._rules.get(finding.rule_id)
        if rule is not None:
            chunks = self.rule_engine.rank_alternatives(rule, chunks)
        return chunks[:k]

    async def _policy_reference_for(
        self,
        finding: Finding,
        contract_text: str,
    ) -> Optional[KnowledgeChunk]:
        """Closest FAR requirement in the finding's category, else closest institutional policy."""
        query = self._query_for(finding, contract_text)
        for chunk_type in (FAR_REQUIREMENT, POLICY):
            hits = await self.retrieval.retrieve(
                query, chunk_type=chunk_type, k=1, category=finding.category or None,
            )
            if hits:
                return hits[0]
        return None

    def _lexical_alternatives(
        self,
        contract_text: str,
        findings: Sequence[Finding],
        k: int,
    ) -> dict[str, list[KnowledgeChunk]]:
        results: dict[str, list[KnowledgeChunk]] = {}
        if self.term_model is None or not self.lexical_alternatives:
            return results
        for f in findings:
            candidates = [
                c for c in self.lexical_alternatives
                if not f.category or category_matches(c.category, f.category)
            ]
            ranked = self.term_model.rank(self._query_for(f, contract_text), [c.text for c in candidates])
            results[f.finding_id] = [
                dataclasses.replace(candidates[i], similarity=score)
                for i, score in ranked[:k] if score > 0
            ]
        return results

    @staticmethod
    def _query_for(finding: Finding, contract_text: str) -> str:
        if finding.is_missing_clause:
            return f"{finding.description} {finding.suggested_alternative or ''}".strip()
        lo = max(0, finding.start - _QUERY_CONTEXT_CHARS)
        hi = min(len(contract_text), finding.end + _QUERY_CONTEXT_CHARS)
        return contract_text[lo:hi]

    def _attach(
        self,
        findings: Sequence[Finding],
        retrieved: dict[str, list[KnowledgeChunk]],
        references: dict[str, KnowledgeChunk],
    ) -> tuple[list[Finding], dict[str, tuple[KnowledgeChunk, ...]]]:
        enriched, alternatives = [], {}
        for f in findings:
            changes = {}
            reference = references.get(f.finding_id)
            if reference is not None:
                changes["policy_reference"] = reference.reference or reference.title or reference.chunk_id
            chunks = retrieved.get(f.finding_id) or []
            if chunks:
                alternatives[f.finding_id] = tuple(chunks)
                changes["alternative_ids"] = tuple(c.chunk_id for c in chunks)
                best = chunks[0]
                if best.approved and (best.similarity or 0.0) >= self.min_alternative_similarity:
                    changes["suggested_alternative"] = best.text
            enriched.append(dataclasses.replace(f, **changes) if changes else f)
        return enriched, alternatives
