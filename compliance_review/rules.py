"""Rule engine: missing required clauses and prohibited language."""

import logging
from typing import Sequence

from .config import LEXICAL_WEIGHT, MISSING_CLAUSE_CONFIDENCE, PROHIBITED_CONFIDENCE_BAND
from .models import (
    MISSING_CLAUSE, PROHIBITED_LANGUAGE, Finding, KnowledgeChunk, PolicyRule,
)
from .term_weighting import TermWeightingModel

logger = logging.getLogger(__name__)

# Matches of this many words or more get the top of the confidence band.
_FULL_CONFIDENCE_WORDS = 4


class RuleEngine:
    """Evaluates contract text against the two rule tables.

    Both passes are pure and synchronous. Findings come out in table order:
    every missing-clause rule first, then every prohibited-language rule, and
    within one rule its matches in text order.
    """

    def __init__(
        self,
        rules: Sequence[PolicyRule],
        term_model: TermWeightingModel | None = None,
        missing_clause_confidence: float = MISSING_CLAUSE_CONFIDENCE,
        confidence_band: tuple[float, float] = PROHIBITED_CONFIDENCE_BAND,
    ):
        self.missing_clause_rules = [r for r in rules if r.kind == MISSING_CLAUSE]
        self.prohibited_language_rules = [r for r in rules if r.kind == PROHIBITED_LANGUAGE]
        self.term_model = term_model
        self.missing_clause_confidence = missing_clause_confidence
        self.confidence_band = confidence_band

    @property
    def rule_count(self) -> int:
        return len(self.missing_clause_rules) + len(self.prohibited_language_rules)

    def detect(
        self,
        contract_text: str,
        check_missing_clauses: bool = True,
        check_prohibited_language: bool = True,
    ) -> list[Finding]:
        if not isinstance(contract_text, str):
            raise TypeError(f"contract_text must be str, got {type(contract_text).__name__}")

        findings: list[Finding] = []
        if check_missing_clauses:
            findings.extend(self._missing_clause_pass(contract_text))
        if check_prohibited_language:
            findings.extend(self._prohibited_language_pass(contract_text))
        logger.debug("Rule engine produced %d raw findings", len(findings))
        return findings

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _missing_clause_pass(self, text: str) -> list[Finding]:
        findings = []
        for rule in self.missing_clause_rules:
            if rule.pattern.search(text):
                continue
            findings.append(Finding(
                finding_id=f"{rule.rule_id}-missing",
                kind=MISSING_CLAUSE,
                severity=rule.severity,
                rule_id=rule.rule_id,
                description=rule.description,
                confidence=self.missing_clause_confidence,
                is_missing_clause=True,
                category=rule.category,
                citation=rule.rule_id,
                suggested_alternative=rule.template or None,
            ))
        return findings

    def _prohibited_language_pass(self, text: str) -> list[Finding]:
        findings = []
        for rule in self.prohibited_language_rules:
            for m in rule.pattern.finditer(text):
                start, end = m.span()
                if start == end:
                    continue
                matched = m.group(0)
                findings.append(Finding(
                    finding_id=f"{rule.rule_id}@{start}",
                    kind=PROHIBITED_LANGUAGE,
                    severity=rule.severity,
                    rule_id=rule.rule_id,
                    description=rule.description,
                    confidence=self.match_confidence(matched),
                    is_missing_clause=False,
                    category=rule.category,
                    start=start,
                    end=end,
                    problematic_text=matched,
                    citation=rule.rule_id,
                    suggested_alternative=rule.template or None,
                ))
        return findings

    def match_confidence(self, matched_text: str) -> float:
        """Deterministic confidence inside the band; longer phrases are more specific."""
        low, high = self.confidence_band
        words = min(len(matched_text.split()), _FULL_CONFIDENCE_WORDS)
        return round(low + (high - low) * words / _FULL_CONFIDENCE_WORDS, 4)

    # ------------------------------------------------------------------
    # Alternative ranking
    # ------------------------------------------------------------------

    def rank_alternatives(
        self,
        rule: PolicyRule,
        chunks: Sequence[KnowledgeChunk],
    ) -> list[KnowledgeChunk]:
        """Order candidate chunks for a rule, best first.

        Blends each chunk's semantic similarity with its lexical similarity to
        the rule's description and template. Without a term model the semantic
        score alone decides.
        """
        if not chunks:
            return []
        if self.term_model is None:
            return sorted(chunks, key=lambda c: -(c.similarity or 0.0))

        rule_text = f"{rule.description} {rule.template}"

        def blended(chunk: KnowledgeChunk) -> float:
            lexical = self.term_model.similarity(chunk.text, rule_text)
            return (1 - LEXICAL_WEIGHT) * (chunk.similarity or 0.0) + LEXICAL_WEIGHT * lexical

        return sorted(chunks, key=lambda c: -blended(c))
