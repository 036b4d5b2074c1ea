"""Rulebook loading: policy rule tables, reference corpus, approved alternatives.

The rulebook is configuration data. Three sources are supported:

* a JSON rulebook (``rules`` keyed by rule id, ``reference_corpus``,
  ``alternatives``), the default shipped in ``compliance_review/data``;
* a FAR matrix workbook (.xlsx), converted row by row into rules;
* the institution's Ts&Cs matrix workbook, one rule per category sheet.

Every problem found while loading raises :class:`RulebookError`. Nothing is
skipped silently: a rule that fails to load would turn into a false negative.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import RulebookError
from .models import (
    ALTERNATIVE_LANGUAGE, CRITICAL, HIGH, MEDIUM, MISSING_CLAUSE,
    PROHIBITED_LANGUAGE, RULE_KINDS, SEVERITY_WEIGHTS,
    KnowledgeChunk, PolicyRule,
)

logger = logging.getLogger(__name__)

_REQUIRED_RULE_FIELDS = ("kind", "pattern", "severity", "description")


@dataclass(frozen=True)
class Rulebook:
    rules: tuple[PolicyRule, ...]
    reference_corpus: tuple[str, ...] = ()
    alternatives: tuple[KnowledgeChunk, ...] = ()
    version: str = ""

    @property
    def missing_clause_rules(self) -> list[PolicyRule]:
        return [r for r in self.rules if r.kind == MISSING_CLAUSE]

    @property
    def prohibited_language_rules(self) -> list[PolicyRule]:
        return [r for r in self.rules if r.kind == PROHIBITED_LANGUAGE]

    def get(self, rule_id: str) -> PolicyRule | None:
        return next((r for r in self.rules if r.rule_id == rule_id), None)

    def corpus(self) -> list[str]:
        """Reference corpus for the term-weighting model.

        Workbook rulebooks ship no corpus; their rule texts stand in for it.
        """
        if self.reference_corpus:
            return list(self.reference_corpus)
        return [f"{r.description} {r.template}".strip() for r in self.rules]


# ---------------------------------------------------------------------------
# Pattern compilation
# ---------------------------------------------------------------------------

def compile_pattern(rule_id: str, pattern: str) -> re.Pattern:
    """Compile a rule pattern case-insensitively, rejecting unusable ones."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise RulebookError(f"Rule {rule_id}: pattern is empty")
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise RulebookError(f"Rule {rule_id}: malformed pattern {pattern!r}: {e}") from e
    if compiled.fullmatch(""):
        raise RulebookError(f"Rule {rule_id}: pattern {pattern!r} matches empty text")
    return compiled


def build_rule(rule_id: str, entry: dict) -> PolicyRule:
    """Validate one rule table entry and turn it into a PolicyRule."""
    if not isinstance(entry, dict):
        raise RulebookError(f"Rule {rule_id}: expected an object, got {type(entry).__name__}")
    missing = [f for f in _REQUIRED_RULE_FIELDS if not entry.get(f)]
    if missing:
        raise RulebookError(f"Rule {rule_id}: missing field(s) {', '.join(missing)}")

    kind = entry["kind"]
    if kind not in RULE_KINDS:
        raise RulebookError(f"Rule {rule_id}: unknown kind {kind!r} (expected one of {RULE_KINDS})")
    severity = str(entry["severity"]).upper()
    if severity not in SEVERITY_WEIGHTS:
        raise RulebookError(f"Rule {rule_id}: unknown severity {entry['severity']!r}")

    references = entry.get("references") or []
    if isinstance(references, str):
        references = [references]

    return PolicyRule(
        rule_id=rule_id,
        pattern=compile_pattern(rule_id, entry["pattern"]),
        kind=kind,
        severity=severity,
        description=entry["description"],
        template=entry.get("template") or "",
        category=entry.get("category") or "",
        source=entry.get("source") or "",
        references=tuple(str(r) for r in references),
    )


# ---------------------------------------------------------------------------
# JSON rulebook
# ---------------------------------------------------------------------------

def _build_alternatives(entries: list) -> tuple[KnowledgeChunk, ...]:
    alternatives = []
    for n, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict) or not (entry.get("text") or "").strip():
            raise RulebookError(f"Alternative #{n}: needs a non-empty 'text'")
        alt_id = entry.get("id") or f"alt_{n}"
        alternatives.append(KnowledgeChunk(
            chunk_id=alt_id,
            document_id=entry.get("document_id") or "rulebook",
            text=entry["text"].strip(),
            chunk_type=entry.get("chunk_type") or ALTERNATIVE_LANGUAGE,
            category=entry.get("category") or "",
            approved=bool(entry.get("approved", True)),
            title=entry.get("title") or "",
            reference=entry.get("reference") or "",
        ))
    return tuple(alternatives)


def parse_rulebook(data: dict) -> Rulebook:
    """Build a Rulebook from already-decoded JSON data."""
    if not isinstance(data, dict):
        raise RulebookError("Rulebook must be a JSON object")

    table = data.get("rules")
    if not isinstance(table, dict) or not table:
        raise RulebookError("Rulebook has no 'rules' table (expected a mapping of rule id -> rule)")
    rules = tuple(build_rule(rule_id, entry) for rule_id, entry in table.items())

    corpus = data.get("reference_corpus", [])
    if not isinstance(corpus, list) or not all(isinstance(d, str) and d.strip() for d in corpus):
        raise RulebookError("'reference_corpus' must be a list of non-empty strings")

    alternatives = data.get("alternatives", [])
    if not isinstance(alternatives, list):
        raise RulebookError("'alternatives' must be a list")

    return Rulebook(
        rules=rules,
        reference_corpus=tuple(d.strip() for d in corpus),
        alternatives=_build_alternatives(alternatives),
        version=str(data.get("version", "")),
    )


def load_rulebook(path: Path) -> Rulebook:
    """Load a rulebook from a .json file, a FAR matrix workbook or a Ts&Cs matrix workbook."""
    path = Path(path)
    if not path.exists():
        raise RulebookError(f"Rulebook not found: {path}")
    if path.suffix.lower() in (".xlsx", ".xlsm"):
        if _is_tnc_matrix(path):
            return load_tnc_xlsx(path)
        return load_rulebook_xlsx(path)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RulebookError(f"Rulebook {path.name} is not valid JSON: {e}") from e

    rulebook = parse_rulebook(data)
    logger.info(
        "Loaded %d rules (%d missing-clause, %d prohibited-language) from %s",
        len(rulebook.rules), len(rulebook.missing_clause_rules),
        len(rulebook.prohibited_language_rules), path.name,
    )
    return rulebook


# ---------------------------------------------------------------------------
# FAR matrix workbook
# ---------------------------------------------------------------------------

def _phrase_pattern(phrase: str) -> str:
    """Escape a literal phrase, letting any whitespace run match any other."""
    words = phrase.split()
    return r"\s+".join(re.escape(w) for w in words)


def _far_severity(status: str, criteria: str) -> str:
    low = criteria.lower()
    if status == "REMOVE":
        return HIGH
    if "critical" in low:
        return CRITICAL
    if "required" in low:
        return HIGH
    return MEDIUM


def load_rulebook_xlsx(path: Path) -> Rulebook:
    """
    Parse a FAR matrix workbook.
    One sheet per policy category; columns Clause / Title / Acceptance Status /
    Acceptance Criteria / Request to Sponsor. Clauses the institution wants
    removed become prohibited-language rules; clauses it requires become
    missing-clause rules. Rows marked OK carry no rule.
    """
    import openpyxl

    try:
        wb = openpyxl.load_workbook(str(path), read_only=True)
    except Exception as e:
        raise RulebookError(f"Cannot open rulebook workbook {path.name}: {e}") from e

    table: dict[str, dict] = {}

    for sheet_name in wb.sheetnames:
        if "definition" in sheet_name.lower():
            continue
        ws = wb[sheet_name]
        rows = list(ws.iter_rows(values_only=True))
        if len(rows) < 2:
            continue

        header = [str(c).lower().strip() if c else "" for c in rows[0]]

        def find_col(*keywords):
            for i, h in enumerate(header):
                if any(kw in h for kw in keywords):
                    return i
            return None

        col_clause = find_col("clause")
        col_title = find_col("title")
        col_status = find_col("acceptance status")
        col_criteria = find_col("acceptance criteria", "notes")
        col_request = find_col("request to sponsor")

        if col_clause is None or col_status is None:
            logger.info("Sheet %r has no Clause/Acceptance Status columns, skipped", sheet_name)
            continue

        for row in rows[1:]:
            def cell(idx):
                if idx is None or idx >= len(row):
                    return ""
                return str(row[idx]).strip() if row[idx] else ""

            clause = cell(col_clause)
            if not clause or clause.upper().startswith("OLD") or clause.upper() == "KEY:":
                continue
            status = cell(col_status).upper()
            if not status or status == "OK":
                continue

            title = cell(col_title)
            criteria = cell(col_criteria)
            request = cell(col_request)
            severity = _far_severity(status, criteria)

            alternatives = [_phrase_pattern(clause)]
            if title:
                alternatives.append(_phrase_pattern(title))
            pattern = "|".join(f"(?:{p})" for p in alternatives)

            if status == "REMOVE":
                kind = PROHIBITED_LANGUAGE
                description = f"FAR {clause} {title}".strip() + ": must be removed"
            elif severity in (CRITICAL, HIGH):
                kind = MISSING_CLAUSE
                description = f"FAR {clause} {title}".strip() + ": required clause missing"
            else:
                continue

            rule_id = f"FAR-{sheet_name}-{clause}"
            if rule_id in table:
                raise RulebookError(f"Duplicate rule {rule_id} in workbook {path.name}")
            table[rule_id] = {
                "kind": kind,
                "pattern": pattern,
                "severity": severity,
                "description": description,
                "template": request or criteria,
                "category": sheet_name,
                "source": "FAR",
                "references": [clause, title] if title else [clause],
            }

    wb.close()

    if not table:
        raise RulebookError(f"Workbook {path.name} produced no rules")
    rulebook = parse_rulebook({"rules": table, "version": path.stem})
    logger.info("Loaded %d rules from workbook %s", len(rulebook.rules), path.name)
    return rulebook


# ---------------------------------------------------------------------------
# Ts&Cs matrix workbook
# ---------------------------------------------------------------------------

_HIGH_RISK_CATEGORIES = ("dispute", "termination", "indemnif")
_CRITICAL_PREFERRED_TERMS = ("shall not", "prohibited")


def _tnc_severity(category: str, preferred: str) -> str:
    if any(term in preferred.lower() for term in _CRITICAL_PREFERRED_TERMS):
        return CRITICAL
    if any(term in category.lower() for term in _HIGH_RISK_CATEGORIES):
        return HIGH
    return MEDIUM


def _is_tnc_matrix(path: Path) -> bool:
    """True when some sheet carries a "Preferred Language" block in its first column."""
    import openpyxl

    try:
        wb = openpyxl.load_workbook(str(path), read_only=True)
    except Exception as e:
        raise RulebookError(f"Cannot open rulebook workbook {path.name}: {e}") from e
    try:
        for ws in wb.worksheets:
            for row in ws.iter_rows(max_col=1, values_only=True):
                if row and row[0] and "preferred language" in str(row[0]).lower():
                    return True
        return False
    finally:
        wb.close()


def load_tnc_xlsx(path: Path) -> Rulebook:
    """
    Parse the institution's Ts&Cs matrix.
    One sheet per category. The cell under "<Institution>'s Preferred Language"
    holds the wording the institution wants; the table headed
    Common Problems / Why / Response lists phrases it will not accept and how
    to answer them. Each category becomes one prohibited-language rule whose
    template is the preferred language; the responses become approved
    alternatives for that category.
    """
    import openpyxl

    try:
        wb = openpyxl.load_workbook(str(path), read_only=True)
    except Exception as e:
        raise RulebookError(f"Cannot open rulebook workbook {path.name}: {e}") from e

    table: dict[str, dict] = {}
    corpus: list[str] = []
    alternatives: list[dict] = []

    for sheet_name in wb.sheetnames:
        if "definition" in sheet_name.lower():
            continue
        category = sheet_name.strip()
        rows = list(wb[sheet_name].iter_rows(values_only=True))

        def cell(row, idx):
            if idx is None or idx >= len(row):
                return ""
            return str(row[idx]).strip() if row[idx] else ""

        preferred = ""
        problems: list[str] = []
        responses: list[str] = []
        for i, row in enumerate(rows):
            first = cell(row, 0)
            if "preferred language" in first.lower():
                if i + 1 < len(rows):
                    preferred = cell(rows[i + 1], 0)
                continue
            if first.lower() != "common problems":
                continue

            header = [str(c).lower().strip() if c else "" for c in row]

            def find_col(*keywords):
                for j, h in enumerate(header):
                    if any(kw in h for kw in keywords):
                        return j
                return None

            col_problem = find_col("common problems")
            col_response = find_col("response", "suggested", "counter")
            if col_response is None and len(header) > 2:
                col_response = 2
            for problem_row in rows[i + 1:]:
                problem = cell(problem_row, col_problem)
                if not problem:
                    continue
                problems.append(problem)
                response = cell(problem_row, col_response)
                if response:
                    responses.append(response)
            break

        if not problems:
            if preferred:
                logger.info("Sheet %r has preferred language but no common problems, skipped", sheet_name)
            continue

        rule_id = f"TNC-{category}"
        if rule_id in table:
            raise RulebookError(f"Duplicate rule {rule_id} in workbook {path.name}")
        table[rule_id] = {
            "kind": PROHIBITED_LANGUAGE,
            "pattern": "|".join(f"(?:{_phrase_pattern(p)})" for p in problems),
            "severity": _tnc_severity(category, preferred),
            "description": f"{category}: terms the institution does not accept",
            "template": preferred,
            "category": category,
            "source": "POLICY",
            "references": [category],
        }
        corpus.extend(t for t in [preferred, *responses] if t)
        alternatives.extend(
            {"id": f"{rule_id}-{n}", "text": text, "category": category,
             "document_id": path.stem, "title": f"{category} response"}
            for n, text in enumerate(responses, start=1)
        )

    wb.close()

    if not table:
        raise RulebookError(f"Workbook {path.name} produced no rules")
    rulebook = parse_rulebook({
        "rules": table,
        "reference_corpus": corpus,
        "alternatives": alternatives,
        "version": path.stem,
    })
    logger.info(
        "Loaded %d rules and %d alternatives from Ts&Cs workbook %s",
        len(rulebook.rules), len(rulebook.alternatives), path.name,
    )
    return rulebook
