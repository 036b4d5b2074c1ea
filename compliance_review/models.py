"""Data classes for the review pipeline."""

import re
from dataclasses import dataclass, field
from typing import Optional

from .config import DEFAULT_MIN_CONFIDENCE

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------
CRITICAL = "CRITICAL"
HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

SEVERITIES = (CRITICAL, HIGH, MEDIUM, LOW)    # most severe first
SEVERITY_WEIGHTS = {CRITICAL: 10, HIGH: 7, MEDIUM: 4, LOW: 2}

MISSING_CLAUSE = "MissingClause"
PROHIBITED_LANGUAGE = "ProhibitedLanguage"
RULE_KINDS = (MISSING_CLAUSE, PROHIBITED_LANGUAGE)

ALTERNATIVE_LANGUAGE = "alternative_language"
FAR_REQUIREMENT = "far_requirement"
POLICY = "policy"
CONTRACT_TEMPLATE = "contract_template"


def severity_rank(severity: str) -> int:
    """0 for CRITICAL up to 3 for LOW."""
    return SEVERITIES.index(severity)


def category_matches(chunk_category: str, wanted: str) -> bool:
    """Loose category match: either name contains the other, case-insensitively."""
    a, b = chunk_category.lower(), wanted.lower()
    return bool(a) and bool(b) and (a in b or b in a)


@dataclass(frozen=True)
class PolicyRule:
    rule_id: str
    pattern: re.Pattern
    kind: str                  # MISSING_CLAUSE or PROHIBITED_LANGUAGE
    severity: str
    description: str
    template: str = ""         # suggested replacement language
    category: str = ""         # policy category, scopes retrieval
    source: str = ""           # "FAR" or "POLICY"
    references: tuple[str, ...] = ()

    @property
    def is_missing_clause_rule(self) -> bool:
        return self.kind == MISSING_CLAUSE


@dataclass(frozen=True)
class KnowledgeChunk:
    chunk_id: str
    document_id: str
    text: str
    chunk_type: str
    category: str = ""
    approved: bool = False
    title: str = ""
    reference: str = ""                  # FAR section or policy citation, if any
    similarity: Optional[float] = None   # set on query results only


@dataclass(frozen=True)
class Finding:
    finding_id: str
    kind: str
    severity: str
    rule_id: str
    description: str
    confidence: float
    is_missing_clause: bool
    category: str = ""
    start: Optional[int] = None
    end: Optional[int] = None
    problematic_text: Optional[str] = None
    citation: Optional[str] = None
    suggested_alternative: Optional[str] = None
    alternative_ids: tuple[str, ...] = ()
    policy_reference: Optional[str] = None   # best FAR requirement / policy hit

    def __post_init__(self):
        if self.kind not in RULE_KINDS:
            raise ValueError(f"Unknown finding kind: {self.kind!r}")
        if self.severity not in SEVERITY_WEIGHTS:
            raise ValueError(f"Unknown severity: {self.severity!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence out of range: {self.confidence}")
        if self.is_missing_clause:
            if self.start is not None or self.end is not None or self.problematic_text is not None:
                raise ValueError(f"{self.finding_id}: a missing clause has no text span")
        else:
            if self.start is None or self.end is None:
                raise ValueError(f"{self.finding_id}: a text finding needs a span")
            if not 0 <= self.start < self.end:
                raise ValueError(f"{self.finding_id}: invalid span [{self.start}, {self.end})")

    def span_fits(self, text: str) -> bool:
        """True if this finding's span (if any) addresses ``text`` exactly."""
        if self.is_missing_clause:
            return True
        return self.end <= len(text) and text[self.start:self.end] == self.problematic_text


@dataclass(frozen=True)
class AnalysisOptions:
    check_missing_clauses: bool = True
    check_prohibited_language: bool = True
    include_alternatives: bool = False
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    alternatives_per_finding: int = 3
    timeout: Optional[float] = None      # overall retrieval deadline, seconds


@dataclass(frozen=True)
class ComplianceReport:
    findings: tuple[Finding, ...]
    overall_risk: str
    risk_score: float
    compliance_score: int
    alternatives: dict[str, tuple[KnowledgeChunk, ...]] = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    narrative: str = ""

    @property
    def missing_clauses(self) -> list[Finding]:
        return [f for f in self.findings if f.is_missing_clause]

    @property
    def prohibited_language(self) -> list[Finding]:
        return [f for f in self.findings if not f.is_missing_clause]
