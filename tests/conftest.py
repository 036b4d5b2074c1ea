"""Shared fixtures: rulebooks, sample contracts, and stand-in retrieval backends."""

import asyncio
import re
import zlib

import pytest

from compliance_review.aggregator import ComplianceAggregator
from compliance_review.config import RULEBOOK_PATH
from compliance_review.errors import RetrievalError
from compliance_review.models import ALTERNATIVE_LANGUAGE, KnowledgeChunk
from compliance_review.retrieval import SemanticRetrievalClient
from compliance_review.rulebook import load_rulebook, parse_rulebook
from compliance_review.vector_index import InMemoryVectorIndex

# Satisfies every missing-clause rule in the default rulebook, trips no prohibited one.
CLEAN_CONTRACT = (
    "This Agreement incorporates FAR 52.245-1 Government Property by reference. "
    "Either party may terminate this Agreement for convenience on thirty days written notice. "
    "The parties shall comply with all applicable export control laws. "
    "The University retains the right to publish the results of the research. "
    "Payment terms are NET 30 from receipt of a proper invoice."
)

RISKY_CONTRACT = (
    "SPONSORED RESEARCH AGREEMENT\n"
    "The University shall indemnify and hold harmless the Sponsor against all claims. "
    "Any dispute shall be resolved by binding arbitration. "
    "Payment terms are NET 60 from receipt of invoice."
)


class FakeEmbedder:
    """Deterministic hashed bag-of-words vectors."""

    dim = 64

    def __init__(self):
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        vec = [0.0] * self.dim
        for tok in re.findall(r"[a-z0-9]+", text.lower()):
            vec[zlib.crc32(tok.encode()) % self.dim] += 1.0
        return vec


class BrokenEmbedder:
    def embed(self, text):
        raise RetrievalError("embedding service unavailable")


class FailingIndex:
    def __init__(self):
        self.calls = 0

    def query(self, vector, k, chunk_type=None, category=None):
        self.calls += 1
        raise RetrievalError("index offline")


class SlowIndex:
    def __init__(self, delay=1.0):
        self.delay = delay

    async def query(self, vector, k, chunk_type=None, category=None):
        await asyncio.sleep(self.delay)
        return []


class TrackingIndex:
    """Records how many queries run at once."""

    def __init__(self, delay=0.02):
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.calls = 0

    async def query(self, vector, k, chunk_type=None, category=None):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return []


def make_chunk(chunk_id, text, category="", approved=True, chunk_type=ALTERNATIVE_LANGUAGE):
    return KnowledgeChunk(
        chunk_id=chunk_id,
        document_id="doc-1",
        text=text,
        chunk_type=chunk_type,
        category=category,
        approved=approved,
    )


@pytest.fixture(scope="session")
def rulebook():
    return load_rulebook(RULEBOOK_PATH)


@pytest.fixture
def small_rulebook():
    return parse_rulebook({
        "version": "test",
        "rules": {
            "R-PUB": {
                "kind": "MissingClause",
                "pattern": r"right\s+to\s+publish",
                "severity": "HIGH",
                "description": "Missing publication rights clause",
                "template": "The University may publish results.",
                "category": "Publication",
            },
            "R-INDEM": {
                "kind": "ProhibitedLanguage",
                "pattern": r"indemnify",
                "severity": "CRITICAL",
                "description": "Indemnification language is not permitted",
                "template": "Each party is responsible for its own acts.",
                "category": "Indemnification",
            },
        },
    })


@pytest.fixture
def aggregator(rulebook):
    return ComplianceAggregator.from_rulebook(rulebook)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def failing_client(embedder):
    return SemanticRetrievalClient(embedder, FailingIndex())


@pytest.fixture
def alternatives_index(rulebook, embedder):
    return InMemoryVectorIndex.from_chunks(rulebook.alternatives, embedder)
