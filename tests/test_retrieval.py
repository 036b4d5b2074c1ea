import logging

import pytest

from compliance_review.models import ALTERNATIVE_LANGUAGE, POLICY
from compliance_review.retrieval import SemanticRetrievalClient, extract_keywords
from compliance_review.vector_index import InMemoryVectorIndex

from conftest import BrokenEmbedder, FailingIndex, FakeEmbedder, make_chunk


@pytest.fixture
def chunks():
    return [
        make_chunk("alt-pay", "Sponsor shall pay each invoice within thirty days.", "Payment"),
        make_chunk("alt-ip", "Ownership of inventions follows inventorship.", "Intellectual Property"),
        make_chunk("alt-draft", "Sponsor shall pay each invoice within thirty days of receipt.", "Payment",
                   approved=False),
        make_chunk("pol-pay", "Payment terms must be NET 30.", "Payment", chunk_type=POLICY),
    ]


@pytest.fixture
def client(chunks):
    embedder = FakeEmbedder()
    return SemanticRetrievalClient(embedder, InMemoryVectorIndex.from_chunks(chunks, embedder))


def test_extract_keywords_by_frequency_then_length():
    text = "Payment payment within thirty days; the invoice payment within days"
    assert extract_keywords(text) == ["payment", "within", "days"]
    assert extract_keywords("a an the of") == []


@pytest.mark.asyncio
async def test_retrieve_returns_best_match_first(client):
    results = await client.retrieve("pay each invoice within thirty days", chunk_type=ALTERNATIVE_LANGUAGE)
    assert results[0].chunk_id in ("alt-pay", "alt-draft")
    sims = [c.similarity for c in results]
    assert sims == sorted(sims, reverse=True)
    assert all(c.chunk_type == ALTERNATIVE_LANGUAGE for c in results)


@pytest.mark.asyncio
async def test_retrieve_filters_category_and_approval(client):
    results = await client.retrieve(
        "pay each invoice", chunk_type=ALTERNATIVE_LANGUAGE, category="payment", approved_only=True,
    )
    assert [c.chunk_id for c in results] == ["alt-pay"]


@pytest.mark.asyncio
async def test_retrieve_respects_k(client):
    results = await client.retrieve("invoice", k=1)
    assert len(results) == 1


@pytest.mark.asyncio
async def test_empty_query_skips_backend():
    embedder = FakeEmbedder()
    client = SemanticRetrievalClient(embedder, FailingIndex())
    assert await client.retrieve("   ") == []
    assert embedder.calls == 0


@pytest.mark.asyncio
async def test_index_failure_degrades_to_empty(caplog):
    index = FailingIndex()
    client = SemanticRetrievalClient(FakeEmbedder(), index)
    with caplog.at_level(logging.WARNING, logger="compliance_review.retrieval"):
        assert await client.retrieve("indemnification") == []
    assert index.calls == 1
    assert "index offline" in caplog.text


@pytest.mark.asyncio
async def test_embedding_failure_degrades_to_empty(chunks):
    client = SemanticRetrievalClient(BrokenEmbedder(), FailingIndex())
    assert await client.retrieve("indemnification") == []


@pytest.mark.asyncio
async def test_long_queries_are_truncated(chunks):
    seen = []

    class RecordingEmbedder(FakeEmbedder):
        def embed(self, text):
            seen.append(text)
            return super().embed(text)

    embedder = RecordingEmbedder()
    client = SemanticRetrievalClient(embedder, InMemoryVectorIndex.from_chunks(chunks, FakeEmbedder()),
                                     max_chars=10)
    await client.retrieve("payment " * 50)
    assert seen == ["payment pa"]


@pytest.mark.asyncio
async def test_broad_search_drops_category(client):
    results = await client.broad_search("Payment invoice payment", chunk_type=ALTERNATIVE_LANGUAGE)
    assert {c.category for c in results} >= {"Payment"}


@pytest.mark.asyncio
async def test_fallback_broadens_when_targeted_query_is_empty(client):
    targeted = await client.retrieve("pay invoice", chunk_type=ALTERNATIVE_LANGUAGE, category="Export Control")
    assert targeted == []
    results = await client.retrieve_with_fallback(
        "pay invoice", chunk_type=ALTERNATIVE_LANGUAGE, category="Export Control",
    )
    assert results
    assert results[0].category == "Payment"


@pytest.mark.asyncio
async def test_fallback_not_used_when_targeted_query_succeeds(client):
    results = await client.retrieve_with_fallback(
        "Ownership of inventions", chunk_type=ALTERNATIVE_LANGUAGE, category="Intellectual Property",
    )
    assert [c.chunk_id for c in results] == ["alt-ip"]


@pytest.mark.asyncio
async def test_zero_k_returns_nothing():
    embedder = FakeEmbedder()
    client = SemanticRetrievalClient(embedder, FailingIndex())
    assert await client.retrieve("indemnification", k=0) == []
    assert embedder.calls == 0


@pytest.mark.asyncio
async def test_approved_match_found_behind_unapproved_drafts():
    text = "Sponsor shall pay each invoice within thirty days."
    chunks = [make_chunk(f"draft-{i}", text, "Payment", approved=False) for i in range(3)]
    chunks.append(make_chunk("alt-pay", "Sponsor shall pay invoices within thirty days.", "Payment"))
    embedder = FakeEmbedder()
    client = SemanticRetrievalClient(embedder, InMemoryVectorIndex.from_chunks(chunks, embedder))

    results = await client.retrieve(text, chunk_type=ALTERNATIVE_LANGUAGE, k=1, approved_only=True)

    assert [c.chunk_id for c in results] == ["alt-pay"]
