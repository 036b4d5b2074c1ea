"""Semantic retrieval of policy and alternative-language chunks.

Retrieval enriches a report; it never decides whether a finding exists.
Every embedding or index failure is logged and turned into an empty result.
No retries happen here: the caller owns any retry policy (the broad search
below is the one loosened second attempt callers may opt into).
"""

import asyncio
import inspect
import logging
import re
from collections import Counter
from typing import Optional

from .config import (
    BROAD_SEARCH_KEYWORDS, BROAD_SEARCH_TOP_K, MAX_EMBED_CHARS, RETRIEVAL_OVERFETCH,
    RETRIEVAL_TOP_K,
)
from .embeddings import EmbeddingProvider, truncate_for_embedding
from .models import KnowledgeChunk
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")


def extract_keywords(text: str, limit: int = BROAD_SEARCH_KEYWORDS) -> list[str]:
    """Top keywords of a query: words longer than 3 chars, by frequency then length."""
    words = [w for w in _WORD_RE.findall((text or "").lower()) if len(w) > 3]
    if not words:
        return []
    counts = Counter(words)
    first_seen = {}
    for i, w in enumerate(words):
        first_seen.setdefault(w, i)
    ranked = sorted(counts, key=lambda w: (-counts[w], -len(w), first_seen[w]))
    return ranked[:limit]


async def _call(fn, *args):
    """Await coroutine functions directly; push blocking ones onto a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


class SemanticRetrievalClient:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        max_chars: int = MAX_EMBED_CHARS,
        default_k: int = RETRIEVAL_TOP_K,
    ):
        self.embedder = embedder
        self.index = index
        self.max_chars = max_chars
        self.default_k = default_k

    async def retrieve(
        self,
        query_text: str,
        chunk_type: Optional[str] = None,
        k: Optional[int] = None,
        category: Optional[str] = None,
        approved_only: bool = False,
    ) -> list[KnowledgeChunk]:
        """Up to ``k`` chunks most similar to ``query_text``, best first."""
        if not query_text or not query_text.strip():
            return []
        if k is None:
            k = self.default_k
        if k <= 0:
            return []
        fetch = k * RETRIEVAL_OVERFETCH if approved_only else k

        try:
            vector = await _call(self.embedder.embed, truncate_for_embedding(query_text, self.max_chars))
            results = await _call(self.index.query, vector, fetch, chunk_type, category)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Retrieval failed (type=%s, category=%s) for %r: %s",
                chunk_type, category, query_text[:60], e,
            )
            return []

        if approved_only:
            results = [c for c in results if c.approved]
        return sorted(results, key=lambda c: -(c.similarity or 0.0))[:k]

    async def broad_search(
        self,
        query_text: str,
        chunk_type: Optional[str] = None,
        k: int = BROAD_SEARCH_TOP_K,
        approved_only: bool = False,
    ) -> list[KnowledgeChunk]:
        """Loosened query: the top keywords of ``query_text``, no category filter."""
        keywords = extract_keywords(query_text)
        if not keywords:
            return []
        return await self.retrieve(" ".join(keywords), chunk_type, k, approved_only=approved_only)

    async def retrieve_with_fallback(
        self,
        query_text: str,
        chunk_type: Optional[str] = None,
        k: Optional[int] = None,
        category: Optional[str] = None,
        approved_only: bool = False,
    ) -> list[KnowledgeChunk]:
        results = await self.retrieve(query_text, chunk_type, k, category, approved_only)
        if results:
            return results
        logger.info("No results for targeted query %r; trying broad search", query_text[:60])
        return await self.broad_search(query_text, chunk_type, approved_only=approved_only)
