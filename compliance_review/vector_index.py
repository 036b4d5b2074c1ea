"""Vector indexes: nearest-neighbour search over pre-embedded knowledge chunks."""

import dataclasses
import logging
from typing import Optional, Protocol, Sequence

import numpy as np
import requests
from sklearn.metrics.pairwise import cosine_similarity

from .config import RETRIEVAL_OVERFETCH, RETRIEVAL_TIMEOUT, SUPABASE_MATCH_FUNCTION
from .errors import RetrievalError
from .models import KnowledgeChunk, category_matches

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    def query(
        self,
        vector: Sequence[float],
        k: int,
        chunk_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[KnowledgeChunk]:
        ...


class InMemoryVectorIndex:
    """Brute-force cosine search over a fixed set of chunks."""

    def __init__(self, chunks: Sequence[KnowledgeChunk], embeddings: np.ndarray):
        embeddings = np.asarray(embeddings, dtype=float)
        if embeddings.ndim != 2 or len(embeddings) != len(chunks):
            raise ValueError(
                f"Need one embedding row per chunk: {len(chunks)} chunks, "
                f"embeddings shape {embeddings.shape}"
            )
        self.chunks = list(chunks)
        self.embeddings = embeddings

    @classmethod
    def from_chunks(cls, chunks: Sequence[KnowledgeChunk], embedder) -> "InMemoryVectorIndex":
        if hasattr(embedder, "embed_many"):
            matrix = embedder.embed_many([c.text for c in chunks])
        else:
            matrix = np.array([embedder.embed(c.text) for c in chunks])
        return cls(chunks, matrix)

    def query(
        self,
        vector: Sequence[float],
        k: int,
        chunk_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[KnowledgeChunk]:
        candidates = [
            i for i, c in enumerate(self.chunks)
            if (chunk_type is None or c.chunk_type == chunk_type)
            and (not category or category_matches(c.category, category))
        ]
        if not candidates or k <= 0:
            return []

        query_vec = np.asarray(vector, dtype=float).reshape(1, -1)
        sims = cosine_similarity(query_vec, self.embeddings[candidates])[0]
        order = np.argsort(-sims, kind="stable")[:k]
        return [
            dataclasses.replace(self.chunks[candidates[j]], similarity=float(sims[j]))
            for j in order
        ]


class SupabaseVectorIndex:
    """Nearest-neighbour search through a Supabase (PostgREST) RPC function.

    The function takes ``query_embedding``, ``match_count`` and
    ``filter_type`` and returns rows with ``id``, ``document_id``,
    ``chunk_text``, ``document_type``, ``document_title``, ``similarity`` and
    an optional ``metadata`` object.
    """

    def __init__(
        self,
        url: str,
        key: str,
        function: str = SUPABASE_MATCH_FUNCTION,
        timeout: float = RETRIEVAL_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not url or not key:
            raise ValueError("Supabase URL and key are required")
        self.endpoint = f"{url.rstrip('/')}/rest/v1/rpc/{function}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        })

    def query(
        self,
        vector: Sequence[float],
        k: int,
        chunk_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[KnowledgeChunk]:
        payload = {
            "query_embedding": list(vector),
            "match_count": k * RETRIEVAL_OVERFETCH if category else k,
            "filter_type": chunk_type,
        }
        try:
            resp = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            rows = resp.json() or []
        except (requests.RequestException, ValueError) as e:
            raise RetrievalError(f"Vector index query failed: {e}") from e
        logger.debug("Vector index returned %d rows", len(rows))

        chunks = [self._to_chunk(row, chunk_type) for row in rows]
        if category:
            chunks = [c for c in chunks if category_matches(c.category, category)]
        return chunks[:k]

    @staticmethod
    def _to_chunk(row: dict, chunk_type: Optional[str]) -> KnowledgeChunk:
        metadata = row.get("metadata") or {}
        return KnowledgeChunk(
            chunk_id=str(row.get("id", "")),
            document_id=str(row.get("document_id", "")),
            text=row.get("chunk_text") or "",
            chunk_type=row.get("document_type") or chunk_type or "",
            category=metadata.get("term_type") or metadata.get("category") or "",
            approved=bool(metadata.get("is_approved") or metadata.get("approved")),
            title=row.get("document_title") or "",
            reference=metadata.get("policy_reference") or row.get("far_section") or "",
            similarity=float(row.get("similarity") or 0.0),
        )
