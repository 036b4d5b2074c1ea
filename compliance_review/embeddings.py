"""Embedding providers for semantic retrieval."""

import logging
import threading
from typing import Protocol, Sequence

import numpy as np

from .config import EMBED_MODEL, EMBED_MODEL_FALLBACK, MAX_EMBED_CHARS
from .errors import RetrievalError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


def truncate_for_embedding(text: str, max_chars: int = MAX_EMBED_CHARS) -> str:
    """Plain prefix truncation, so the same contract always embeds the same way."""
    return text[:max_chars]


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use.

    If the configured model cannot be loaded the fallback model is used
    instead. Pass ``model`` to reuse an already-loaded SentenceTransformer.
    """

    def __init__(
        self,
        model_name: str = EMBED_MODEL,
        fallback_model: str = EMBED_MODEL_FALLBACK,
        model=None,
    ):
        self.model_name = model_name
        self.fallback_model = fallback_model
        self._model = model
        self._active_model_name = model_name if model is not None else ""
        self._lock = threading.Lock()

    @property
    def model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                try:
                    logger.info("Loading embedding model: %s", self.model_name)
                    self._model = SentenceTransformer(self.model_name)
                    self._active_model_name = self.model_name
                except Exception as e:
                    logger.warning("Could not load %s: %s; falling back to %s",
                                   self.model_name, e, self.fallback_model)
                    self._model = SentenceTransformer(self.fallback_model)
                    self._active_model_name = self.fallback_model
            return self._model

    @property
    def active_model_name(self) -> str:
        self.model
        return self._active_model_name

    def embed(self, text: str) -> list[float]:
        return self.embed_many([text])[0].tolist()

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        try:
            return self.model.encode(
                [truncate_for_embedding(t) for t in texts],
                show_progress_bar=False,
                convert_to_numpy=True,
            )
        except Exception as e:
            raise RetrievalError(f"Embedding failed: {e}") from e
