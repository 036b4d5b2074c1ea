"""TF-IDF term weighting over a small, fixed reference corpus.

Used to rank policy text and alternative language lexically, both inside the
rule engine and as the fallback when no semantic retrieval is configured.
"""

import math
import re
from collections import Counter
from typing import Sequence

import numpy as np

from .errors import RulebookError

_NON_WORD_RE = re.compile(r"[^\w\s]")
MIN_TOKEN_LENGTH = 3
# ln(N / (df + 1)) is <= 0 for terms found in (nearly) every corpus document;
# keep such terms a sliver of weight so no text collapses to a zero vector.
IDF_FLOOR = 1e-3


def tokenize(text: str) -> list[str]:
    """Lower-case, drop non-word characters, split, keep tokens longer than 2."""
    cleaned = _NON_WORD_RE.sub("", (text or "").lower())
    return [t for t in cleaned.split() if len(t) >= MIN_TOKEN_LENGTH]


class TermWeightingModel:
    """Inverse document frequencies learned once from a reference corpus."""

    def __init__(self, corpus: Sequence[str]):
        if not corpus:
            raise RulebookError("Reference corpus is empty; cannot build the term-weighting model")
        self.corpus_size = len(corpus)
        self.document_frequency: Counter = Counter()
        for document in corpus:
            self.document_frequency.update(set(tokenize(document)))
        self.vocabulary = sorted(self.document_frequency)

    def idf(self, term: str) -> float:
        df = self.document_frequency.get(term, 0)
        return max(math.log(self.corpus_size / (df + 1)), IDF_FLOOR)

    def compute_weights(self, document: str) -> dict[str, float]:
        """Map each qualifying term of ``document`` to tf x idf."""
        tokens = tokenize(document)
        if not tokens:
            return {}
        counts = Counter(tokens)
        total = len(tokens)
        return {term: (count / total) * self.idf(term) for term, count in counts.items()}

    def similarity(self, text_a: str, text_b: str) -> float:
        """Cosine similarity of the two weight vectors, in [0, 1]."""
        weights_a = self.compute_weights(text_a)
        weights_b = self.compute_weights(text_b)
        if not weights_a or not weights_b:
            return 0.0

        terms = sorted(set(weights_a) | set(weights_b))
        vec_a = np.array([weights_a.get(t, 0.0) for t in terms])
        vec_b = np.array([weights_b.get(t, 0.0) for t in terms])
        magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
        if magnitude == 0.0:
            return 0.0
        score = round(float(np.dot(vec_a, vec_b)) / magnitude, 12)
        return min(max(score, 0.0), 1.0)

    def rank(self, query: str, documents: Sequence[str]) -> list[tuple[int, float]]:
        """(index, score) pairs for ``documents``, best first; ties keep input order."""
        scored = [(i, self.similarity(query, doc)) for i, doc in enumerate(documents)]
        scored.sort(key=lambda x: -x[1])
        return scored
