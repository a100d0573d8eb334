"""
Provider interfaces consumed by the revision engine.

The core never computes embeddings, similarity or term extraction on
its own account: callers supply implementations of these protocols (or
precomputed results). The small reference implementations below are
deterministic and dependency-light; they back the CLI and the tests and
are not meant to compete with model-based providers.
"""

from typing import Iterable, List, Optional, Protocol, Sequence
import hashlib
import logging
import re

import numpy as np

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


class SimilarityProvider(Protocol):
    """Protocol for text similarity backends."""

    def similarity(self, a: str, b: str) -> float:
        """
        Score how closely two payloads agree.

        Returns:
            Similarity in [0, 1]
        """
        ...


class EmbeddingProvider(Protocol):
    """Protocol for embedding backends."""

    def embed(self, text: str) -> np.ndarray:
        """Fixed-dimension vector for a single text."""
        ...

    @property
    def dimension(self) -> int:
        ...


class TermExtractor(Protocol):
    """Protocol for entity/term extraction backends."""

    def extract(self, text: str) -> List[str]:
        """Extracted terms, in order of first appearance, without duplicates."""
        ...


# ---------------------------------------------------------------------------
# Reference implementations
# ---------------------------------------------------------------------------

class TokenOverlapSimilarity:
    """Jaccard overlap of lowercase word sets."""

    def similarity(self, a: str, b: str) -> float:
        wa, wb = set(_words(a)), set(_words(b))
        if not wa and not wb:
            return 1.0
        return len(wa & wb) / len(wa | wb)


class HashingEmbedding:
    """
    Deterministic hashed bag-of-words embedding.

    Each word is hashed (blake2b) into one of `dimension` buckets with a
    sign bit; the vector is L2-normalized. Identical texts produce
    identical vectors across processes.
    """

    def __init__(self, dimension: int = 64):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimension, dtype=np.float64)
        for word in _words(text):
            digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[bucket] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec


class VocabularyTermExtractor:
    """
    Extract terms from a fixed vocabulary (case-insensitive, whole words).

    Multi-word terms are supported. The canonical spelling from the
    vocabulary is returned.
    """

    def __init__(self, vocabulary: Iterable[str]):
        self._vocabulary: List[str] = []
        seen = set()
        for term in vocabulary:
            key = term.lower()
            if key not in seen:
                seen.add(key)
                self._vocabulary.append(term)
        self._patterns = [
            (term, re.compile(r"(?<![\w])" + re.escape(term) + r"(?![\w])", re.IGNORECASE))
            for term in self._vocabulary
        ]

    @property
    def vocabulary(self) -> Sequence[str]:
        return tuple(self._vocabulary)

    def extract(self, text: str) -> List[str]:
        hits = []
        for term, pattern in self._patterns:
            m = pattern.search(text)
            if m:
                hits.append((m.start(), term))
        hits.sort()
        return [term for _, term in hits]


def term_present(term: str, text: str) -> bool:
    """Whole-word, case-insensitive term lookup shared by validators and tolerances."""
    pattern = r"(?<![\w])" + re.escape(term) + r"(?![\w])"
    return re.search(pattern, text, re.IGNORECASE) is not None


def fingerprint_embedding(provider: Optional[EmbeddingProvider], text: str) -> List[float]:
    """Embedding as a plain list for Fingerprint construction ([] without a provider)."""
    if provider is None:
        return []
    return [float(x) for x in provider.embed(text)]
