"""
Embedding generation utilities for retrieval.

Uses a hashing-trick bag-of-words embedding:
- No model download, no network call
- Identical vectors at index time and query time
- Reproducible across processes (stable token hash, not Python's ``hash``)

Weaker than a learned embedding model; chosen so retrieval keeps working with
zero external dependencies.
"""

from __future__ import annotations

import re
from typing import List, Sequence

import numpy as np

from ..config import config

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

_HASH_MODULUS = 2 ** 32


def tokenize(text: str) -> List[str]:
    """Lowercase, replace non-alphanumerics with spaces, keep tokens longer than one char."""
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > 1]


def hash_token(token: str) -> int:
    """31-multiplier rolling hash kept in unsigned 32-bit range."""
    value = 0
    for char in token:
        value = (value * 31 + ord(char)) % _HASH_MODULUS
    return value


class HashingEmbedder:
    """
    Map text to a fixed-length, L2-normalised token histogram.

    Usage:
        embedder = HashingEmbedder()
        vector = embedder.embed("Verify lockout/tagout before servicing")
    """

    def __init__(self, dimension: int = None):
        self.dimension = dimension or config.rag.embedding_dimension
        if self.dimension <= 0:
            raise ValueError(f"dimension must be > 0, got {self.dimension}")

    def embed(self, text: str) -> np.ndarray:
        """
        Embed a single text.

        Returns:
            Vector of length ``dimension`` with unit L2 norm, or the zero vector
            when the text has no usable tokens.
        """
        vector = np.zeros(self.dimension, dtype=np.float64)
        tokens = tokenize(text)
        if not tokens:
            return vector

        for token in tokens:
            vector[hash_token(token) % self.dimension] += 1.0

        norm = np.linalg.norm(vector)
        if norm == 0:
            return vector
        return vector / norm

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        return [self.embed(text) for text in texts]


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Vectors of different length are compared over their common prefix.

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero norm
    """
    length = min(len(vec1), len(vec2))
    v1 = np.asarray(vec1, dtype=np.float64)[:length]
    v2 = np.asarray(vec2, dtype=np.float64)[:length]

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(v1, v2) / (norm1 * norm2))
