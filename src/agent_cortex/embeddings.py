"""Lexical embeddings and cosine ranking.

The default provider is a hashing vectorizer: it captures literal word
overlap, not meaning. Anything with the EmbedFn signature can replace it.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, TypeVar

import numpy as np

# Type alias: takes text, returns a float32 vector as bytes
EmbedFn = Callable[[str], bytes]

DEFAULT_DIMS = 384

_TOKEN_SPLIT = re.compile(r"\W+")

T = TypeVar("T")


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text.lower()) if t]


def stable_hash(token: str) -> int:
    """32-bit signed string hash (h * 31 + c), identical across processes.

    Python's hash() is salted per process, so it cannot be used here.
    """
    h = 0
    for ch in token:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def lexical_embed(dims: int = DEFAULT_DIMS) -> EmbedFn:
    """Hashing vectorizer: tokenize -> hash each token to a bucket -> L2 normalize.

    Text without word tokens maps to the all-zero vector. Its magnitude is
    treated as 1, so callers never see a division by zero.
    """

    def _embed(text: str) -> bytes:
        vec = np.zeros(dims, dtype=np.float32)
        for token in tokenize(text):
            vec[abs(stable_hash(token)) % dims] += 1.0
        norm = float(np.linalg.norm(vec)) or 1.0
        return (vec / norm).astype(np.float32).tobytes()

    return _embed


def to_vector(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype=np.float32)


def cosine_similarity(a: bytes, b: bytes) -> float:
    """Cosine similarity between two embedding byte vectors.

    Raises ValueError on dimension mismatch.
    """
    va = to_vector(a)
    vb = to_vector(b)
    if va.shape != vb.shape:
        raise ValueError(
            f"Embedding dimension mismatch: {va.shape[0]}d vs {vb.shape[0]}d."
        )
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_similarity(query_embedding: bytes,
                       items: Iterable[tuple[bytes | None, T]],
                       threshold: float = 0.0,
                       limit: int = 10) -> list[tuple[float, T]]:
    """Rank (embedding, item) pairs by cosine similarity to the query.

    Items without an embedding or below threshold are dropped. Returns
    (similarity, item) sorted by similarity descending.
    """
    scored = []
    for embedding, item in items:
        if embedding is None:
            continue
        sim = cosine_similarity(query_embedding, embedding)
        if sim > threshold:
            scored.append((sim, item))

    scored.sort(key=lambda x: x[0], reverse=True)
    return scored[:limit]
