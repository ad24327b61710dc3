"""Tests for the lexical embedding function."""

import numpy as np
import pytest

from agent_cortex.embeddings import (
    DEFAULT_DIMS,
    cosine_similarity,
    lexical_embed,
    rank_by_similarity,
    stable_hash,
    to_vector,
    tokenize,
)


@pytest.fixture
def embed():
    return lexical_embed()


# ── hashing ────────────────────────────────────────────────────────────


class TestStableHash:
    def test_known_values(self):
        assert stable_hash("a") == 97
        assert stable_hash("hello") == 99162322

    def test_wraps_to_signed_32_bits(self):
        assert stable_hash("polygenelubricants") == -2147483648

    def test_tokenize_lowercases_and_drops_empty(self):
        assert tokenize("  Hello, WORLD!! ") == ["hello", "world"]
        assert tokenize("") == []


# ── lexical_embed ──────────────────────────────────────────────────────


class TestLexicalEmbed:
    def test_produces_fixed_size_bytes(self, embed):
        result = embed("hello world")
        assert isinstance(result, bytes)
        assert len(result) == DEFAULT_DIMS * 4  # float32

    def test_deterministic(self, embed):
        assert embed("deterministic test") == embed("deterministic test")
        assert lexical_embed()("same text") == lexical_embed()("same text")

    def test_empty_text_is_zero_vector(self, embed):
        vec = to_vector(embed(""))
        assert vec.shape == (DEFAULT_DIMS,)
        assert np.all(vec == 0.0)

    def test_punctuation_only_is_zero_vector(self, embed):
        assert np.all(to_vector(embed("!!! ... ???")) == 0.0)

    @pytest.mark.parametrize("text", [
        "a", "hello world", "Build a login form", "x " * 200,
    ])
    def test_unit_norm(self, embed, text):
        assert np.linalg.norm(to_vector(embed(text))) == pytest.approx(1.0, abs=1e-5)

    def test_case_insensitive(self, embed):
        assert embed("Hello World") == embed("hello world")

    def test_custom_dims(self):
        assert to_vector(lexical_embed(dims=16)("hello")).shape == (16,)

    def test_shared_words_score_higher(self, embed):
        a = embed("python code review")
        b = embed("python code tests")
        c = embed("banana split")
        assert cosine_similarity(a, b) > cosine_similarity(a, c)


# ── cosine / ranking ───────────────────────────────────────────────────


class TestSimilarity:
    def test_identical_is_one(self, embed):
        v = embed("memory search")
        assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-5)

    def test_zero_vector_is_zero(self, embed):
        assert cosine_similarity(embed(""), embed("hello")) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError):
            cosine_similarity(lexical_embed(8)("a"), lexical_embed(16)("a"))

    def test_rank_filters_and_sorts(self, embed):
        items = [
            (embed("python code review"), "exact"),
            (None, "no-embedding"),
            (embed("python code review today"), "close"),
            (embed(""), "empty"),
        ]
        ranked = rank_by_similarity(embed("python code review"), items, threshold=0.1)
        assert [item for _, item in ranked][0] == "exact"
        assert "no-embedding" not in [item for _, item in ranked]
        assert "empty" not in [item for _, item in ranked]
        sims = [s for s, _ in ranked]
        assert sims == sorted(sims, reverse=True)
