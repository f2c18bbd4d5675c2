"""
Tests for description similarity.
"""

import pytest

from bank_ingest.dedup.similarity import bigram_similarity, bigrams, normalize_description


class TestNormalizeDescription:
    def test_strips_punctuation_and_case(self):
        assert normalize_description("ACME D.O.O. PAYMENT") == "acmedoopayment"

    def test_keeps_croatian_letters(self):
        assert normalize_description("Plaćanje ŽIRO-računa") == "plaćanježiroračuna"

    def test_empty(self):
        assert normalize_description(None) == ""
        assert normalize_description("  --  ") == ""


class TestBigrams:
    def test_bigram_set(self):
        assert bigrams("abca") == {"ab", "bc", "ca"}

    def test_single_character(self):
        assert bigrams("x") == {"x"}

    def test_empty(self):
        assert bigrams("") == set()


class TestBigramSimilarity:
    def test_same_after_normalisation(self):
        assert bigram_similarity("ACME D.O.O. PAYMENT", "Acme doo payment") == 1.0

    def test_disjoint(self):
        assert bigram_similarity("abc", "xyz") == 0.0

    def test_partial_overlap(self):
        # {ab, bc} vs {ab, bd}: 1 shared of 3
        assert bigram_similarity("abc", "abd") == pytest.approx(1 / 3)

    def test_both_empty_is_zero(self):
        assert bigram_similarity("", None) == 0.0

    def test_symmetric(self):
        a, b = "Uplata racun 17", "Uplata po racunu 17"
        assert bigram_similarity(a, b) == bigram_similarity(b, a)
