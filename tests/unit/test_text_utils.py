"""Tests for lexical similarity helpers."""

import pytest

from hcc.hierarchy.text_utils import coverage, similarity


class TestSimilarity:
    """Tests for key-term similarity."""

    def test_identical(self):
        assert similarity("Banks expand lending", "Banks expand lending") == 1.0

    def test_inflected_terms_match(self):
        assert similarity("Quarterly revenue grew", "Quarterly revenues grew") == 1.0

    def test_unrelated(self):
        assert similarity("Banks expand lending", "Glaciers retreat slowly") == 0.0

    def test_identifiers_match_exactly(self):
        # {t12, factor} vs {t13, factor}: one shared term of three
        assert similarity("t12 factor", "t13 factor") == pytest.approx(1 / 3)

    def test_stopwords_ignored(self):
        assert similarity("the banks", "banks") == 1.0


class TestCoverage:
    """Tests for one-sided claim coverage."""

    def test_claim_found_with_inflection(self):
        assert coverage("revenues grew", "Last year the revenue grew quickly.") == 1.0

    def test_partial(self):
        assert coverage("wages rose while prices fell", "Wages rose sharply.") == pytest.approx(0.5)

    def test_empty_claim(self):
        assert coverage("the of", "anything") == 0.0
