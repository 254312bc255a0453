"""Tests for project name matching."""

import pytest

from rm_sync.rm import RMProject
from rm_sync.sync.matching import (
    calculate_match_score,
    find_best_match,
    levenshtein_distance,
    levenshtein_similarity,
    normalize,
    suggest_matches,
)

WEBSITE = RMProject(id=1, name="Website Redesign", code="WEB-01")
ACME = RMProject(id=2, name="Acme Customer Portal")
ACME_SHORT = RMProject(id=3, name="Acme")


class TestHelpers:
    """Test string helpers."""

    def test_normalize(self) -> None:
        """Test lowercasing and whitespace collapsing."""
        assert normalize("  Website   Redesign\t") == "website redesign"

    def test_levenshtein_distance(self) -> None:
        """Test edit distance."""
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_levenshtein_similarity(self) -> None:
        """Test normalized similarity."""
        assert levenshtein_similarity("abc", "abc") == 1.0
        assert levenshtein_similarity("", "abc") == 0.0
        assert levenshtein_similarity("abcd", "abcf") == 0.75


class TestCalculateMatchScore:
    """Test match strategies."""

    @pytest.mark.parametrize(
        "local_name,project,score,reason",
        [
            ("website  REDESIGN", WEBSITE, 1.0, "exact"),
            ("web-01", WEBSITE, 0.95, "code_match"),
            ("Acme Customer", ACME, 0.85, "starts_with"),
            ("Portal Acme", ACME, 0.75, "word_match"),
            ("e re", WEBSITE, 0.65, "contains"),
        ],
    )
    def test_strategies(
        self, local_name: str, project: RMProject, score: float, reason: str
    ) -> None:
        """Test each strategy in isolation."""
        assert calculate_match_score(local_name, project) == (score, reason)

    def test_partial_similarity(self) -> None:
        """Test the fuzzy fallback."""
        score, reason = calculate_match_score("Websit Redesing", WEBSITE)

        assert reason == "partial"
        expected = levenshtein_similarity("websit redesing", "website redesign") * 0.6
        assert score == pytest.approx(expected)

    def test_unrelated_names(self) -> None:
        """Test that unrelated names score zero."""
        score, _ = calculate_match_score("Payroll", WEBSITE)
        assert score == 0.0


class TestFindBestMatch:
    """Test picking the best candidate."""

    def test_highest_score_wins(self) -> None:
        """Test that the best scoring project is chosen."""
        match = find_best_match("p1", "Acme", [ACME, ACME_SHORT, WEBSITE])

        assert match.rm_project_id == 3
        assert match.score == 1.0
        assert match.local_project_id == "p1"

    def test_threshold_is_exclusive(self) -> None:
        """Test that a score equal to the threshold is not a match."""
        assert find_best_match("p1", "e re", [WEBSITE]) is None
        assert find_best_match("p1", "e re", [WEBSITE], min_score=0.6) is not None

    def test_no_candidates(self) -> None:
        """Test matching against an empty list."""
        assert find_best_match("p1", "Anything", []) is None


class TestSuggestMatches:
    """Test bulk suggestions."""

    def test_omits_projects_without_match(self) -> None:
        """Test that only matched projects are returned."""
        suggestions = suggest_matches(
            [("p1", "Website Redesign"), ("p2", "Payroll")], [WEBSITE, ACME]
        )

        assert list(suggestions) == ["p1"]
        assert suggestions["p1"].reason == "exact"
        assert suggestions["p1"].rm_project_code == "WEB-01"
