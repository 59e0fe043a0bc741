"""Tests for route extraction helpers."""

import pytest

from ttc_incidents.helpers.route_extraction import (
    base_route,
    canonical_route,
    extract_between_clause,
    extract_routes,
    routes_overlap,
    split_upstream_routes,
    strip_false_positive_numbers,
)


class TestExtractRoutes:
    """Tests for extract_routes."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("504 King: No service between Dufferin and Lansdowne", ["504"]),
            ("97B Yonge: Detour at Steeles", ["97B"]),
            ("37, 37A Islington: Diverting", ["37", "37A"]),
            ("Line 1 Yonge-University: No service between St Clair and Lawrence", ["Line 1"]),
            ("504 King and 505 Dundas: Delays", ["504", "505"]),
        ],
    )
    def test_extracts_routes_in_order(self, text: str, expected: list[str]) -> None:
        """Test routes are returned in order of appearance."""
        assert extract_routes(text) == expected

    def test_ignores_infrastructure_numbers(self) -> None:
        """Test bay and platform numbers are not mistaken for routes."""
        assert extract_routes("Bay 2 closed, route 506 delayed") == ["506"]

    def test_ignores_dates(self) -> None:
        """Test calendar dates do not produce routes."""
        assert extract_routes("Track work on Nov 22, 2025") == []

    def test_ignores_times_and_durations(self) -> None:
        """Test clock times and durations do not produce routes."""
        assert extract_routes("Delays of 10 minutes, resume at 8:30 pm") == []

    def test_unknown_subway_line_is_not_a_bus_route(self) -> None:
        """Test "Line 5" is neither a subway line nor a bus route."""
        assert extract_routes("Line 5 Eglinton: Opening soon") == []

    def test_same_route_twice_is_deduplicated(self) -> None:
        """Test a repeated mention yields one entry."""
        assert extract_routes("504 King: Delays. 504 King diverting") == ["504"]

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_text(self, text: str | None) -> None:
        """Test empty input returns no routes."""
        assert extract_routes(text) == []


class TestStripFalsePositiveNumbers:
    """Tests for strip_false_positive_numbers."""

    def test_blanks_infrastructure_and_dates(self) -> None:
        """Test bays, platforms and dates are blanked."""
        cleaned = strip_false_positive_numbers("Platform 2 and Bay 12 closed until December 3")

        assert "2" not in cleaned
        assert "12" not in cleaned
        assert "3" not in cleaned
        assert "closed" in cleaned


class TestCanonicalRoute:
    """Tests for canonical_route."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2", "Line 2"),
            (" line 1 ", "Line 1"),
            ("LINE4", "Line 4"),
            ("97b", "97B"),
            ("504", "504"),
            ("", None),
            ("   ", None),
            (None, None),
        ],
    )
    def test_canonical_forms(self, value: str | None, expected: str | None) -> None:
        """Test upstream route values map to stored identifiers."""
        assert canonical_route(value) == expected


class TestSplitUpstreamRoutes:
    """Tests for split_upstream_routes."""

    def test_splits_on_separators(self) -> None:
        """Test commas, pipes and slashes all separate routes."""
        assert split_upstream_routes("37, 37A|1/504") == ["37", "37A", "Line 1", "504"]

    def test_deduplicates(self) -> None:
        """Test repeated routes appear once."""
        assert split_upstream_routes("504,504") == ["504"]

    def test_empty(self) -> None:
        """Test missing route field returns an empty list."""
        assert split_upstream_routes(None) == []


class TestBaseRouteAndOverlap:
    """Tests for base_route and routes_overlap."""

    @pytest.mark.parametrize(
        ("route", "expected"),
        [("37A", "37"), ("37", "37"), ("97b", "97"), ("Line 2", "Line 2")],
    )
    def test_base_route(self, route: str, expected: str) -> None:
        """Test branch suffixes are stripped."""
        assert base_route(route) == expected

    def test_branch_overlaps_base(self) -> None:
        """Test a branch overlaps its base route."""
        assert routes_overlap(["37A"], ["37", "52"]) is True

    def test_distinct_routes_do_not_overlap(self) -> None:
        """Test unrelated routes do not overlap."""
        assert routes_overlap(["504"], ["505"]) is False

    def test_empty_lists_do_not_overlap(self) -> None:
        """Test empty route lists never overlap."""
        assert routes_overlap([], ["504"]) is False


class TestExtractBetweenClause:
    """Tests for extract_between_clause."""

    def test_simple_clause(self) -> None:
        """Test a trailing "between X and Y" clause."""
        assert extract_between_clause("504 King: No service between Dufferin and Lansdowne") == (
            "Dufferin",
            "Lansdowne",
        )

    def test_stops_at_stations_keyword(self) -> None:
        """Test the clause ends before "stations due to ..."."""
        text = "Line 1: No service between St Clair and Lawrence stations due to a signal problem"

        assert extract_between_clause(text) == ("St Clair", "Lawrence")

    def test_ampersand_and_punctuation(self) -> None:
        """Test "&" as separator and a trailing full stop."""
        assert extract_between_clause("Shuttle buses between Bloor & College.") == ("Bloor", "College")

    @pytest.mark.parametrize("text", [None, "", "Regular service has resumed"])
    def test_no_clause(self, text: str | None) -> None:
        """Test text without a clause returns None."""
        assert extract_between_clause(text) is None
