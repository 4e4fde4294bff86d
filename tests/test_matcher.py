from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from subscout.itad import SearchHit
from subscout.matcher import CatalogMatcher, normalize_title, score_candidate, select_candidates


class TestNormalizeTitle:
    def test_trademark_glyphs_are_ignored(self):
        assert normalize_title("Battlefield® 6™") == normalize_title("Battlefield 6")

    def test_punctuation_and_whitespace(self):
        assert normalize_title("  Tom Clancy's   Rainbow Six: Siege ") == "tom clancys rainbow six siege"

    def test_copyright_and_underscores(self):
        assert normalize_title("©Half_Life") == "halflife"

    def test_non_ascii_letters_are_dropped(self):
        assert normalize_title("Pokémon Légendes") == "pokmon lgendes"
        assert normalize_title("ÖKOSYSTEM 2") == "kosystem 2"


class TestScoreCandidate:
    def test_exact(self):
        assert score_candidate("battlefield 6", "battlefield 6") == 100

    def test_prefix_penalised_by_length(self):
        assert score_candidate("battlefield 6", "battlefield 6 phantom edition") == 80 - 16

    def test_prefix_penalty_is_capped(self):
        long_title = "doom " + "x" * 100
        assert score_candidate("doom", long_title) == 40

    def test_contained_elsewhere(self):
        assert score_candidate("doom", "ultimate doom") == 30 - 9

    def test_local_contains_external(self):
        assert score_candidate("portal 2 soundtrack", "portal 2") == 70 - 11

    def test_unrelated(self):
        assert score_candidate("battlefield 6", "star wars battlefront") == 0


def test_select_candidates_orders_and_filters() -> None:
    hits = [
        SearchHit("star-wars-battlefront", "Star Wars Battlefront"),
        SearchHit("bf6-phantom", "Battlefield 6 Phantom Edition"),
        SearchHit("bf6", "Battlefield™ 6"),
    ]

    result = select_candidates("Battlefield 6", hits)

    assert [(c.external_id, c.score) for c in result] == [("bf6", 100), ("bf6-phantom", 64)]


def test_duplicate_ids_are_returned_once() -> None:
    hits = [
        SearchHit("a", "Hades X"),
        SearchHit("b", "Hades XY"),
        SearchHit("a", "Hades"),
    ]

    result = select_candidates("Hades", hits)

    assert [(c.external_id, c.score) for c in result] == [("a", 100), ("b", 77)]


def test_equal_scores_prefer_longer_title() -> None:
    hits = [SearchHit("base", "Portal 2 X"), SearchHit("edition", "Portal 2 XYZ Big Edition")]

    result = select_candidates("Portal 2 XYZ", hits)

    # 70 - 2 for the contained title, 80 - 12 for the prefix match.
    assert [(c.external_id, c.score) for c in result] == [("edition", 68), ("base", 68)]


def test_blank_title_never_matches() -> None:
    assert select_candidates("™ ®", [SearchHit("x", "Anything")]) == []


async def test_catalog_matcher_queries_search_client() -> None:
    client = AsyncMock()
    client.search.return_value = [SearchHit("bf6", "Battlefield 6")]
    matcher = CatalogMatcher(client, limit=5)

    result = await matcher.match("Battlefield® 6")

    client.search.assert_awaited_once_with("Battlefield® 6", limit=5)
    assert [c.external_id for c in result] == ["bf6"]


async def test_catalog_matcher_skips_search_for_blank_title() -> None:
    client = AsyncMock()
    matcher = CatalogMatcher(client)

    assert await matcher.match("   ") == []
    client.search.assert_not_awaited()


@pytest.mark.parametrize("min_score, expected", [(50, ["bf6"]), (101, [])])
def test_min_score_threshold(min_score: int, expected: list[str]) -> None:
    result = select_candidates("Battlefield 6", [SearchHit("bf6", "Battlefield 6")], min_score=min_score)

    assert [c.external_id for c in result] == expected
