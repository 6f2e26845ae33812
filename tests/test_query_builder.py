"""
CompScan - Query Builder Tests (Section 4.2)
"""

from __future__ import annotations

from compscan.engine.query_builder import build_queries, build_search_query
from compscan.models.identity import CardIdentity, CardType


def _wilson(**overrides) -> CardIdentity:
    fields = dict(
        year=2023,
        company="Topps",
        set_name="Topps Chrome",
        player="Jacob Wilson",
        card_number="BDC-121",
        is_rookie=True,
    )
    fields.update(overrides)
    return CardIdentity(**fields)


class TestBuildSearchQuery:
    def test_canonical_slot_order(self) -> None:
        assert build_search_query(_wilson()) == "2023 Topps Topps Chrome Jacob Wilson RC #BDC-121"

    def test_empty_identity_falls_back(self) -> None:
        assert build_search_query(CardIdentity.empty()) == "trading card"

    def test_full_slot_set(self) -> None:
        identity = _wilson(
            parallel="Gold Refractor", card_type=CardType.RPA, grade="PSA 10",
        )
        assert build_search_query(identity) == (
            "2023 Topps Topps Chrome Jacob Wilson Gold Refractor RC Auto Patch PSA 10 #BDC-121"
        )

    def test_raw_grade_omitted(self) -> None:
        assert "Raw" not in build_search_query(_wilson(grade="Raw"))

    def test_tiny_numeric_card_number_dropped(self) -> None:
        assert build_search_query(_wilson(card_number="1")) == (
            "2023 Topps Topps Chrome Jacob Wilson RC"
        )

    def test_color_inside_parallel_not_repeated(self) -> None:
        query = build_search_query(_wilson(parallel="Gold Refractor", color="Gold"))
        assert query.count("Gold") == 1

    def test_identical_parts_emitted_once(self) -> None:
        query = build_search_query(CardIdentity(company="Bowman", set_name="Bowman"))
        assert query == "Bowman"


class TestBuildQueries:
    def test_alternatives_in_order(self) -> None:
        queries = build_queries(_wilson())

        assert queries.primary == "2023 Topps Topps Chrome Jacob Wilson RC #BDC-121"
        assert queries.alternatives == [
            "2023 Topps Topps Chrome Jacob Wilson RC",
            "2023 Topps Chrome Jacob Wilson RC",
            "2023 Topps Topps Chrome RC",
            "2023 Topps Jacob Wilson",
            "2023 Topps Topps Chrome Jacob Wilson RC #BDC121",
            "2023 Topps Topps Chrome Jacob Wilson Rookie #BDC-121",
        ]

    def test_alternatives_unique_and_exclude_primary(self) -> None:
        queries = build_queries(
            _wilson(parallel="Gold Refractor", card_type=CardType.AUTO, grade="PSA 10")
        )
        lowered = [q.lower() for q in queries.alternatives]

        assert queries.primary.lower() not in lowered
        assert len(lowered) == len(set(lowered))

    def test_empty_identity_has_no_alternatives(self) -> None:
        queries = build_queries(CardIdentity.empty())

        assert queries.primary == "trading card"
        assert queries.alternatives == []
        assert queries.all_queries == ["trading card"]

    def test_company_inferred_for_brand_alternatives(self) -> None:
        identity = _wilson(company=None, set_name="Prizm", player="Luka Doncic", card_number="280")
        queries = build_queries(identity, brand_table={"prizm": "Panini"})

        assert queries.primary == "2023 Prizm Luka Doncic RC #280"
        assert "2023 Panini Prizm RC" in queries.alternatives

    def test_spotless_spans_variant(self) -> None:
        queries = build_queries(_wilson(card_number="SS-38", set_name=None, company=None))

        assert "2023 Jacob Wilson RC Spotless Spans 38" in queries.alternatives
        assert "2023 Jacob Wilson RC #SS38" in queries.alternatives

    def test_non_rookie_has_no_rookie_spelling(self) -> None:
        queries = build_queries(_wilson(is_rookie=False))
        assert not any("Rookie" in q for q in queries.alternatives)
