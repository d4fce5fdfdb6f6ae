from __future__ import annotations

from collections import Counter

import pytest

from derbyvote_core import DataStore, ResultsEngine
from derbyvote_core.errors import NotFoundError
from derbyvote_core.results import vote_leader

from tests.conftest import cast_votes


def test_vote_leader_requires_a_strict_maximum() -> None:
    assert vote_leader(Counter({1: 3, 2: 1})) == 1
    assert vote_leader(Counter({1: 2, 2: 2})) is None
    assert vote_leader(Counter()) is None


def test_results_rank_cars_and_pick_unique_leader(store: DataStore) -> None:
    category = store.create_category("Best Design", display_order=1)
    car_a = store.create_car("12", racer_name="Ava Lee", racer_id=201)
    car_b = store.create_car("3", racer_name="Ben Cho", racer_id=202)
    car_c = store.create_car("7", racer_name="Cal Diaz", racer_id=203)
    cast_votes(store, category.id, car_a.id, car_a.id, car_a.id, car_b.id, car_c.id)

    (result,) = ResultsEngine(store).get_results()

    assert result.total_votes == 5
    assert [(row.car_number, row.vote_count, row.rank) for row in result.votes] == [
        ("12", 3, 1),
        ("3", 1, 2),
        ("7", 1, 3),
    ]
    assert result.winner is not None
    assert result.winner.car_id == car_a.id
    assert result.winner.racer_id == 201
    assert result.has_override is False


def test_tied_category_has_no_winner(store: DataStore) -> None:
    category = store.create_category("Best Design")
    car_a = store.create_car("1")
    car_b = store.create_car("2")
    cast_votes(store, category.id, car_a.id, car_b.id)

    (result,) = ResultsEngine(store).get_results()

    assert result.winner is None
    assert result.total_votes == 2


def test_category_without_votes_has_no_winner(store: DataStore) -> None:
    store.create_category("Most Colorful")

    (result,) = ResultsEngine(store).get_results()

    assert result.votes == []
    assert result.winner is None


def test_override_replaces_tally_winner(store: DataStore) -> None:
    category = store.create_category("Best Design")
    leader = store.create_car("1")
    chosen = store.create_car("2")
    cast_votes(store, category.id, leader.id, leader.id, chosen.id)
    store.set_category_override(category.id, chosen.id, "leader was disqualified")

    (result,) = ResultsEngine(store).get_results()

    assert result.winner.car_id == chosen.id
    assert result.winner.vote_count == 1
    assert result.has_override is True
    assert result.override_reason == "leader was disqualified"
    # Vote rows are untouched.
    assert result.votes[0].car_id == leader.id


def test_override_car_without_votes_is_reported_with_zero(store: DataStore) -> None:
    category = store.create_category("Best Design")
    leader = store.create_car("1")
    outsider = store.create_car("99", racer_name="Dee Park")
    cast_votes(store, category.id, leader.id)
    store.set_category_override(category.id, outsider.id, "judges' choice")

    (result,) = ResultsEngine(store).get_results()

    assert result.winner.car_id == outsider.id
    assert result.winner.vote_count == 0
    assert result.winner.racer_name == "Dee Park"


def test_results_follow_display_order_and_skip_inactive(store: DataStore) -> None:
    group = store.create_category_group("Design Awards", max_wins_per_car=1)
    second = store.create_category("Most Colorful", display_order=2, group_id=group.id)
    first = store.create_category("Best Design", display_order=1)
    retired = store.create_category("Retired", display_order=0)
    store.set_category_active(retired.id, False)

    results = ResultsEngine(store).get_results()

    assert [r.category_id for r in results] == [first.id, second.id]
    assert results[1].group_name == "Design Awards"
    assert results[0].group_name == ""


def test_get_category_results_unknown_category(store: DataStore) -> None:
    with pytest.raises(NotFoundError):
        ResultsEngine(store).get_category_results(404)


def test_final_winners_and_stats(store: DataStore) -> None:
    design = store.create_category("Best Design", display_order=1)
    colorful = store.create_category("Most Colorful", display_order=2)
    store.create_category("Scariest", display_order=3)
    car_a = store.create_car("1")
    car_b = store.create_car("2")
    store.record_vote("v1", design.id, car_a.id)
    store.record_vote("v1", colorful.id, car_a.id)
    store.record_vote("v2", colorful.id, car_a.id)
    store.record_vote("v3", colorful.id, car_b.id)
    store.set_category_override(design.id, car_b.id, "tie-break by judges")

    engine = ResultsEngine(store)
    winners = engine.get_final_winners()

    assert [(w.category_name, w.winner.car_id, w.is_override) for w in winners] == [
        ("Best Design", car_b.id, True),
        ("Most Colorful", car_a.id, False),
    ]
    assert engine.get_stats() == {
        "total_votes": 4,
        "voters_who_voted": 3,
        "total_categories": 3,
        "total_cars": 2,
        "voting_open": True,
    }
