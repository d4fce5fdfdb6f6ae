from __future__ import annotations

import threading

import httpx
import pytest

from derbyvote_core import DataStore, PushCoordinator
from derbyvote_core.config import Settings
from derbyvote_core.errors import ConflictError, RemoteDomainError, TransportError, ValidationError

from tests.conftest import DERBYNET_URL, FakeDerbyNet, cast_votes


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path, derbynet_role="RaceCoordinator", derbynet_password="doyourbest")


@pytest.fixture
def contest(store: DataStore):
    design = store.create_category("Best Design", display_order=1, award_id=50)
    colorful = store.create_category("Most Colorful", display_order=2)
    scariest = store.create_category("Scariest", display_order=3)
    car_a = store.create_car("1", racer_name="Ava Lee", racer_id=201)
    car_b = store.create_car("2", racer_name="Ben Cho", racer_id=202)
    cast_votes(store, design.id, car_a.id, car_a.id, car_b.id)
    cast_votes(store, colorful.id, car_b.id)
    return design, colorful, scariest, car_a, car_b


def test_push_publishes_winners_and_creates_missing_awards(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    design, colorful, scariest, _, _ = contest
    client = derbynet.client(base_url="")

    summary = PushCoordinator(store, client, settings).push_results(DERBYNET_URL)

    assert (summary.winners_pushed, summary.awards_created, summary.skipped) == (2, 1, 1)
    assert derbynet.winners == {50: 201, 100: 202}
    assert store.get_category(colorful.id).award_id == 100
    assert store.get_category(design.id).award_id == 50
    assert [(d.category_id, d.status) for d in summary.details] == [
        (scariest.id, "skipped"),
        (design.id, "pushed"),
        (colorful.id, "pushed"),
    ]
    assert store.get_setting("derbynet_url") == DERBYNET_URL
    # Award type resolved once, using the "Design" type.
    assert derbynet.count("award.list") == 1
    _, _, form = next(item for item in derbynet.writes if item[1] == "award.edit")
    assert form["awardtypeid"] == "3"
    assert form["name"] == "Most Colorful"


def test_second_push_reuses_created_award(store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest) -> None:
    client = derbynet.client()
    coordinator = PushCoordinator(store, client, settings)

    coordinator.push_results(DERBYNET_URL)
    summary = coordinator.push_results(DERBYNET_URL)

    assert summary.awards_created == 0
    assert summary.winners_pushed == 2
    assert derbynet.count("award.edit") == 1


def test_push_with_conflicts_makes_no_remote_calls(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    _, _, scariest, car_a, car_b = contest
    cast_votes(store, scariest.id, car_a.id, car_b.id)

    with pytest.raises(ConflictError) as excinfo:
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    assert [tie.category_id for tie in excinfo.value.ties] == [scariest.id]
    assert excinfo.value.multiple_wins == []
    assert derbynet.requests == []


def test_push_is_blocked_by_multiple_wins(store: DataStore, derbynet: FakeDerbyNet, settings: Settings) -> None:
    group = store.create_category_group("Design Awards", max_wins_per_car=1)
    fastest = store.create_category("Fastest", display_order=1, group_id=group.id)
    design = store.create_category("Best Design", display_order=2, group_id=group.id)
    car = store.create_car("1", racer_id=201)
    cast_votes(store, fastest.id, car.id)
    cast_votes(store, design.id, car.id)

    with pytest.raises(ConflictError) as excinfo:
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    assert [c.awards_won for c in excinfo.value.multiple_wins] == [["Fastest", "Best Design"]]
    assert derbynet.requests == []


def test_push_still_blocked_after_overriding_a_tie(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    _, _, scariest, car_a, car_b = contest
    cast_votes(store, scariest.id, car_a.id, car_b.id)
    store.set_category_override(scariest.id, car_b.id, "judges broke the tie")

    with pytest.raises(ConflictError):
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    assert derbynet.requests == []


def test_unlinked_winner_fails_before_remote_calls(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    _, _, scariest, _, _ = contest
    local_only = store.create_car("3", racer_name="Cal Diaz")
    cast_votes(store, scariest.id, local_only.id)

    with pytest.raises(ValidationError, match="not linked"):
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    assert derbynet.requests == []


def test_push_requires_a_url(store: DataStore, derbynet: FakeDerbyNet, contest) -> None:
    with pytest.raises(ValidationError):
        PushCoordinator(store, derbynet.client(base_url="")).push_results()


def test_push_falls_back_to_stored_url(store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest) -> None:
    store.set_setting("derbynet_url", DERBYNET_URL)

    summary = PushCoordinator(store, derbynet.client(base_url=""), settings).push_results()

    assert summary.winners_pushed == 2


def test_remote_error_stops_push_with_partial_summary(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    derbynet.script("award.edit", {"outcome": {"summary": "failure", "code": "sql", "description": "Database locked"}})
    client = derbynet.client()

    with pytest.raises(RemoteDomainError) as excinfo:
        PushCoordinator(store, client, settings).push_results(DERBYNET_URL)

    summary = excinfo.value.summary
    assert (summary.winners_pushed, summary.awards_created, summary.skipped) == (1, 0, 1)
    assert derbynet.winners == {50: 201}
    # The lock is released after a failed push.
    assert client.push_lock.acquire(blocking=False)
    client.push_lock.release()


def test_transport_failure_mid_push(store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest) -> None:
    derbynet.script("award.winner", httpx.Response(200, json={"outcome": {"summary": "success"}}), httpx.Response(503))

    with pytest.raises(TransportError) as excinfo:
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    assert excinfo.value.summary.winners_pushed == 1
    assert excinfo.value.summary.awards_created == 1


def test_stored_credentials_win_over_settings(
    store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest
) -> None:
    store.set_setting("derbynet_role", "Judge")
    store.set_setting("derbynet_password", "secret")

    PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL)

    logins = [form for _, action, form in derbynet.requests if action == "role.login"]
    assert [(form["name"], form["password"]) for form in logins] == [("Judge", "secret")]


def test_cancelled_push_sends_nothing(store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest) -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TransportError, match="push cancelled"):
        PushCoordinator(store, derbynet.client(), settings).push_results(DERBYNET_URL, cancel_event=cancel)

    assert derbynet.writes == []


def test_concurrent_push_is_refused(store: DataStore, derbynet: FakeDerbyNet, settings: Settings, contest) -> None:
    client = derbynet.client()
    client.push_lock.acquire()
    try:
        with pytest.raises(ConflictError, match="already in progress"):
            PushCoordinator(store, client, settings).push_results(DERBYNET_URL)
    finally:
        client.push_lock.release()

    assert derbynet.requests == []
