from __future__ import annotations

import itertools
from typing import Any, Dict, List, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest

from derbyvote_core import DataStore, SyncClient

DERBYNET_URL = "http://derbynet.test"

SUCCESS = {"outcome": {"summary": "success"}}
NOT_AUTHORIZED = {"outcome": {"summary": "failure", "code": "notauthorized", "description": "Not authorized"}}

_voter_ids = itertools.count(1)


class FakeDerbyNet:
    """In-process stand-in for DerbyNet's action.php, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[Tuple[str, str, Dict[str, str]]] = []
        self.racers: List[Dict[str, Any]] = []
        self.awards: List[Dict[str, Any]] = []
        self.award_types: List[Dict[str, Any]] = [
            {"awardtypeid": 1, "awardtype": "Speed"},
            {"awardtypeid": 3, "awardtype": "Design"},
        ]
        self.winners: Dict[int, int] = {}
        self.scripted: Dict[str, List[Any]] = {}
        self.next_award_id = 100

    def script(self, action: str, *responses: Any) -> None:
        """Queue canned responses (payload dicts or httpx.Response) for an action or query."""
        self.scripted.setdefault(action, []).extend(responses)

    def count(self, action: str) -> int:
        return sum(1 for _, name, _ in self.requests if name == action)

    @property
    def writes(self) -> List[Tuple[str, str, Dict[str, str]]]:
        return [item for item in self.requests if item[0] == "POST" and item[1] != "role.login"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            params = dict(request.url.params)
            name = params.get("query", "")
            self.requests.append(("GET", name, params))
        else:
            params = dict(parse_qsl(request.read().decode()))
            name = params.get("action", "")
            self.requests.append(("POST", name, params))

        queued = self.scripted.get(name)
        if queued:
            canned = queued.pop(0)
            if isinstance(canned, httpx.Response):
                return canned
            return httpx.Response(200, json=canned)

        if name == "racer.list":
            return httpx.Response(200, json={"racers": self.racers})
        if name == "award.list":
            return httpx.Response(200, json={"awards": self.awards, "award-types": self.award_types})
        if name == "role.login":
            return httpx.Response(200, json=SUCCESS)
        if name == "award.edit":
            award_id = self.next_award_id
            self.next_award_id += 1
            # DerbyNet answers with the full award list, newest not necessarily last.
            self.awards.insert(0, {"awardid": award_id, "awardname": params["name"], "awardtypeid": params["awardtypeid"]})
            return httpx.Response(200, json={"awards": self.awards, **SUCCESS})
        if name == "award.winner":
            self.winners[int(params["awardid"])] = int(params["racerid"])
            return httpx.Response(200, json=SUCCESS)
        return httpx.Response(400, json={"outcome": {"summary": "failure", "code": "unknown"}})

    def client(self, **kwargs: Any) -> SyncClient:
        kwargs.setdefault("base_url", DERBYNET_URL)
        return SyncClient(transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture
def store(tmp_path) -> DataStore:
    return DataStore(data_dir=tmp_path)


@pytest.fixture
def derbynet() -> FakeDerbyNet:
    return FakeDerbyNet()


def cast_votes(store: DataStore, category_id: int, *car_ids: int) -> None:
    """Record one vote per car id, each from a fresh voter."""
    for car_id in car_ids:
        store.record_vote(f"voter-{next(_voter_ids)}", category_id, car_id)
