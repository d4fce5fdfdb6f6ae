from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import NotFoundError
from .models import Car, Category, Snapshot, Vote, car_number_key


@dataclass
class CarTally:
    car_id: int
    car_number: str
    car_name: str
    racer_name: str
    photo_url: str
    racer_id: Optional[int]
    vote_count: int
    rank: Optional[int] = None


@dataclass
class CategoryResult:
    category_id: int
    category_name: str
    display_order: int
    group_id: Optional[int]
    group_name: str
    total_votes: int
    votes: List[CarTally] = field(default_factory=list)
    winner: Optional[CarTally] = None
    has_override: bool = False
    override_car_id: Optional[int] = None
    override_reason: Optional[str] = None
    overridden_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FinalWinner:
    category_id: int
    category_name: str
    winner: CarTally
    is_override: bool
    override_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def tally_votes(votes: Iterable[Vote]) -> Dict[int, Counter]:
    """Count votes per car, keyed by category id."""
    tallies: Dict[int, Counter] = defaultdict(Counter)
    for vote in votes:
        tallies[vote.category_id][vote.car_id] += 1
    return tallies


def vote_leader(counts: Counter) -> Optional[int]:
    """Return the car holding the strict maximum positive count, if any."""
    if not counts:
        return None
    top = max(counts.values())
    if top <= 0:
        return None
    leaders = [car_id for car_id, count in counts.items() if count == top]
    if len(leaders) != 1:
        return None
    return leaders[0]


def effective_winner_id(category: Category, counts: Counter) -> Optional[int]:
    """The override car when one is set, otherwise the unique vote leader."""
    if category.override_winner_car_id is not None:
        return category.override_winner_car_id
    return vote_leader(counts)


def car_tally(car_id: int, cars: Dict[int, Car], vote_count: int, rank: Optional[int] = None) -> CarTally:
    car = cars.get(car_id)
    if car is None:
        return CarTally(
            car_id=car_id,
            car_number="",
            car_name="",
            racer_name="",
            photo_url="",
            racer_id=None,
            vote_count=vote_count,
            rank=rank,
        )
    return CarTally(
        car_id=car.id,
        car_number=car.car_number,
        car_name=car.car_name,
        racer_name=car.racer_name,
        photo_url=car.photo_url,
        racer_id=car.racer_id,
        vote_count=vote_count,
        rank=rank,
    )


def ranked_tallies(counts: Counter, cars: Dict[int, Car]) -> List[CarTally]:
    ordered = sorted(
        counts.items(),
        key=lambda item: (-item[1], car_number_key(cars[item[0]].car_number if item[0] in cars else "")),
    )
    return [car_tally(car_id, cars, count, rank=index + 1) for index, (car_id, count) in enumerate(ordered)]


class ResultsEngine:
    """Tallies votes per category and works out each category's winner.

    All methods are pure reads over a single store snapshot.
    """

    def __init__(self, store) -> None:
        self.store = store

    def get_results(self, snapshot: Snapshot | None = None) -> List[CategoryResult]:
        snapshot = snapshot or self.store.snapshot()
        cars = snapshot.cars_by_id()
        group_names = {group.id: group.name for group in snapshot.groups}
        tallies = tally_votes(snapshot.votes)

        results: List[CategoryResult] = []
        for category in snapshot.categories:
            counts = tallies.get(category.id, Counter())
            votes = ranked_tallies(counts, cars)

            winner: Optional[CarTally] = None
            winner_id = effective_winner_id(category, counts)
            if winner_id is not None:
                winner = next((row for row in votes if row.car_id == winner_id), None)
                if winner is None:
                    # Override car that received no votes in this category.
                    winner = car_tally(winner_id, cars, 0)

            results.append(
                CategoryResult(
                    category_id=category.id,
                    category_name=category.name,
                    display_order=category.display_order,
                    group_id=category.group_id,
                    group_name=group_names.get(category.group_id, "") if category.group_id is not None else "",
                    total_votes=sum(counts.values()),
                    votes=votes,
                    winner=winner,
                    has_override=category.has_override,
                    override_car_id=category.override_winner_car_id,
                    override_reason=category.override_reason,
                    overridden_at=category.overridden_at,
                )
            )
        return results

    def get_category_results(self, category_id: int) -> CategoryResult:
        for result in self.get_results():
            if result.category_id == category_id:
                return result
        raise NotFoundError(f"category {category_id} not found")

    def get_final_winners(self) -> List[FinalWinner]:
        winners: List[FinalWinner] = []
        for result in self.get_results():
            if result.winner is None:
                continue
            winners.append(
                FinalWinner(
                    category_id=result.category_id,
                    category_name=result.category_name,
                    winner=result.winner,
                    is_override=result.has_override,
                    override_reason=result.override_reason,
                )
            )
        return winners

    def get_stats(self) -> Dict[str, Any]:
        snapshot = self.store.snapshot()
        return {
            "total_votes": len(snapshot.votes),
            "voters_who_voted": len({vote.voter_id for vote in snapshot.votes}),
            "total_categories": len(snapshot.categories),
            "total_cars": sum(1 for car in snapshot.cars if car.active),
            "voting_open": snapshot.voting_open,
        }
