from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .models import Snapshot, car_number_key
from .results import CarTally, car_tally, effective_winner_id, tally_votes


@dataclass
class TieConflict:
    category_id: int
    category_name: str
    tied_cars: List[CarTally] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MultiWinConflict:
    car_id: int
    car_number: str
    car_name: str
    racer_name: str
    awards_won: List[str]
    category_ids: List[int]
    group_id: int
    group_name: str
    max_wins_per_car: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConflictReport:
    ties: List[TieConflict] = field(default_factory=list)
    multiple_wins: List[MultiWinConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.ties or self.multiple_wins)


class ConflictDetector:
    """Finds ties and group-limit violations that block publishing.

    Ties are computed on the raw vote tally and stay visible after an
    override resolves them. Multiple-win accounting uses the effective
    (override-aware) winner, i.e. what would actually be published.
    """

    def __init__(self, store) -> None:
        self.store = store

    def detect(self, snapshot: Snapshot | None = None) -> ConflictReport:
        snapshot = snapshot or self.store.snapshot()
        return ConflictReport(
            ties=self.detect_ties(snapshot),
            multiple_wins=self.detect_multiple_wins(snapshot),
        )

    def detect_ties(self, snapshot: Snapshot | None = None) -> List[TieConflict]:
        snapshot = snapshot or self.store.snapshot()
        cars = snapshot.cars_by_id()
        tallies = tally_votes(snapshot.votes)

        ties: List[TieConflict] = []
        for category in snapshot.categories:
            counts = tallies.get(category.id)
            if not counts or len(counts) < 2:
                continue
            top = max(counts.values())
            if top <= 0:
                continue
            tied = [car_tally(car_id, cars, count) for car_id, count in counts.items() if count == top]
            if len(tied) < 2:
                continue
            tied.sort(key=lambda row: car_number_key(row.car_number))
            ties.append(TieConflict(category_id=category.id, category_name=category.name, tied_cars=tied))
        return ties

    def detect_multiple_wins(self, snapshot: Snapshot | None = None) -> List[MultiWinConflict]:
        snapshot = snapshot or self.store.snapshot()
        cars = snapshot.cars_by_id()
        tallies = tally_votes(snapshot.votes)

        conflicts: List[MultiWinConflict] = []
        for group in snapshot.groups:
            limit = group.max_wins_per_car
            if limit is None or limit <= 0:
                continue

            wins: Dict[int, List[tuple[int, str]]] = {}
            for category in snapshot.categories:
                if category.group_id != group.id:
                    continue
                winner_id: Optional[int] = effective_winner_id(category, tallies.get(category.id, Counter()))
                if winner_id is None:
                    continue
                wins.setdefault(winner_id, []).append((category.id, category.name))

            violations = [(car_id, won) for car_id, won in wins.items() if len(won) > limit]
            violations.sort(key=lambda item: car_number_key(cars[item[0]].car_number if item[0] in cars else ""))
            for car_id, won in violations:
                car = car_tally(car_id, cars, 0)
                conflicts.append(
                    MultiWinConflict(
                        car_id=car_id,
                        car_number=car.car_number,
                        car_name=car.car_name,
                        racer_name=car.racer_name,
                        awards_won=[name for _, name in won],
                        category_ids=[category_id for category_id, _ in won],
                        group_id=group.id,
                        group_name=group.name,
                        max_wins_per_car=limit,
                    )
                )
        return conflicts
