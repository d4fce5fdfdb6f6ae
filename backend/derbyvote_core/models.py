from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class Car:
    """A car entered in the contest.

    ``racer_id`` is the remote racing system's identifier and stays ``None``
    until the car has been synced. Cars are never hard-deleted while votes
    reference them; ``active`` is cleared instead.
    """

    id: int
    car_number: str
    racer_name: str = ""
    car_name: str = ""
    photo_url: str = ""
    rank: str = ""  # Den/rank as reported by the racing system
    eligible: bool = True
    active: bool = True
    racer_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Car":
        return cls(
            id=int(row["id"]),
            car_number=str(row.get("car_number") or ""),
            racer_name=str(row.get("racer_name") or ""),
            car_name=str(row.get("car_name") or ""),
            photo_url=str(row.get("photo_url") or ""),
            rank=str(row.get("rank") or ""),
            eligible=bool(row.get("eligible", True)),
            active=bool(row.get("active", True)),
            racer_id=_optional_int(row.get("racer_id")),
        )


@dataclass
class CategoryGroup:
    """A set of categories sharing an exclusivity rule.

    ``max_wins_per_car`` of ``None`` means a car may win any number of the
    group's categories.
    """

    id: int
    name: str
    description: str = ""
    exclusivity_pool_id: Optional[int] = None
    max_wins_per_car: Optional[int] = None
    display_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "CategoryGroup":
        return cls(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            description=str(row.get("description") or ""),
            exclusivity_pool_id=_optional_int(row.get("exclusivity_pool_id")),
            max_wins_per_car=_optional_int(row.get("max_wins_per_car")),
            display_order=int(row.get("display_order") or 0),
        )


@dataclass
class Category:
    """A single award voters vote on.

    The three override fields are either all set or all ``None``.
    """

    id: int
    name: str
    display_order: int = 0
    group_id: Optional[int] = None
    active: bool = True
    award_id: Optional[int] = None  # remote award id, assigned on first publish
    override_winner_car_id: Optional[int] = None
    override_reason: Optional[str] = None
    overridden_at: Optional[str] = None

    @property
    def has_override(self) -> bool:
        return self.override_winner_car_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Category":
        return cls(
            id=int(row["id"]),
            name=str(row.get("name") or ""),
            display_order=int(row.get("display_order") or 0),
            group_id=_optional_int(row.get("group_id")),
            active=bool(row.get("active", True)),
            award_id=_optional_int(row.get("award_id")),
            override_winner_car_id=_optional_int(row.get("override_winner_car_id")),
            override_reason=row.get("override_reason"),
            overridden_at=row.get("overridden_at"),
        )


@dataclass(frozen=True)
class Vote:
    voter_id: str
    category_id: int
    car_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Vote":
        return cls(
            voter_id=str(row["voter_id"]),
            category_id=int(row["category_id"]),
            car_id=int(row["car_id"]),
        )


@dataclass
class Snapshot:
    """One consistent read of everything the results code needs."""

    categories: list[Category] = field(default_factory=list)
    groups: list[CategoryGroup] = field(default_factory=list)
    cars: list[Car] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    voting_open: bool = True

    def cars_by_id(self) -> Dict[int, Car]:
        return {car.id: car for car in self.cars}


def car_number_key(car_number: str) -> tuple:
    """Sort key putting numeric car numbers first, in numeric order."""
    value = (car_number or "").strip()
    if value.isdigit():
        return (0, int(value), value)
    return (1, 0, value.lower())


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
