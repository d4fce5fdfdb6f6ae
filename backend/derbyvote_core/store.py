from __future__ import annotations

import datetime as dt
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import ConflictError, InternalError, NotFoundError, ValidationError, VotingOpenError
from .models import Car, Category, CategoryGroup, Snapshot, Vote, car_number_key


logger = logging.getLogger(__name__)

_EMPTY_DOCUMENT: Dict[str, Any] = {
    "categories": [],
    "groups": [],
    "cars": [],
    "votes": [],
    "settings": {},
}


class DataStore:
    """Local persistence for categories, groups, cars, votes and settings.

    Everything lives in one JSON document under ``data_dir``. Each call reads
    the document, and mutating calls write it back, all under one lock so a
    :meth:`snapshot` never observes a half-applied change.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or (Path(__file__).parent.parent / "data")
        self.path = self.data_dir / "derbyvote.json"
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Consistent reads

    def snapshot(self) -> Snapshot:
        with self._lock:
            doc = self._load()
        return Snapshot(
            categories=self._active_categories(doc),
            groups=self._groups(doc),
            cars=[Car.from_dict(row) for row in doc["cars"]],
            votes=[Vote.from_dict(row) for row in doc["votes"]],
            voting_open=self._voting_open(doc),
        )

    # ------------------------------------------------------------------
    # Categories and groups

    def list_categories(self, include_inactive: bool = False) -> List[Category]:
        with self._lock:
            doc = self._load()
        if include_inactive:
            categories = [Category.from_dict(row) for row in doc["categories"]]
            return sorted(categories, key=lambda c: (c.display_order, c.id))
        return self._active_categories(doc)

    def get_category(self, category_id: int) -> Category:
        with self._lock:
            doc = self._load()
        return Category.from_dict(self._find(doc["categories"], category_id, "category"))

    def create_category(
        self,
        name: str,
        display_order: int = 0,
        group_id: int | None = None,
        award_id: int | None = None,
        active: bool = True,
    ) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("category name is required")

        with self._edit() as doc:
            if group_id is not None:
                self._find(doc["groups"], group_id, "category group")
            category = Category(
                id=self._next_id(doc["categories"]),
                name=name,
                display_order=display_order,
                group_id=group_id,
                active=active,
                award_id=award_id,
            )
            doc["categories"].append(category.to_dict())
        return category

    def set_category_active(self, category_id: int, active: bool) -> None:
        with self._edit() as doc:
            row = self._find(doc["categories"], category_id, "category")
            row["active"] = bool(active)

    def list_category_groups(self) -> List[CategoryGroup]:
        with self._lock:
            doc = self._load()
        return self._groups(doc)

    def get_category_group(self, group_id: int) -> CategoryGroup:
        with self._lock:
            doc = self._load()
        return CategoryGroup.from_dict(self._find(doc["groups"], group_id, "category group"))

    def create_category_group(
        self,
        name: str,
        max_wins_per_car: int | None = None,
        display_order: int = 0,
        exclusivity_pool_id: int | None = None,
        description: str = "",
    ) -> CategoryGroup:
        name = (name or "").strip()
        if not name:
            raise ValidationError("group name is required")
        if max_wins_per_car is not None and max_wins_per_car < 1:
            raise ValidationError("max_wins_per_car must be at least 1")

        with self._edit() as doc:
            group = CategoryGroup(
                id=self._next_id(doc["groups"]),
                name=name,
                description=description,
                exclusivity_pool_id=exclusivity_pool_id,
                max_wins_per_car=max_wins_per_car,
                display_order=display_order,
            )
            doc["groups"].append(group.to_dict())
        return group

    # ------------------------------------------------------------------
    # Override and remote linkage fields

    def set_category_override(
        self,
        category_id: int,
        car_id: int,
        reason: str,
        overridden_at: str | None = None,
        require_closed: bool = False,
    ) -> Category:
        """Write all three override fields.

        With ``require_closed`` the voting-open check happens under the same
        lock as the write, so voting cannot reopen in between.
        """

        with self._edit() as doc:
            if require_closed and self._voting_open(doc):
                raise VotingOpenError()
            row = self._find(doc["categories"], category_id, "category")
            self._find(doc["cars"], car_id, "car")
            row["override_winner_car_id"] = car_id
            row["override_reason"] = reason
            row["overridden_at"] = overridden_at or self._utc_now_iso()
            category = Category.from_dict(row)
        return category

    def clear_category_override(self, category_id: int, require_closed: bool = False) -> Category:
        with self._edit() as doc:
            if require_closed and self._voting_open(doc):
                raise VotingOpenError()
            row = self._find(doc["categories"], category_id, "category")
            row["override_winner_car_id"] = None
            row["override_reason"] = None
            row["overridden_at"] = None
            category = Category.from_dict(row)
        return category

    def set_category_award_id(self, category_id: int, award_id: int) -> None:
        with self._edit() as doc:
            row = self._find(doc["categories"], category_id, "category")
            row["award_id"] = award_id

    def upsert_category_from_award(self, name: str, display_order: int, award_id: int) -> bool:
        """Link or create the category named ``name``; returns True if created."""

        with self._edit() as doc:
            for row in doc["categories"]:
                if row.get("name") == name:
                    row["award_id"] = award_id
                    row["display_order"] = display_order
                    return False
            category = Category(
                id=self._next_id(doc["categories"]),
                name=name,
                display_order=display_order,
                award_id=award_id,
            )
            doc["categories"].append(category.to_dict())
        return True

    # ------------------------------------------------------------------
    # Cars

    def list_cars(self, include_inactive: bool = False) -> List[Car]:
        with self._lock:
            doc = self._load()
        cars = [Car.from_dict(row) for row in doc["cars"]]
        if not include_inactive:
            cars = [car for car in cars if car.active]
        return sorted(cars, key=lambda car: car_number_key(car.car_number))

    def get_car(self, car_id: int) -> Car:
        with self._lock:
            doc = self._load()
        return Car.from_dict(self._find(doc["cars"], car_id, "car"))

    def get_car_by_racer_id(self, racer_id: int) -> Optional[Car]:
        with self._lock:
            doc = self._load()
        for row in doc["cars"]:
            if row.get("racer_id") == racer_id:
                return Car.from_dict(row)
        return None

    def create_car(
        self,
        car_number: str,
        racer_name: str = "",
        car_name: str = "",
        photo_url: str = "",
        rank: str = "",
        racer_id: int | None = None,
        eligible: bool = True,
    ) -> Car:
        car_number = str(car_number or "").strip()
        if not car_number:
            raise ValidationError("car number is required")

        with self._edit() as doc:
            car = Car(
                id=self._next_id(doc["cars"]),
                car_number=car_number,
                racer_name=racer_name,
                car_name=car_name,
                photo_url=photo_url,
                rank=rank,
                eligible=eligible,
                racer_id=racer_id,
            )
            doc["cars"].append(car.to_dict())
        return car

    def set_car_eligibility(self, car_id: int, eligible: bool) -> None:
        with self._edit() as doc:
            row = self._find(doc["cars"], car_id, "car")
            row["eligible"] = bool(eligible)

    def upsert_car_from_racer(
        self,
        racer_id: int,
        car_number: str,
        racer_name: str,
        car_name: str,
        photo_url: str,
        rank: str,
    ) -> bool:
        """Create or refresh the car linked to ``racer_id``; returns True if created."""

        fields = {
            "car_number": car_number,
            "racer_name": racer_name,
            "car_name": car_name,
            "photo_url": photo_url,
            "rank": rank,
        }
        with self._edit() as doc:
            for row in doc["cars"]:
                if row.get("racer_id") == racer_id:
                    row.update(fields)
                    row["active"] = True
                    return False
            car = Car(id=self._next_id(doc["cars"]), racer_id=racer_id, **fields)
            doc["cars"].append(car.to_dict())
        return True

    # ------------------------------------------------------------------
    # Votes

    def list_votes(self) -> List[Vote]:
        with self._lock:
            doc = self._load()
        return [Vote.from_dict(row) for row in doc["votes"]]

    def record_vote(self, voter_id: str, category_id: int, car_id: int) -> Vote:
        """Store a voter's choice, replacing any earlier choice in the category.

        When the category's group belongs to an exclusivity pool, the voter's
        vote for the same car in any other category of that pool is removed.
        """

        voter_id = str(voter_id or "").strip()
        if not voter_id:
            raise ValidationError("voter id is required")

        with self._edit() as doc:
            if not self._voting_open(doc):
                raise ConflictError("voting is currently closed")
            category = Category.from_dict(self._find(doc["categories"], category_id, "category"))
            if not category.active:
                raise ValidationError(f"category {category_id} is not active")
            car = Car.from_dict(self._find(doc["cars"], car_id, "car"))
            if not car.eligible or not car.active:
                raise ValidationError("car is not eligible for voting")

            pooled = self._pooled_category_ids(doc, category)
            mine = [row for row in doc["votes"] if row.get("voter_id") == voter_id]
            cleared = [row["category_id"] for row in mine if row.get("car_id") == car_id and row.get("category_id") in pooled]
            dropped = {category_id, *cleared}

            vote = Vote(voter_id=voter_id, category_id=category_id, car_id=car_id)
            doc["votes"] = [
                row
                for row in doc["votes"]
                if not (row.get("voter_id") == voter_id and row.get("category_id") in dropped)
            ]
            doc["votes"].append(vote.to_dict())

        for other_id in cleared:
            logger.info("Cleared conflicting vote: voter %s, category %s, car %s", voter_id, other_id, car_id)
        return vote

    def reset_votes(self) -> int:
        with self._edit() as doc:
            removed = len(doc["votes"])
            doc["votes"] = []
        logger.info("Cleared %d votes", removed)
        return removed

    # ------------------------------------------------------------------
    # Settings

    def is_voting_open(self) -> bool:
        with self._lock:
            doc = self._load()
        return self._voting_open(doc)

    def set_voting_open(self, is_open: bool) -> None:
        self.set_setting("voting_open", "true" if is_open else "false")

    def get_setting(self, key: str, default: str = "") -> str:
        with self._lock:
            doc = self._load()
        value = doc["settings"].get(key)
        return default if value is None else str(value)

    def set_setting(self, key: str, value: str) -> None:
        with self._edit() as doc:
            doc["settings"][key] = value

    # ---- internal helpers -------------------------------------------------

    @contextmanager
    def _edit(self) -> Iterator[Dict[str, Any]]:
        with self._lock:
            doc = self._load()
            yield doc
            self._write_json_file(self.path, doc)

    def _load(self) -> Dict[str, Any]:
        raw = self._read_json_file(self.path, {})
        doc: Dict[str, Any] = {}
        for key, default in _EMPTY_DOCUMENT.items():
            value = raw.get(key) if isinstance(raw, dict) else None
            doc[key] = value if isinstance(value, type(default)) else type(default)()
        return doc

    @staticmethod
    def _active_categories(doc: Dict[str, Any]) -> List[Category]:
        categories = [Category.from_dict(row) for row in doc["categories"] if row.get("active", True)]
        return sorted(categories, key=lambda c: (c.display_order, c.id))

    @staticmethod
    def _groups(doc: Dict[str, Any]) -> List[CategoryGroup]:
        groups = [CategoryGroup.from_dict(row) for row in doc["groups"]]
        return sorted(groups, key=lambda g: (g.display_order, g.id))

    @staticmethod
    def _pooled_category_ids(doc: Dict[str, Any], category: Category) -> set[int]:
        """Ids of the other categories sharing ``category``'s exclusivity pool."""
        pools = {
            group.id: group.exclusivity_pool_id for group in (CategoryGroup.from_dict(row) for row in doc["groups"])
        }
        pool_id = pools.get(category.group_id) if category.group_id is not None else None
        if pool_id is None:
            return set()
        return {
            int(row["id"])
            for row in doc["categories"]
            if row.get("id") != category.id and row.get("group_id") is not None and pools.get(row.get("group_id")) == pool_id
        }

    @staticmethod
    def _voting_open(doc: Dict[str, Any]) -> bool:
        value = doc["settings"].get("voting_open")
        if value is None:
            return True
        return str(value).lower() == "true"

    @staticmethod
    def _find(rows: List[Dict[str, Any]], item_id: int, label: str) -> Dict[str, Any]:
        for row in rows:
            if row.get("id") == item_id:
                return row
        raise NotFoundError(f"{label} {item_id} not found")

    @staticmethod
    def _next_id(rows: List[Dict[str, Any]]) -> int:
        return max((int(row.get("id") or 0) for row in rows), default=0) + 1

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            # A corrupt document is never replaced by an empty one.
            raise InternalError(f"Failed to read local data store {path}: {exc}") from exc

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise InternalError(f"Failed to write local data store {path}") from exc

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
