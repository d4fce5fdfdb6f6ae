"""Pull racers and awards from DerbyNet into the local store."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .config import DEFAULT_AWARD_TYPE_NAME, Settings
from .derbynet import SyncClient
from .errors import AuthenticationError, DerbyVoteError, RemoteError, ValidationError
from .push import configure_client, exclusive_session


logger = logging.getLogger(__name__)


@dataclass
class CarSyncResult:
    total_racers: int = 0
    cars_created: int = 0
    cars_updated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CategorySyncResult:
    total_awards: int = 0
    categories_created: int = 0
    categories_updated: int = 0
    awards_created: int = 0
    auth_error: str = ""
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RemoteSync:
    def __init__(self, store, client: SyncClient, settings: Settings | None = None) -> None:
        self.store = store
        self.client = client
        self.settings = settings

    def sync_cars(self, base_url: str) -> CarSyncResult:
        """Create or refresh a local car for every DerbyNet racer."""

        with exclusive_session(self.client, "car sync"):
            return self._sync_cars(base_url)

    def sync_categories(self, base_url: str) -> CategorySyncResult:
        """Link local categories and DerbyNet awards in both directions.

        Remote awards become (or update) local categories of the same name.
        Local categories still lacking an award id are then linked to a
        same-named remote award, or created remotely. A failed login stops the
        push half but is reported rather than raised.
        """

        with exclusive_session(self.client, "category sync"):
            return self._sync_categories(base_url)

    def _sync_cars(self, base_url: str) -> CarSyncResult:
        url = self._prepare(base_url)
        racers = self.client.fetch_racers()
        logger.info("Fetched %d racers from DerbyNet", len(racers))

        result = CarSyncResult(total_racers=len(racers))
        for racer in racers:
            if not racer.racer_id:
                result.errors.append(f"racer without id skipped ({racer.racer_name or 'unnamed'})")
                continue
            try:
                created = self.store.upsert_car_from_racer(
                    racer_id=racer.racer_id,
                    car_number=racer.car_number,
                    racer_name=racer.racer_name,
                    car_name=racer.car_name,
                    photo_url=_photo_url(url, racer.car_photo),
                    rank=racer.rank,
                )
            except DerbyVoteError as exc:
                logger.error("Error syncing racer %s: %s", racer.racer_id, exc)
                result.errors.append(f"failed to sync racer {racer.racer_id}: {exc}")
                continue
            if created:
                result.cars_created += 1
            else:
                result.cars_updated += 1

        logger.info(
            "Car sync finished: %d created, %d updated, %d errors",
            result.cars_created,
            result.cars_updated,
            len(result.errors),
        )
        return result

    def _sync_categories(self, base_url: str) -> CategorySyncResult:
        self._prepare(base_url)
        awards = self.client.fetch_awards()
        logger.info("Fetched %d awards from DerbyNet", len(awards))

        result = CategorySyncResult(total_awards=len(awards))
        awards_by_name: Dict[str, int] = {}
        for award in awards:
            awards_by_name[award.name] = award.award_id
            display_order = award.sort or award.award_id
            try:
                created = self.store.upsert_category_from_award(award.name, display_order, award.award_id)
            except DerbyVoteError as exc:
                logger.error("Error syncing award %s (%r): %s", award.award_id, award.name, exc)
                result.errors.append(f"failed to sync award {award.name!r}: {exc}")
                continue
            if created:
                result.categories_created += 1
            else:
                result.categories_updated += 1

        award_type_id: Optional[int] = None
        for category in self.store.list_categories():
            if category.award_id is not None:
                continue

            existing = awards_by_name.get(category.name)
            if existing is not None:
                logger.info("Linking category %r to existing DerbyNet award %s", category.name, existing)
                self.store.set_category_award_id(category.id, existing)
                result.categories_updated += 1
                continue

            if award_type_id is None:
                award_type_id = self.client.resolve_award_type_id(self._award_type_name())
            try:
                new_id = self.client.create_award(category.name, award_type_id)
            except AuthenticationError as exc:
                logger.error("Authentication failed while creating award %r: %s", category.name, exc)
                result.auth_error = str(exc)
                break
            except RemoteError as exc:
                logger.error("Failed to create award %r in DerbyNet: %s", category.name, exc)
                result.errors.append(f"failed to create award {category.name!r}: {exc}")
                continue
            self.store.set_category_award_id(category.id, new_id)
            result.awards_created += 1
            logger.info("Created DerbyNet award %s for category %r", new_id, category.name)

        return result

    def _prepare(self, base_url: str) -> str:
        url = (base_url or "").strip().rstrip("/")
        if not url:
            raise ValidationError("DerbyNet URL is required")
        configure_client(self.client, self.store, self.settings, url)
        self.store.set_setting("derbynet_url", url)
        return url

    def _award_type_name(self) -> str:
        return self.settings.award_type_name if self.settings else DEFAULT_AWARD_TYPE_NAME


def _photo_url(base_url: str, photo_path: str) -> str:
    if not photo_path:
        return ""
    if photo_path.startswith(("http://", "https://")):
        return photo_path
    return f"{base_url.rstrip('/')}/{photo_path.lstrip('/')}"
