from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .config import DEFAULT_AWARD_TYPE_NAME, Settings
from .conflicts import ConflictDetector
from .derbynet import SyncClient
from .errors import ConflictError, DerbyVoteError, TransportError, ValidationError
from .results import CategoryResult, ResultsEngine


logger = logging.getLogger(__name__)


@dataclass
class PushDetail:
    category_id: int
    category_name: str
    status: str  # "pushed" or "skipped"
    award_id: Optional[int] = None
    racer_id: Optional[int] = None
    message: str = ""


@dataclass
class PushSummary:
    winners_pushed: int = 0
    awards_created: int = 0
    skipped: int = 0
    details: List[PushDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def configure_client(client: SyncClient, store, settings: Settings | None, base_url: str) -> None:
    """Point ``client`` at ``base_url`` and load the stored credentials.

    Credentials saved in the store win over the environment. The session is
    only reset when the credentials actually change.
    """

    client.set_base_url(base_url)
    role = store.get_setting("derbynet_role") or (settings.derbynet_role if settings else "")
    password = store.get_setting("derbynet_password") or (settings.derbynet_password if settings else "")
    if role and password and (role, password) != (client.session.role, client.session.password):
        logger.debug("Configuring DerbyNet credentials (role=%s)", role)
        client.set_credentials(role, password)


@contextmanager
def exclusive_session(client: SyncClient, activity: str) -> Iterator[None]:
    """Hold ``client.push_lock`` for ``activity`` or fail at once with ConflictError."""

    if not client.push_lock.acquire(blocking=False):
        raise ConflictError(f"cannot start {activity}: a DerbyNet push or sync is already in progress")
    try:
        yield
    finally:
        client.push_lock.release()


class PushCoordinator:
    """Publishes each category's winner to the racing system.

    Nothing is sent while a tie or multiple-win conflict is unresolved. Once
    sending starts, the first remote error stops the push; winners already
    published stay published. The error carries the partial
    :class:`PushSummary` as ``summary``.
    """

    def __init__(self, store, client: SyncClient, settings: Settings | None = None) -> None:
        self.store = store
        self.client = client
        self.settings = settings
        self.engine = ResultsEngine(store)
        self.detector = ConflictDetector(store)

    def push_results(self, base_url: str | None = None, cancel_event: threading.Event | None = None) -> PushSummary:
        url = (base_url or "").strip() or self._default_url()
        if not url:
            raise ValidationError("DerbyNet URL is required")

        with exclusive_session(self.client, "results push"):
            return self._push(url, cancel_event)

    def _push(self, url: str, cancel_event: threading.Event | None) -> PushSummary:
        snapshot = self.store.snapshot()
        report = self.detector.detect(snapshot)
        if report.has_conflicts:
            raise ConflictError(
                f"cannot push results: {len(report.ties)} tie(s) and "
                f"{len(report.multiple_wins)} multiple-win conflict(s) must be resolved first",
                ties=report.ties,
                multiple_wins=report.multiple_wins,
            )

        summary = PushSummary()
        plan: List[CategoryResult] = []
        for result in self.engine.get_results(snapshot):
            if result.winner is None:
                summary.skipped += 1
                summary.details.append(
                    PushDetail(
                        category_id=result.category_id,
                        category_name=result.category_name,
                        status="skipped",
                        message="no winner",
                    )
                )
                continue
            if result.winner.racer_id is None:
                raise ValidationError(
                    f"winning car {result.winner.car_number or result.winner.car_id} in "
                    f"{result.category_name!r} is not linked to DerbyNet (sync cars first)"
                )
            plan.append(result)

        award_ids = {category.id: category.award_id for category in snapshot.categories}

        configure_client(self.client, self.store, self.settings, url)
        self.store.set_setting("derbynet_url", url)
        logger.info("Pushing %d winners to DerbyNet at %s", len(plan), url)

        award_type_id: Optional[int] = None
        try:
            for result in plan:
                winner = result.winner
                award_id = award_ids.get(result.category_id)
                if award_id is None:
                    if award_type_id is None:
                        self._check_cancelled(cancel_event)
                        award_type_id = self.client.resolve_award_type_id(self._award_type_name())
                    self._check_cancelled(cancel_event)
                    award_id = self.client.create_award(result.category_name, award_type_id)
                    self.store.set_category_award_id(result.category_id, award_id)
                    summary.awards_created += 1
                    logger.info("Created DerbyNet award %s for %r", award_id, result.category_name)

                self._check_cancelled(cancel_event)
                self.client.set_award_winner(award_id, winner.racer_id)
                summary.winners_pushed += 1
                summary.details.append(
                    PushDetail(
                        category_id=result.category_id,
                        category_name=result.category_name,
                        status="pushed",
                        award_id=award_id,
                        racer_id=winner.racer_id,
                    )
                )
                logger.info(
                    "Pushed winner to DerbyNet: %r award=%s racer=%s",
                    result.category_name,
                    award_id,
                    winner.racer_id,
                )
        except DerbyVoteError as exc:
            exc.summary = summary
            logger.error(
                "Results push stopped after %d winners (%d awards created): %s",
                summary.winners_pushed,
                summary.awards_created,
                exc,
            )
            raise

        return summary

    def _default_url(self) -> str:
        stored = self.store.get_setting("derbynet_url")
        if stored:
            return stored
        return self.settings.derbynet_url if self.settings else ""

    def _award_type_name(self) -> str:
        return self.settings.award_type_name if self.settings else DEFAULT_AWARD_TYPE_NAME

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TransportError("push cancelled")
