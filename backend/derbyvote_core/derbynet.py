"""Client for the DerbyNet racing system's ``action.php`` endpoint.

Reads are query GETs (``?query=racer.list``); writes are form-encoded POSTs
carrying an ``action`` field. Every response may contain an ``outcome``
object; ``summary == "failure"`` marks a rejected call.

The client keeps a :class:`Session` (role, password, authenticated flag) and
an ``httpx.Client`` whose cookie jar holds the remote session cookie. Before
a write it logs in if needed. A write answered with ``notauthorized`` causes
exactly one re-login and one retry of that write; a second failure is raised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

import httpx

from .config import DEFAULT_AWARD_TYPE_ID, DEFAULT_AWARD_TYPE_NAME
from .errors import AuthenticationError, RemoteDomainError, RemoteError, TransportError, ValidationError


logger = logging.getLogger(__name__)

ACTION_PATH = "action.php"


class OutcomeCode(str, Enum):
    NOT_AUTHORIZED = "notauthorized"
    LOGIN_FAILED = "login"
    AUTH_FAILED = "authfailed"


# The only code that triggers re-login and retry.
REAUTHENTICATE_CODE = OutcomeCode.NOT_AUTHORIZED

_AUTH_CODES = {code.value for code in OutcomeCode}


@dataclass
class Outcome:
    summary: str = ""
    code: str = ""
    description: str = ""

    @property
    def failed(self) -> bool:
        return self.summary == "failure"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Outcome":
        raw = payload.get("outcome") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            return cls()
        return cls(
            summary=str(raw.get("summary") or ""),
            code=str(raw.get("code") or ""),
            description=str(raw.get("description") or ""),
        )


@dataclass
class Racer:
    racer_id: int
    first_name: str
    last_name: str
    car_number: str
    car_name: str = ""
    car_photo: str = ""
    rank: str = ""

    @property
    def racer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_payload(cls, row: Dict[str, Any]) -> "Racer":
        return cls(
            racer_id=_int(row.get("racerid")),
            first_name=_flex_string(row.get("firstname")),
            last_name=_flex_string(row.get("lastname")),
            car_number=_flex_string(row.get("carnumber")),
            car_name=_flex_string(row.get("carname")),
            car_photo=_flex_string(row.get("car_photo")),
            rank=_flex_string(row.get("rank")),
        )


@dataclass
class Award:
    award_id: int
    name: str
    award_type: str = ""
    class_id: int = 0
    class_name: str = ""
    rank_id: int = 0
    rank_name: str = ""
    sort: int = 0

    @classmethod
    def from_payload(cls, row: Dict[str, Any]) -> "Award":
        return cls(
            award_id=_int(row.get("awardid")),
            name=_flex_string(row.get("awardname")),
            award_type=_flex_string(row.get("awardtype")),
            class_id=_int(row.get("classid")),
            class_name=_flex_string(row.get("class")),
            rank_id=_int(row.get("rankid")),
            rank_name=_flex_string(row.get("rank")),
            sort=_int(row.get("sort")),
        )


@dataclass
class AwardType:
    award_type_id: int
    name: str

    @classmethod
    def from_payload(cls, row: Dict[str, Any]) -> "AwardType":
        return cls(award_type_id=_int(row.get("awardtypeid")), name=_flex_string(row.get("awardtype")))


@dataclass
class Session:
    role: str = ""
    password: str = ""
    authenticated: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.role and self.password)


class SyncClient:
    """Session-holding client for one DerbyNet server."""

    def __init__(
        self,
        base_url: str = "",
        role: str = "",
        password: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.session = Session(role=role, password=password)
        # Held for the whole of a push or sync: one session user per client at a time.
        self.push_lock = threading.Lock()
        self._http = httpx.Client(timeout=timeout, transport=transport, follow_redirects=True)

    def __enter__(self) -> "SyncClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_base_url(self, url: str) -> None:
        url = (url or "").strip().rstrip("/")
        if url != self._base_url:
            # A different server means a different session.
            self.session.authenticated = False
        self._base_url = url

    def set_credentials(self, role: str, password: str) -> None:
        self.session = Session(role=role, password=password)

    # ------------------------------------------------------------------
    # Authentication

    def login(self, role: str, password: str) -> None:
        payload = self._post("role.login", {"name": role, "password": password})
        outcome = Outcome.from_payload(payload)
        if outcome.failed:
            self.session.authenticated = False
            raise AuthenticationError(
                f"DerbyNet login failed: {outcome.description} ({outcome.code})",
                code=outcome.code,
                description=outcome.description,
            )

        self.session = Session(role=role, password=password, authenticated=True)
        logger.info("DerbyNet login successful (role=%s)", role)

    def _ensure_authenticated(self) -> None:
        if self.session.authenticated or not self.session.has_credentials:
            return
        logger.debug("Not authenticated, logging in before request")
        try:
            self.login(self.session.role, self.session.password)
        except AuthenticationError:
            raise
        except RemoteError as exc:
            raise AuthenticationError(f"failed to authenticate with DerbyNet: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads

    def fetch_racers(self) -> List[Racer]:
        payload = self._get("racer.list", {"render": "200x200"})
        rows = payload.get("racers")
        if not isinstance(rows, list):
            return []
        return [Racer.from_payload(row) for row in rows if isinstance(row, dict)]

    def fetch_awards(self) -> List[Award]:
        payload = self._get("award.list")
        rows = payload.get("awards")
        if not isinstance(rows, list):
            return []
        return [Award.from_payload(row) for row in rows if isinstance(row, dict)]

    def fetch_award_types(self) -> List[AwardType]:
        payload = self._get("award.list")
        rows = payload.get("award-types")
        if not isinstance(rows, list):
            return []
        return [AwardType.from_payload(row) for row in rows if isinstance(row, dict)]

    def resolve_award_type_id(self, preferred_name: str = DEFAULT_AWARD_TYPE_NAME) -> int:
        """Pick the award type for newly created awards.

        The type named ``preferred_name`` wins, then the first type the server
        lists, then :data:`DEFAULT_AWARD_TYPE_ID` when the server lists none or
        cannot be asked.
        """

        try:
            award_types = self.fetch_award_types()
        except RemoteError as exc:
            logger.warning("Failed to fetch award types, using default id %s: %s", DEFAULT_AWARD_TYPE_ID, exc)
            return DEFAULT_AWARD_TYPE_ID

        wanted = (preferred_name or "").strip().lower()
        for award_type in award_types:
            if award_type.name.strip().lower() == wanted:
                return award_type.award_type_id
        if award_types:
            return award_types[0].award_type_id
        return DEFAULT_AWARD_TYPE_ID

    # ------------------------------------------------------------------
    # Writes

    def create_award(self, name: str, award_type_id: int) -> int:
        """Create an award and return its id.

        The response lists awards in no guaranteed order, so the new award is
        located by name.
        """

        payload = self._write(
            "award.edit",
            {"awardid": "new", "name": name, "awardtypeid": str(award_type_id)},
        )
        rows = payload.get("awards")
        awards = [Award.from_payload(row) for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []
        for award in awards:
            if award.name == name:
                logger.debug("Created award %r has id %s", name, award.award_id)
                return award.award_id

        names = [award.name for award in awards]
        raise RemoteDomainError(
            f"award not found in response (looking for {name!r}, got {len(awards)} awards: {names})",
            code="award-not-found",
            description="award not found in response",
        )

    def set_award_winner(self, award_id: int, racer_id: int) -> None:
        self._write("award.winner", {"awardid": str(award_id), "racerid": str(racer_id)})

    def _write(self, action: str, params: Dict[str, str]) -> Dict[str, Any]:
        self._ensure_authenticated()

        payload = self._post(action, params)
        outcome = Outcome.from_payload(payload)
        if outcome.failed and outcome.code == REAUTHENTICATE_CODE.value and self.session.has_credentials:
            logger.debug("DerbyNet session expired during %s, re-authenticating", action)
            self.session.authenticated = False
            self.login(self.session.role, self.session.password)
            payload = self._post(action, params)
            outcome = Outcome.from_payload(payload)

        if outcome.failed:
            raise self._outcome_error(action, outcome)
        return payload

    # ---- internal HTTP helpers --------------------------------------------

    def _endpoint(self) -> str:
        if not self._base_url:
            raise TransportError("DerbyNet URL is not configured")
        return f"{self._base_url}/{ACTION_PATH}"

    def _post(self, action: str, params: Dict[str, str]) -> Dict[str, Any]:
        endpoint = self._endpoint()
        form = {**params, "action": action}
        logged = {key: ("***" if key == "password" else value) for key, value in form.items()}
        logger.debug("DerbyNet request POST %s %s", endpoint, logged)
        try:
            response = self._http.post(endpoint, data=form)
        except httpx.InvalidURL as exc:
            raise ValidationError(f"invalid DerbyNet URL {endpoint!r}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransportError(f"DerbyNet request timed out ({action}): {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to connect to DerbyNet ({action}): {exc}") from exc
        return self._parse(response, action)

    def _get(self, query: str, extra: Dict[str, str] | None = None) -> Dict[str, Any]:
        endpoint = self._endpoint()
        params = {"query": query, **(extra or {})}
        logger.debug("DerbyNet request GET %s %s", endpoint, params)
        try:
            response = self._http.get(endpoint, params=params)
        except httpx.InvalidURL as exc:
            raise ValidationError(f"invalid DerbyNet URL {endpoint!r}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransportError(f"DerbyNet request timed out ({query}): {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to connect to DerbyNet ({query}): {exc}") from exc

        payload = self._parse(response, query)
        outcome = Outcome.from_payload(payload)
        if outcome.failed:
            raise self._outcome_error(query, outcome)
        return payload

    @staticmethod
    def _parse(response: httpx.Response, label: str) -> Dict[str, Any]:
        logger.debug("DerbyNet response %s status=%s body=%s", label, response.status_code, response.text)
        if response.status_code != 200:
            raise TransportError(
                f"DerbyNet returned status {response.status_code} for {label}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"failed to parse DerbyNet response for {label}") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"unexpected DerbyNet payload for {label}: {type(payload).__name__}")
        return payload

    @staticmethod
    def _outcome_error(label: str, outcome: Outcome) -> RemoteError:
        message = f"DerbyNet error: {outcome.description} ({outcome.code})"
        if outcome.code in _AUTH_CODES:
            return AuthenticationError(message, code=outcome.code, description=outcome.description)
        logger.debug("DerbyNet rejected %s: %s", label, message)
        return RemoteDomainError(message, code=outcome.code, description=outcome.description)


def _flex_string(value: Any) -> str:
    """Normalise fields DerbyNet sends as a string, a number or null."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
