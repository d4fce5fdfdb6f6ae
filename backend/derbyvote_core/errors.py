"""Typed errors raised by the results, override and publication code."""

from __future__ import annotations

from typing import Any, List


class DerbyVoteError(Exception):
    """Base class for every error the core raises.

    ``summary`` is filled in when the error escapes a results push, so callers
    still see how far the push got before it stopped.
    """

    summary: Any = None


class ValidationError(DerbyVoteError, ValueError):
    pass


class NotFoundError(DerbyVoteError, LookupError):
    pass


class ConflictError(DerbyVoteError):
    def __init__(self, message: str, ties: List[Any] | None = None, multiple_wins: List[Any] | None = None) -> None:
        super().__init__(message)
        self.ties = list(ties or [])
        self.multiple_wins = list(multiple_wins or [])


class VotingOpenError(ConflictError):
    def __init__(self, message: str = "voting is still open; close voting before changing winners") -> None:
        super().__init__(message)


class RemoteError(DerbyVoteError, RuntimeError):
    """Anything that went wrong talking to the remote racing system."""


class AuthenticationError(RemoteError):
    def __init__(self, message: str, code: str = "", description: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.description = description


class RemoteDomainError(RemoteError):
    def __init__(self, message: str, code: str = "", description: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.description = description


class TransportError(RemoteError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InternalError(DerbyVoteError, RuntimeError):
    pass
