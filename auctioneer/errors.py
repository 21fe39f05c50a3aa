"""Exception taxonomy shared by the engines and the HTTP layer."""

from __future__ import annotations


class ValidationFailed(ValueError):
    """Raised when a request field is missing, malformed or references nothing."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class NotFound(KeyError):
    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key

    def __str__(self) -> str:
        return f"{self.kind} {self.key} not found"


class AuthorizationError(Exception):
    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvariantViolation(RuntimeError):
    """Raised when a write would break a persisted invariant; nothing is written."""


class PeriodIntegrityError(InvariantViolation):
    """Raised when a game update would drop auction periods."""


class BidRejected(ValueError):
    def __init__(self, status: str, reason: str, bid_id: str | None = None) -> None:
        super().__init__(reason)
        self.status = status
        self.reason = reason
        self.bid_id = bid_id
