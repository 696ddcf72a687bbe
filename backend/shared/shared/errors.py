"""Domain error taxonomy shared by the marketplace service.

Every expected failure of a marketplace operation is raised as a subclass of
``MarketplaceError``.  The HTTP layer maps ``kind`` to a status code; callers
inspect ``retryable`` to decide whether to re-fetch and try again.

Only ``Conflict`` (a concurrent writer won an atomic transition) and
``StoreUnavailable`` (transient infrastructure failure) are retryable, and
the two are never conflated.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for all expected marketplace failures."""

    kind: str = "error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
        }


class NotFound(MarketplaceError):
    kind = "not_found"
    status_code = 404


class Forbidden(MarketplaceError):
    kind = "forbidden"
    status_code = 403


class InvalidState(MarketplaceError):
    kind = "invalid_state"
    status_code = 409


class InvalidTransition(MarketplaceError):
    kind = "invalid_transition"
    status_code = 409


class Conflict(MarketplaceError):
    kind = "conflict"
    status_code = 409
    retryable = True


class ValidationError(MarketplaceError):
    kind = "validation_error"
    status_code = 422


class StoreUnavailable(MarketplaceError):
    """The persistence layer could not be reached. Always safe to retry."""

    kind = "store_unavailable"
    status_code = 503
    retryable = True
