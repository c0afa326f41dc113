"""
Typed failures raised by the ordering core.

Every expected failure carries a message the caller can act on plus a
`details` dict (current stock, current status, ...). Routes turn them into
JSON with `status_code`. PersistenceError is the only opaque one: its message
is generic and the underlying exception stays chained for the server log.
"""
from __future__ import annotations


class OrderingError(Exception):
    """Base class for failures the caller can recover from."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(OrderingError, ValueError):
    """Malformed or missing input; raised before any transaction starts."""

    status_code = 400


class NotFound(OrderingError):
    status_code = 404


class ItemUnavailable(NotFound):
    """Catalog item does not exist or is flagged unavailable."""


class InsufficientStock(OrderingError):
    status_code = 409


class InsufficientPoints(OrderingError):
    status_code = 409


class InvalidStateTransition(OrderingError):
    status_code = 409


class AlreadyVerified(OrderingError):
    status_code = 409


class PermissionDenied(OrderingError):
    status_code = 403


class PersistenceError(OrderingError):
    """Storage failure. The transaction has been rolled back."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: dict | None = None):
        super().__init__(message, details)
