# Overview: Domain error taxonomy shared by services and routes.

"""
Order engine errors.

Every error carries a human-readable message plus a ``details`` dict the
routes pass through to the client. ``http_status`` and ``retryable`` drive
the JSON error body; routes never need to special-case individual classes.

Business rejections (validation, stock, transitions) are raised before any
commit, so the caller always sees either a fully applied change or none.
"""

from __future__ import annotations


class OrderError(Exception):
    """Base class for order engine errors."""

    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body = {
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(OrderError):
    """400-level input problem, qualified by the offending field path."""

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class InvalidQuantity(ValidationError):
    """Quantity handed to the pricing engine is not a positive integer."""


class NotFound(OrderError):
    http_status = 404


class Forbidden(OrderError):
    http_status = 403


class InvalidTransition(OrderError):
    http_status = 409


class InsufficientStock(OrderError):
    """Business rejection: the buyer must re-quote against current stock."""

    http_status = 409


class ConcurrentModification(OrderError):
    """Optimistic-lock conflict; safe to retry the whole operation once."""

    http_status = 409
    retryable = True


class InvalidDiscountConfiguration(OrderError):
    """Catalog setup problem, surfaced to staff."""

    http_status = 422


class StorageUnavailable(OrderError):
    """Transient storage failures exhausted the retry budget."""

    http_status = 503
    retryable = True


class Conflict(OrderError):
    """Write refused because of existing data (duplicate SKU, variant in use)."""

    http_status = 409
