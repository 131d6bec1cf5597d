"""Error taxonomy shared by the store, resolver, sync layer and HTTP surface.

Every error carries a human-readable message, an optional offending field
(so the admin UI can highlight it), the HTTP status it maps to, and whether
the caller may retry it.
"""

from __future__ import annotations

from typing import Any


class FreeGiftError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "message": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(FreeGiftError):
    """Malformed input: negative amount, missing reference, unknown status."""

    status_code = 400


class NotFoundError(FreeGiftError):
    """Unknown rule id on get/update/delete."""

    status_code = 404


class InvalidInputError(FreeGiftError):
    """Resolver given a negative, non-finite or non-numeric subtotal."""

    status_code = 400


class TransientError(FreeGiftError):
    """I/O or network failure. Safe to retry with backoff."""

    status_code = 503
    retryable = True
