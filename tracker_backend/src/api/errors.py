from __future__ import annotations

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """
    Base class for errors raised by the tracker core.

    Each subclass maps onto one HTTP status in main.py; `detail` carries
    structured context the caller can act on.
    """

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def error(self) -> str:
        return type(self).__name__


# PUBLIC_INTERFACE
class ValidationError(TrackerError):
    """Malformed input or a reference that does not resolve for the owner."""

    status_code = 400


# PUBLIC_INTERFACE
class NotFoundError(TrackerError):
    """Entity is absent or owned by someone else; the two are indistinguishable."""

    status_code = 404


# PUBLIC_INTERFACE
class ConflictError(TrackerError):
    """Uniqueness violation, or a delete blocked by dependents."""

    status_code = 409


# PUBLIC_INTERFACE
class InternalError(TrackerError):
    """Storage or infrastructure failure. The message is never shown to callers."""

    status_code = 500
