"""Error taxonomy shared by the store, discovery and auto-population services."""

from __future__ import annotations

from typing import Optional


class AmenityError(Exception):
    """Base class for all domain errors raised by the amenity core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AmenityError):
    """Bad coordinates, radius or enum values. Raised before any I/O."""

    status_code = 400


class NotFoundError(AmenityError):
    status_code = 404


class ConflictError(AmenityError):
    status_code = 409


class ExternalProviderError(AmenityError):
    """A discovery provider failed (network, quota, auth, not configured)."""

    status_code = 502

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class PersistenceError(AmenityError):
    """The store could not be written to or read from."""

    status_code = 503
