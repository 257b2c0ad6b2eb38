"""
Common ground for external place-data providers.

An adapter turns "what is near (lat, lon) within radius_m?" into normalized
``DiscoveryCandidate`` objects. Network, quota and auth failures surface as
``ExternalProviderError``; the orchestrator decides what a failure means.
"""

from __future__ import annotations

import abc
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter

from amenities.config import get_settings
from amenities.enums import DiscoveryProvider
from amenities.errors import ExternalProviderError
from amenities.schemas import DiscoveryCandidate

settings = get_settings()

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def is_retryable(exc: BaseException) -> bool:
    """Transient failures worth another attempt: transport errors, 429 and 5xx."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


def provider_error(provider: DiscoveryProvider, exc: Exception) -> ExternalProviderError:
    """Translate an httpx failure into the provider error the orchestrator counts."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            reason = "request rejected, check credentials"
        elif status == 429:
            reason = "quota exceeded"
        else:
            reason = f"HTTP {status}"
        return ExternalProviderError(provider.value, reason, status=status)
    if isinstance(exc, httpx.TimeoutException):
        return ExternalProviderError(provider.value, "request timed out")
    return ExternalProviderError(provider.value, f"{type(exc).__name__}: {exc}")


class DiscoveryAdapter(abc.ABC):
    """A place-data provider that can be asked for amenities around a point."""

    provider: DiscoveryProvider

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        max_rate: Optional[int] = None,
    ):
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.discovery_timeout_seconds
        self._rate_limiter = AsyncLimiter(
            max_rate=max_rate or settings.max_requests_per_second,
            time_period=1,
        )
        self._client: Optional[httpx.AsyncClient] = None

    @property
    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Whether the adapter can run at all (key present, feature enabled)."""

    @abc.abstractmethod
    async def discover_near(
        self, latitude: float, longitude: float, radius_m: int
    ) -> list[DiscoveryCandidate]:
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} configured={self.is_configured}>"
