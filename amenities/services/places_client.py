"""
Google Places API (New) discovery adapter.

  - Nearby Search: POST https://places.googleapis.com/v1/places:searchNearby
  - API key passed via X-Goog-Api-Key header
  - Field selection via X-Goog-FieldMask header

Nearby Search returns at most 20 places per request, so the search runs once
per category group (see ``GOOGLE_SEARCH_GROUPS``) and merges by place id.
"""

from __future__ import annotations

from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from amenities.enums import DiscoveryProvider
from amenities.errors import ExternalProviderError
from amenities.logging_config import logger
from amenities.schemas import ContactInfo, DiscoveryCandidate
from amenities.services.discovery_adapters import (
    DiscoveryAdapter,
    is_retryable,
    provider_error,
    settings,
)
from amenities.services.taxonomy import (
    GOOGLE_SEARCH_GROUPS,
    guess_county,
    map_google_types,
    parse_google_opening_hours,
)

NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
MAX_RESULTS_PER_REQUEST = 20

# Field mask for cost-efficient requests
NEARBY_FIELD_MASK = (
    "places.id,places.displayName,places.formattedAddress,"
    "places.location,places.rating,places.userRatingCount,"
    "places.nationalPhoneNumber,places.websiteUri,"
    "places.regularOpeningHours,places.addressComponents,"
    "places.types,places.primaryType,places.businessStatus"
)

_CLOSED_STATUSES = {"CLOSED_PERMANENTLY"}


def _address_component(components: list[dict], kind: str) -> Optional[str]:
    for component in components or ():
        if kind in component.get("types", ()):
            return component.get("longText") or component.get("shortText")
    return None


def _normalize_place(raw: dict) -> Optional[DiscoveryCandidate]:
    """
    Convert a Places API (New) place object into a discovery candidate.
    Places with no usable location, no mappable type or a permanently
    closed status are dropped.
    """
    location = raw.get("location") or {}
    latitude, longitude = location.get("latitude"), location.get("longitude")
    if latitude is None or longitude is None:
        return None
    if raw.get("businessStatus") in _CLOSED_STATUSES:
        return None

    types = list(raw.get("types") or [])
    if raw.get("primaryType"):
        types.insert(0, raw["primaryType"])
    mapping = map_google_types(types)
    if mapping is None:
        return None
    amenity_type, category = mapping

    name = (raw.get("displayName") or {}).get("text") or ""
    if not name.strip():
        return None

    opening = raw.get("regularOpeningHours") or {}
    components = raw.get("addressComponents") or []
    phone, website = raw.get("nationalPhoneNumber"), raw.get("websiteUri")

    return DiscoveryCandidate(
        name=name.strip(),
        type=amenity_type,
        category=category,
        latitude=latitude,
        longitude=longitude,
        provider=DiscoveryProvider.GOOGLE,
        source=DiscoveryProvider.GOOGLE.amenity_source,
        source_ref=raw.get("id"),
        description="Discovered via Google Places",
        county=guess_county(latitude, longitude),
        address_line1=raw.get("formattedAddress"),
        town=_address_component(components, "locality"),
        postal_code=_address_component(components, "postal_code"),
        contact=ContactInfo(phone=phone, website=website) if (phone or website) else None,
        operating_hours=parse_google_opening_hours(opening.get("weekdayDescriptions", [])) or None,
        rating=raw.get("rating") or 0.0,
        review_count=raw.get("userRatingCount") or 0,
        tags=["auto-discovered", "google-places"],
        raw={
            "place_id": raw.get("id"),
            "types": raw.get("types"),
            "primary_type": raw.get("primaryType"),
            "business_status": raw.get("businessStatus"),
        },
    )


class GooglePlacesAdapter(DiscoveryAdapter):
    """Async Google Places API (New) adapter with retry and rate limiting."""

    provider = DiscoveryProvider.GOOGLE

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else settings.google_places_api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": NEARBY_FIELD_MASK,
        }

    # ── Nearby Search ────────────────────────────────────────────

    @retry(
        stop=stop_after_attempt(settings.discovery_max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def _search_group(
        self, latitude: float, longitude: float, radius_m: int, included_types: tuple[str, ...]
    ) -> list[dict]:
        async with self._rate_limiter:
            client = await self._get_client()
            body = {
                "includedTypes": list(included_types),
                "maxResultCount": MAX_RESULTS_PER_REQUEST,
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": latitude, "longitude": longitude},
                        "radius": float(radius_m),
                    }
                },
            }
            resp = await client.post(NEARBY_SEARCH_URL, json=body, headers=self._headers())
            resp.raise_for_status()
            return resp.json().get("places") or []

    async def discover_near(
        self, latitude: float, longitude: float, radius_m: int
    ) -> list[DiscoveryCandidate]:
        if not self.is_configured:
            raise ExternalProviderError(self.provider.value, "API key not configured")

        seen_ids: set[str] = set()
        candidates: list[DiscoveryCandidate] = []
        for group, included_types in GOOGLE_SEARCH_GROUPS.items():
            try:
                places = await self._search_group(latitude, longitude, radius_m, included_types)
            except httpx.HTTPError as exc:
                logger.warning(f"Google Places '{group}' search failed: {exc}")
                raise provider_error(self.provider, exc) from exc
            except ValueError as exc:
                raise ExternalProviderError(self.provider.value, "invalid JSON response") from exc

            for raw in places:
                place_id = raw.get("id")
                if place_id and place_id in seen_ids:
                    continue
                candidate = _normalize_place(raw)
                if candidate is None:
                    continue
                if place_id:
                    seen_ids.add(place_id)
                candidates.append(candidate)

        logger.info(
            f"Google Places: {len(candidates)} candidates near "
            f"({latitude:.5f}, {longitude:.5f}) r={radius_m}m"
        )
        return candidates
