"""
OpenStreetMap discovery adapter backed by the Overpass API.

No key is needed; the adapter can be switched off with ``OSM_ENABLED``.
Ways and relations are reported at their centre point (``out center``).
"""

from __future__ import annotations

from collections import defaultdict
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
    OSM_TAG_MAPPING,
    guess_county,
    map_osm_tags,
    parse_osm_opening_hours,
)

OVERPASS_TIMEOUT_S = 25


def _tag_filters() -> dict[str, list[str]]:
    """``{"amenity": ["school", ...], "shop": [...]}`` from the tag mapping."""
    filters: dict[str, list[str]] = defaultdict(list)
    for tag in OSM_TAG_MAPPING:
        key, value = tag.split("=", 1)
        filters[key].append(value)
    filters["amenity"].append("place_of_worship")
    return {key: sorted(set(values)) for key, values in filters.items()}


TAG_FILTERS = _tag_filters()


def build_overpass_query(latitude: float, longitude: float, radius_m: int) -> str:
    around = f"(around:{int(radius_m)},{latitude},{longitude})"
    clauses = [
        f'  nwr["{key}"~"^({"|".join(values)})$"]{around};'
        for key, values in TAG_FILTERS.items()
    ]
    return "\n".join(
        [f"[out:json][timeout:{OVERPASS_TIMEOUT_S}];", "(", *clauses, ");", "out center tags;"]
    )


def _first(tags: dict, *keys: str) -> Optional[str]:
    for key in keys:
        if tags.get(key):
            return tags[key]
    return None


def _normalize_element(element: dict) -> Optional[DiscoveryCandidate]:
    tags = element.get("tags") or {}
    mapping = map_osm_tags(tags)
    if mapping is None:
        return None
    amenity_type, category = mapping

    center = element.get("center") or {}
    latitude = element.get("lat", center.get("lat"))
    longitude = element.get("lon", center.get("lon"))
    if latitude is None or longitude is None:
        return None

    osm_ref = f"{element.get('type', 'node')}/{element.get('id')}"
    street = " ".join(p for p in (tags.get("addr:housenumber"), tags.get("addr:street")) if p)
    phone = _first(tags, "phone", "contact:phone")
    email = _first(tags, "email", "contact:email")
    website = _first(tags, "website", "contact:website")

    return DiscoveryCandidate(
        name=tags.get("name") or f"{amenity_type.value} (OSM {element.get('id')})",
        type=amenity_type,
        category=category,
        latitude=latitude,
        longitude=longitude,
        provider=DiscoveryProvider.OSM,
        source=DiscoveryProvider.OSM.amenity_source,
        source_ref=osm_ref,
        description=tags.get("description") or "Discovered via OpenStreetMap",
        county=guess_county(latitude, longitude),
        address_line1=street or None,
        town=_first(tags, "addr:city", "addr:town"),
        postal_code=tags.get("addr:postcode"),
        contact=ContactInfo(phone=phone, email=email, website=website)
        if (phone or email or website)
        else None,
        operating_hours=parse_osm_opening_hours(tags.get("opening_hours", "")) or None,
        tags=["auto-discovered", "openstreetmap"],
        raw={"osm_id": osm_ref, "tags": tags},
    )


class OverpassAdapter(DiscoveryAdapter):
    """Async Overpass API adapter with retry and rate limiting."""

    provider = DiscoveryProvider.OSM

    def __init__(self, url: Optional[str] = None, enabled: Optional[bool] = None, **kwargs):
        super().__init__(**kwargs)
        self.url = url or settings.overpass_url
        self.enabled = settings.osm_enabled if enabled is None else enabled

    @property
    def is_configured(self) -> bool:
        return self.enabled

    @retry(
        stop=stop_after_attempt(settings.discovery_max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def _query(self, query: str) -> dict:
        async with self._rate_limiter:
            client = await self._get_client()
            resp = await client.post(self.url, data={"data": query})
            resp.raise_for_status()
            return resp.json()

    async def discover_near(
        self, latitude: float, longitude: float, radius_m: int
    ) -> list[DiscoveryCandidate]:
        if not self.is_configured:
            raise ExternalProviderError(self.provider.value, "adapter disabled")

        try:
            data = await self._query(build_overpass_query(latitude, longitude, radius_m))
        except httpx.HTTPError as exc:
            logger.warning(f"Overpass query failed: {exc}")
            raise provider_error(self.provider, exc) from exc
        except ValueError as exc:
            raise ExternalProviderError(self.provider.value, "invalid JSON response") from exc

        remark = data.get("remark") or ""
        if "runtime error" in remark:
            raise ExternalProviderError(self.provider.value, remark)

        elements = data.get("elements") or []
        candidates = []
        for element in elements:
            candidate = _normalize_element(element)
            if candidate is not None:
                candidates.append(candidate)

        logger.info(
            f"Overpass: {len(candidates)} candidates from {len(elements)} "
            f"elements near ({latitude:.5f}, {longitude:.5f}) r={radius_m}m"
        )
        return candidates
