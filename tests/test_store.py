"""
Tests for the amenity store: manual entry, proximity queries, moderation
and reporting. Runs against an in-memory SQLite database.
"""

import pytest

from amenities.enums import (
    AmenityCategory,
    AmenitySource,
    AmenityType,
    ApprovalStatus,
    DiscoveryProvider,
    LifecycleState,
    VerificationLevel,
)
from amenities.errors import NotFoundError, ValidationError
from amenities.services.amenity_store import clamp_radius, resolve_category
from amenities.services.geo import Coordinate, distance

LAT, LON = -1.2921, 36.8219
# ~0.5 km of latitude
STEP = 0.0045


# ── Pure helpers ─────────────────────────────────────────────────

class TestResolveCategory:
    def test_derived_from_type(self):
        assert resolve_category(AmenityType.HOSPITAL) == AmenityCategory.HEALTHCARE

    def test_matching_category_accepted(self):
        assert (
            resolve_category(AmenityType.ATM, AmenityCategory.BANKING) == AmenityCategory.BANKING
        )

    def test_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            resolve_category(AmenityType.ATM, AmenityCategory.EDUCATION)


class TestClampRadius:
    def test_within_range(self):
        assert clamp_radius(2.0) == 2.0

    def test_clamped_low_and_high(self):
        assert clamp_radius(0) == 0.1
        assert clamp_radius(500) == 50.0

    def test_nan_rejected(self):
        with pytest.raises(ValidationError):
            clamp_radius(float("nan"))


# ── Manual entry ─────────────────────────────────────────────────

class TestCreate:
    async def test_manual_amenity_is_approved_and_verified(self, db, store, make_create):
        amenity = await store.create(db, make_create("  Moi Avenue Primary  "), "user-1")

        assert amenity.id is not None
        assert amenity.name == "Moi Avenue Primary"
        assert amenity.category == AmenityCategory.EDUCATION
        assert amenity.source == AmenitySource.MANUAL
        assert amenity.approval_status == ApprovalStatus.APPROVED
        assert amenity.verified is True
        assert amenity.verification_level == VerificationLevel.BASIC
        assert amenity.lifecycle == LifecycleState.ACTIVE
        assert len(amenity.verification_history) == 1
        assert amenity.verification_history[0]["notes"] == "Created manually"
        assert amenity.verification_history[0]["verified_by"] == "user-1"

    async def test_geolocation_is_lon_lat(self, db, store, make_create):
        amenity = await store.create(db, make_create("School", latitude=-1.3, longitude=36.8), "u")
        assert amenity.geolocation == {"type": "Point", "coordinates": [36.8, -1.3]}

    async def test_category_mismatch_rejected(self, db, store, make_create):
        data = make_create("Odd", AmenityType.BANK, category=AmenityCategory.FOOD)
        with pytest.raises(ValidationError):
            await store.create(db, data, "u")

    async def test_tags_deduplicated(self, db, store, make_create):
        amenity = await store.create(db, make_create("X", tags=["a", "b", "a"]), "u")
        assert amenity.tags == ["a", "b"]

    async def test_created_metric(self, db, store, metrics, make_create):
        await store.create(db, make_create("X"), "u")
        assert metrics.count("amenity_created", source="manual") == 1


# ── Proximity ────────────────────────────────────────────────────

class TestFindNearby:
    async def test_results_within_radius_nearest_first(self, db, store, make_create):
        await store.create(db, make_create("Far", latitude=LAT + 6 * STEP), "u")  # ~3 km
        await store.create(db, make_create("Mid", latitude=LAT + 2 * STEP), "u")  # ~1 km
        await store.create(db, make_create("Near", latitude=LAT + STEP), "u")  # ~0.5 km

        nearby = await store.find_nearby(db, LAT, LON, radius_km=2.0)

        assert [n.amenity.name for n in nearby] == ["Near", "Mid"]
        center = Coordinate(LAT, LON)
        for item in nearby:
            assert item.distance <= 2.0
            assert item.distance == pytest.approx(
                distance(center, Coordinate(item.amenity.latitude, item.amenity.longitude))
            )
            assert item.walking_time >= item.driving_time

    async def test_excludes_deleted(self, db, store, make_create):
        amenity = await store.create(db, make_create("Gone"), "u")
        await store.soft_delete(db, amenity.id, "u")

        assert await store.find_nearby(db, LAT, LON, 2.0) == []

    async def test_pending_hidden_unless_requested(self, db, store, make_candidate):
        await store.create_discovered(db, make_candidate("Pending School"))

        assert await store.find_nearby(db, LAT, LON, 2.0) == []
        moderated = await store.find_nearby(db, LAT, LON, 2.0, include_unapproved=True)
        assert [n.amenity.name for n in moderated] == ["Pending School"]

    async def test_rejected_never_returned(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Bad Data"))
        await store.reject(db, amenity.id, "mod", "Does not exist")

        assert await store.find_nearby(db, LAT, LON, 2.0, include_unapproved=True) == []

    async def test_filters(self, db, store, make_create):
        await store.create(db, make_create("School"), "u")
        await store.create(db, make_create("Hospital", AmenityType.HOSPITAL), "u")
        await store.create(db, make_create("ATM", AmenityType.ATM), "u")

        health = await store.find_nearby(db, LAT, LON, 2.0, categories=[AmenityCategory.HEALTHCARE])
        assert [n.amenity.name for n in health] == ["Hospital"]

        atms = await store.find_nearby(db, LAT, LON, 2.0, types=[AmenityType.ATM])
        assert [n.amenity.name for n in atms] == ["ATM"]

    async def test_limit(self, db, store, make_create):
        for i in range(5):
            await store.create(db, make_create(f"School {i}", latitude=LAT + i * 0.001), "u")

        nearby = await store.find_nearby(db, LAT, LON, 2.0, limit=3)
        assert [n.amenity.name for n in nearby] == ["School 0", "School 1", "School 2"]

    async def test_tiny_radius_is_clamped(self, db, store, make_create):
        # ~55 m away: outside 0 km but inside the 0.1 km floor
        await store.create(db, make_create("Next Door", latitude=LAT + 0.0005), "u")

        nearby = await store.find_nearby(db, LAT, LON, radius_km=0)
        assert len(nearby) == 1

    async def test_invalid_coordinates(self, db, store):
        with pytest.raises(ValidationError):
            await store.find_nearby(db, 95.0, LON, 2.0)

    async def test_grouped_by_category(self, db, store, make_create):
        await store.create(db, make_create("School A"), "u")
        await store.create(db, make_create("School B", latitude=LAT + 0.001), "u")
        await store.create(db, make_create("Clinic", AmenityType.CLINIC), "u")

        groups = await store.find_nearby_grouped(db, LAT, LON, 2.0, per_category=1)

        assert set(groups) == {AmenityCategory.EDUCATION, AmenityCategory.HEALTHCARE}
        assert [n.amenity.name for n in groups[AmenityCategory.EDUCATION]] == ["School A"]


# ── Lookup & search ──────────────────────────────────────────────

class TestLookup:
    async def test_get_missing(self, db, store):
        with pytest.raises(NotFoundError, match="Amenity 42 not found"):
            await store.get(db, 42)

    async def test_deleted_only_visible_on_request(self, db, store, make_create):
        amenity = await store.create(db, make_create("Old"), "u")
        await store.soft_delete(db, amenity.id, "u")

        with pytest.raises(NotFoundError):
            await store.get(db, amenity.id)
        assert (await store.get(db, amenity.id, include_deleted=True)).id == amenity.id

    async def test_search_matches_all_terms(self, db, store, make_create):
        await store.create(db, make_create("University of Nairobi", AmenityType.UNIVERSITY), "u")
        await store.create(db, make_create("Nairobi Hospital", AmenityType.HOSPITAL), "u")

        results = await store.search_by_text(db, "nairobi university")
        assert [a.name for a in results] == ["University of Nairobi"]

    async def test_search_empty_query(self, db, store):
        with pytest.raises(ValidationError):
            await store.search_by_text(db, "   ")

    async def test_by_county(self, db, store, make_create):
        await store.create(db, make_create("Nairobi School"), "u")
        await store.create(
            db, make_create("Mombasa School", latitude=-4.04, longitude=39.67, county="Mombasa"), "u"
        )

        results = await store.get_by_county(db, "Mombasa")
        assert [a.name for a in results] == ["Mombasa School"]

    async def test_update_recomputes_category(self, db, store, make_create):
        from amenities.schemas import AmenityUpdate

        amenity = await store.create(db, make_create("Place"), "u")
        updated = await store.update(db, amenity.id, AmenityUpdate(type=AmenityType.BANK), "u")

        assert updated.type == AmenityType.BANK
        assert updated.category == AmenityCategory.BANKING


# ── Verification & moderation ────────────────────────────────────

class TestModeration:
    async def test_discovered_starts_pending(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))

        assert amenity.approval_status == ApprovalStatus.PENDING
        assert amenity.verified is False
        assert amenity.verification_level == VerificationLevel.NONE
        assert amenity.is_auto_discovered is True
        assert amenity.source == AmenitySource.AUTO_DISCOVERED_OSM

    async def test_approve_is_idempotent(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))

        first = await store.approve(db, amenity.id, "mod-1")
        approved_at = first.approved_at
        second = await store.approve(db, amenity.id, "mod-2")

        assert second.approval_status == ApprovalStatus.APPROVED
        assert second.approved_by == "mod-1"
        assert second.approved_at == approved_at
        assert len(second.verification_history) == 1
        assert second.verification_level == VerificationLevel.BASIC
        assert second.verified is True

    async def test_approved_amenity_becomes_public(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))
        await store.approve(db, amenity.id, "mod")

        nearby = await store.find_nearby(db, LAT, LON, 2.0)
        assert [n.amenity.id for n in nearby] == [amenity.id]

    async def test_verification_level_never_downgrades(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))

        await store.verify_with_level(db, amenity.id, "v1", VerificationLevel.FULL, "site visit")
        result = await store.verify_with_level(db, amenity.id, "v2", VerificationLevel.BASIC)

        assert result.verification_level == VerificationLevel.FULL
        assert [e["level"] for e in result.verification_history] == ["full", "basic"]
        assert result.verified_by == "v2"

    async def test_verify_defaults_to_basic(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))
        result = await store.verify(db, amenity.id, "v1")

        assert result.verified is True
        assert result.verification_level == VerificationLevel.BASIC

    async def test_reject_requires_reason(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))
        with pytest.raises(ValidationError):
            await store.reject(db, amenity.id, "mod", "   ")

    async def test_rejected_kept_for_audit(self, db, store, metrics, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))
        rejected = await store.reject(db, amenity.id, "mod", "Closed down")

        assert rejected.approval_status == ApprovalStatus.REJECTED
        assert rejected.rejection_reason == "Closed down"
        assert (await store.get(db, amenity.id)).is_active
        assert metrics.count("amenity_rejected", source="auto_discovered_osm") == 1

    async def test_bulk_approve_reports_missing_ids(self, db, store, make_candidate):
        amenity = await store.create_discovered(db, make_candidate("Found"))

        result = await store.bulk_approve(db, [amenity.id, 9999], "mod")

        assert result.approved == 1
        assert result.errors == 1
        assert "9999" in result.error_details[0]

    async def test_bulk_import_skips_invalid_records(self, db, store):
        records = [
            {
                "name": "Kenyatta National Hospital",
                "type": "hospital",
                "location": {
                    "county": "Nairobi",
                    "address": {"line1": "Hospital Road"},
                    "coordinates": {"latitude": -1.3010, "longitude": 36.8073},
                },
            },
            {"name": "Broken", "type": "not-a-type"},
        ]

        result = await store.bulk_import(db, records, "seed")

        assert result.created == 1
        assert result.errors == 1
        assert result.error_details[0].startswith("Broken:")


# ── Reporting ────────────────────────────────────────────────────

class TestReporting:
    async def test_pending_page(self, db, store, make_candidate, make_create):
        await store.create(db, make_create("Manual"), "u")
        for i in range(3):
            await store.create_discovered(db, make_candidate(f"Found {i}", latitude=LAT + i * 0.01))

        page = await store.get_pending(db, limit=2)

        assert page.total == 3
        assert len(page.amenities) == 2
        assert page.has_more is True

    async def test_by_discovery_status_filters_source(self, db, store, make_candidate):
        await store.create_discovered(db, make_candidate("OSM"))
        await store.create_discovered(
            db, make_candidate("Google", provider=DiscoveryProvider.GOOGLE, latitude=LAT + 0.01)
        )

        page = await store.get_by_discovery_status(db, source=AmenitySource.AUTO_DISCOVERED_GOOGLE)
        assert [a.name for a in page.amenities] == ["Google"]

    async def test_area_stats(self, db, store, make_create, make_candidate):
        await store.create(db, make_create("School"), "u")
        await store.create_discovered(db, make_candidate("Clinic", AmenityType.CLINIC))

        stats = await store.get_area_stats(db, "Nairobi")

        assert stats.total_amenities == 2
        assert stats.category_counts == {"education": 1, "healthcare": 1}
        assert stats.verified_percentage == 50

    async def test_approval_stats(self, db, store, make_create, make_candidate):
        await store.create(db, make_create("Manual"), "u")
        await store.create_discovered(db, make_candidate("Pending"))
        google = await store.create_discovered(
            db, make_candidate("Rejected", provider=DiscoveryProvider.GOOGLE, latitude=LAT + 0.01)
        )
        await store.reject(db, google.id, "mod", "duplicate")

        stats = await store.get_approval_stats(db)

        assert (stats.approved, stats.pending, stats.rejected) == (1, 1, 1)
        assert stats.by_source["manual"].approved == 1
        assert stats.by_source["auto_discovered_google"].rejected == 1

    async def test_verification_stats(self, db, store, make_create, make_candidate):
        await store.create(db, make_create("Manual"), "u")
        await store.create_discovered(db, make_candidate("Pending"))

        stats = await store.get_verification_stats(db)

        assert stats.total_verified == 1
        assert stats.total_unverified == 1
        assert stats.verification_rate == 50
        assert stats.manual.verified == 1
        assert stats.auto_discovered.unverified == 1
        assert stats.by_level["basic"] == 1 and stats.by_level["none"] == 1

    def test_metadata_covers_every_type(self, store):
        metadata = store.get_metadata()
        listed = {t for types in metadata.category_types.values() for t in types}
        assert listed == set(AmenityType)
