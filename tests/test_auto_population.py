"""
Tests for the auto-population service: run exclusivity, emergency stop,
property lifecycle hooks, queue processing and data-quality reports.
"""

import datetime

import pytest

from amenities.enums import AmenityType, DiscoveryProvider
from amenities.errors import ConflictError, NotFoundError
from amenities.services.auto_population import AutoPopulationService, ServiceState
from amenities.services.geo import Coordinate

LAT, LON = -1.2921, 36.8219


@pytest.fixture
def service(orchestrator, metrics):
    return AutoPopulationService(orchestrator, metrics=metrics)


class TestStateMachine:
    def test_starts_idle(self, service):
        status = service.get_health_status()
        assert status.state == "idle"
        assert status.queue_size == 0
        assert status.is_processing is False
        assert status.config_status.google_places_configured is True

    async def test_emergency_stop_is_idempotent(self, db, service, add_property):
        prop = await add_property()
        await service.handle_property_created(db, prop.id)

        first = service.emergency_stop()
        second = service.emergency_stop()

        assert first.cleared == 1
        assert second.cleared == 0
        assert first.state == second.state == "idle"
        assert service.queue_size == 0

    async def test_only_one_run_at_a_time(self, db, service):
        service.state = ServiceState.PROCESSING
        with pytest.raises(ConflictError):
            await service.discover_missing_amenities(db)

    async def test_run_returns_to_idle(self, db, service):
        await service.discover_missing_amenities(db)
        assert service.state == ServiceState.IDLE


class TestPropertyHooks:
    async def test_created_with_coordinates_is_queued(self, db, service, add_property):
        prop = await add_property()
        result = await service.handle_property_created(db, prop.id)

        assert result.scheduled is True
        assert result.queue_size == 1

    async def test_created_without_coordinates_is_not_queued(self, db, service, add_property):
        prop = await add_property(latitude=None, longitude=None)
        result = await service.handle_property_created(db, prop.id)

        assert result.scheduled is False
        assert service.queue_size == 0

    async def test_unknown_property(self, db, service):
        with pytest.raises(NotFoundError):
            await service.handle_property_created(db, 404)

    async def test_move_beyond_threshold_triggers_rediscovery(self, db, service, add_property):
        prop = await add_property(
            nearby_amenities=[{"id": 1, "name": "Old"}],
            amenity_score=42,
            amenities_refreshed_at=datetime.datetime.utcnow(),
        )
        # ~600 m north
        result = await service.handle_property_location_updated(
            db, prop.id, Coordinate(LAT, LON), Coordinate(LAT + 0.0054, LON)
        )

        assert result.scheduled is True
        assert result.distance_moved_km == pytest.approx(0.6, abs=0.01)
        assert service.queue_size == 1
        assert prop.nearby_amenities == []
        assert prop.amenity_score is None
        assert prop.amenities_refreshed_at is None

    async def test_small_move_is_ignored(self, db, service, add_property):
        prop = await add_property(amenity_score=42)
        # ~50 m north
        result = await service.handle_property_location_updated(
            db, prop.id, Coordinate(LAT, LON), Coordinate(LAT + 0.00045, LON)
        )

        assert result.scheduled is False
        assert service.queue_size == 0
        assert prop.amenity_score == 42

    async def test_first_coordinates_trigger_discovery(self, db, service, add_property):
        prop = await add_property()
        result = await service.handle_property_location_updated(
            db, prop.id, None, Coordinate(LAT, LON)
        )
        assert result.scheduled is True


class TestQueue:
    async def test_process_queue_drains(self, db, service, osm_adapter, add_property):
        for i in range(2):
            prop = await add_property(f"Unit {i}", latitude=LAT + i * 0.01)
            await service.handle_property_created(db, prop.id)

        result = await service.process_queue(db)

        assert result.processed == 2
        assert result.stopped is False
        assert service.queue_size == 0
        assert service.state == ServiceState.IDLE
        assert len(osm_adapter.calls) == 2

    async def test_emergency_stop_mid_run(self, db, service, sleep, osm_adapter, add_property):
        for i in range(7):
            prop = await add_property(f"Unit {i}", latitude=LAT + i * 0.01)
            await service.handle_property_created(db, prop.id)
        # the first pause between batches is where the operator pulls the plug
        sleep.on_sleep = service.emergency_stop

        result = await service.process_queue(db)

        assert result.processed == 3
        assert result.stopped is True
        assert service.queue_size == 0
        assert service.state == ServiceState.IDLE
        assert len(osm_adapter.calls) == 3


class TestFleetRuns:
    async def test_discover_missing_skips_refreshed(self, db, service, osm_adapter, add_property):
        await add_property("Fresh", amenities_refreshed_at=datetime.datetime.utcnow())
        missing = await add_property("Missing", latitude=LAT + 0.01)

        result = await service.discover_missing_amenities(db, batch_size=5)

        assert result.processed == 1
        assert osm_adapter.calls == [(missing.latitude, missing.longitude, 2000)]

    async def test_refresh_stale(self, db, service, osm_adapter, add_property):
        now = datetime.datetime.utcnow()
        await add_property("Recent", amenities_refreshed_at=now - datetime.timedelta(days=5))
        stale = await add_property(
            "Stale", latitude=LAT + 0.01, amenities_refreshed_at=now - datetime.timedelta(days=40)
        )
        await add_property("Never", latitude=LAT + 0.02)

        result = await service.refresh_stale_amenities(db, days_old=30)

        assert result.processed == 1
        assert osm_adapter.calls[0][0] == stale.latitude
        assert service.metrics.count("auto_population_runs", kind="stale") == 1


class TestReports:
    async def test_auto_discovery_stats(self, db, store, service, make_candidate, make_create):
        await store.create(db, make_create("Manual School"), "u")
        osm = await store.create_discovered(db, make_candidate("OSM School"))
        await store.create_discovered(
            db,
            make_candidate(
                "Google Bank", AmenityType.BANK, provider=DiscoveryProvider.GOOGLE, latitude=LAT + 0.01
            ),
        )
        await store.approve(db, osm.id, "mod")

        stats = await service.get_auto_discovery_stats(db)

        assert stats.total_auto_discovered == 2
        assert stats.source_breakdown == {"auto_discovered_osm": 1, "auto_discovered_google": 1}
        assert stats.verification_rate == 50
        assert stats.category_counts == {"education": 1, "banking": 1}

    async def test_validation_report(self, db, store, service, make_create):
        await store.create(db, make_create("Westgate Mall", AmenityType.SHOPPING_MALL), "u")
        await store.create(
            db, make_create("westgate mall", AmenityType.SHOPPING_MALL, latitude=LAT + 0.0002), "u"
        )
        await store.create(
            db,
            make_create(
                "Open Clinic",
                AmenityType.CLINIC,
                latitude=LAT + 0.05,
                contact={"phone": "0700", "email": "a@b.ke"},
                operating_hours={"monday": "08:00 - 17:00"},
            ),
            "u",
        )

        report = await service.validate_amenity_data(db)

        assert report.total_amenities == 3
        assert report.unverified_count == 0
        assert report.missing_contact_count == 2
        assert report.missing_hours_count == 2
        assert report.duplicates_count == 1
        assert report.suggestions == [
            "2 amenities missing contact information",
            "2 amenities missing operating hours",
            "1 potential duplicate groups found",
            "Consider running discovery for more counties to improve coverage",
        ]

    async def test_validation_report_for_county(self, db, service):
        report = await service.validate_amenity_data(db, county="Kisumu")
        assert report.total_amenities == 0
        assert report.suggestions == []
