"""
Test configuration and shared fixtures.
"""

import os

# Override settings before any app imports
os.environ["GOOGLE_PLACES_API_KEY"] = "test-key-for-testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["OSM_ENABLED"] = "true"

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from amenities.db import models  # noqa: F401
from amenities.db.models import Property
from amenities.db.session import Base
from amenities.enums import CATEGORY_FOR_TYPE, AmenityType, DiscoveryProvider
from amenities.schemas import AmenityCreate, DiscoveryCandidate
from amenities.services.amenity_store import AmenityStore
from amenities.services.discovery import DiscoveryOrchestrator
from amenities.services.discovery_adapters import DiscoveryAdapter
from amenities.services.metrics import LoggingMetrics

NAIROBI = (-1.2921, 36.8219)


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Services ─────────────────────────────────────────────────────

@pytest.fixture
def metrics():
    return LoggingMetrics()


@pytest.fixture
def store(metrics):
    return AmenityStore(metrics=metrics)


class FakeAdapter(DiscoveryAdapter):
    """In-memory provider: returns canned candidates or raises a canned error."""

    def __init__(self, provider, candidates=None, error=None, configured=True, delay=None):
        super().__init__()
        self.provider = provider
        self.candidates = list(candidates or [])
        self.error = error
        self.configured = configured
        self.delay = delay
        self.calls = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def discover_near(self, latitude, longitude, radius_m):
        self.calls.append((latitude, longitude, radius_m))
        if self.delay:
            import asyncio

            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def google_adapter():
    return FakeAdapter(DiscoveryProvider.GOOGLE)


@pytest.fixture
def osm_adapter():
    return FakeAdapter(DiscoveryProvider.OSM)


@pytest.fixture
def orchestrator(store, google_adapter, osm_adapter, sleep, metrics):
    return DiscoveryOrchestrator(
        store,
        adapters={
            DiscoveryProvider.GOOGLE: google_adapter,
            DiscoveryProvider.OSM: osm_adapter,
        },
        metrics=metrics,
        sleep=sleep,
        timeout=1.0,
    )


# ── Factories ────────────────────────────────────────────────────

@pytest.fixture
def make_candidate():
    def _make(
        name,
        amenity_type=AmenityType.PRIMARY_SCHOOL,
        latitude=NAIROBI[0],
        longitude=NAIROBI[1],
        provider=DiscoveryProvider.OSM,
        **kwargs,
    ):
        return DiscoveryCandidate(
            name=name,
            type=amenity_type,
            category=CATEGORY_FOR_TYPE[amenity_type],
            latitude=latitude,
            longitude=longitude,
            provider=provider,
            source=provider.amenity_source,
            county=kwargs.pop("county", "Nairobi"),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_create():
    def _make(
        name,
        amenity_type=AmenityType.PRIMARY_SCHOOL,
        latitude=NAIROBI[0],
        longitude=NAIROBI[1],
        county="Nairobi",
        **kwargs,
    ):
        return AmenityCreate(
            name=name,
            type=amenity_type,
            location={
                "county": county,
                "ward": kwargs.pop("ward", None),
                "address": {"line1": kwargs.pop("line1", "Moi Avenue")},
                "coordinates": {"latitude": latitude, "longitude": longitude},
            },
            **kwargs,
        )

    return _make


@pytest.fixture
def add_property(db):
    async def _add(title="2BR Apartment", latitude=NAIROBI[0], longitude=NAIROBI[1], **kwargs):
        prop = Property(
            title=title,
            latitude=latitude,
            longitude=longitude,
            county=kwargs.pop("county", "Nairobi"),
            **kwargs,
        )
        db.add(prop)
        await db.commit()
        return prop

    return _add
