"""Create the amenity tables and seed a handful of verified Nairobi amenities."""
import asyncio

from amenities.db.session import async_session_factory, engine, init_db
from amenities.services.amenity_store import AmenityStore


def _record(name, type_, lat, lng, estate, line1, **extra):
    return {
        "name": name,
        "type": type_,
        "location": {
            "county": "Nairobi",
            "estate": estate,
            "address": {"line1": line1, "town": "Nairobi"},
            "coordinates": {"latitude": lat, "longitude": lng},
        },
        **extra,
    }


SEED_AMENITIES = [
    _record("University of Nairobi", "university", -1.2793, 36.8155, "CBD", "University Way",
            rating=4.3, tags=["public", "main-campus"]),
    _record("Kenyatta National Hospital", "hospital", -1.3010, 36.8073, "Upper Hill", "Hospital Road",
            contact={"phone": "+254 20 2726300"}, rating=3.9),
    _record("Westlands Matatu Stage", "matatu_stage", -1.2674, 36.8108, "Westlands", "Waiyaki Way"),
    _record("Sarit Centre", "shopping_mall", -1.2612, 36.8025, "Westlands", "Karuna Road",
            rating=4.4, operating_hours={"monday": "09:00 - 21:00", "sunday": "10:00 - 20:00"}),
    _record("Kilimani Police Station", "police_station", -1.2906, 36.7844, "Kilimani", "Argwings Kodhek Road"),
    _record("Nairobi Railway Station", "railway_station", -1.2905, 36.8283, "CBD", "Station Road"),
    _record("Uhuru Park", "park", -1.2893, 36.8170, "CBD", "Kenyatta Avenue", rating=4.1),
    _record("Aga Khan University Hospital", "hospital", -1.2614, 36.8236, "Parklands", "3rd Parklands Avenue",
            rating=4.5),
]


async def main():
    await init_db()
    print("Database tables ensured.")

    store = AmenityStore()
    async with async_session_factory() as db:
        result = await store.bulk_import(db, SEED_AMENITIES, user_id="seed")
    print(f"Seeded {result.created} amenities ({result.errors} errors).")
    for detail in result.error_details:
        print(f"  - {detail}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
