"""
Seed script -- populates the database with a sample fleet for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 vehicles (vans and trucks, one in the shop)
  - 5 drivers (one off duty, one suspended)
  - 4 trips, then drives them through the status engine so the
    status history is populated: one dispatched, one completed,
    one cancelled, one left as a draft
"""

import asyncio
from datetime import date, timedelta

from sqlalchemy import func, select

from src.bootstrap import build_services
from src.domain.enums import DriverStatus, VehicleStatus
from src.infrastructure.database import get_engine, get_session_factory
from src.infrastructure.models import VehicleModel


VEHICLES = [
    {"name": "Van-05", "license_plate": "GJ01AB1234", "max_capacity": 1500, "odometer": 12000},
    {"name": "Van-07", "license_plate": "GJ01AB5678", "max_capacity": 1500, "odometer": 8400},
    {"name": "Truck-11", "license_plate": "GJ05TR1111", "max_capacity": 20000, "odometer": 45000},
    {"name": "Truck-12", "license_plate": "GJ05TR2222", "max_capacity": 18000, "odometer": 61200},
    {"name": "Truck-14", "license_plate": "GJ05TR4444", "max_capacity": 25000, "odometer": 30500},
    {"name": "Mini-02", "license_plate": "GJ01MN0202", "max_capacity": 800, "odometer": 5100,
     "status": VehicleStatus.IN_SHOP},
]

_NEXT_YEAR = date.today() + timedelta(days=365)

DRIVERS = [
    {"name": "Alex Rivera", "license_expiry": _NEXT_YEAR, "status": DriverStatus.ON_DUTY, "safety_score": 96},
    {"name": "Sam Okafor", "license_expiry": _NEXT_YEAR, "status": DriverStatus.ON_DUTY, "safety_score": 91},
    {"name": "Jordan Lee", "license_expiry": _NEXT_YEAR, "status": DriverStatus.ON_DUTY, "safety_score": 88},
    {"name": "Casey Patel", "license_expiry": _NEXT_YEAR, "status": DriverStatus.OFF_DUTY, "safety_score": 93},
    {"name": "Robin Chen", "license_expiry": date.today() + timedelta(days=30),
     "status": DriverStatus.SUSPENDED, "safety_score": 64},
]


async def seed():
    async with get_session_factory()() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(VehicleModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    services = await build_services()
    store, engine = services.store, services.engine

    # ── Vehicles & drivers ────────────────────────────────────────────
    vehicles = [await store.create_vehicle(**v) for v in VEHICLES]
    print(f"  Created {len(vehicles)} vehicles")
    drivers = [await store.create_driver(**d) for d in DRIVERS]
    print(f"  Created {len(drivers)} drivers")

    # ── Trips ─────────────────────────────────────────────────────────
    dispatched = await store.create_trip(
        vehicle_id=vehicles[2].id, driver_id=drivers[0].id, cargo_weight=18000
    )
    completed = await store.create_trip(
        vehicle_id=vehicles[0].id, driver_id=drivers[1].id, cargo_weight=1200
    )
    cancelled = await store.create_trip(
        vehicle_id=vehicles[1].id, driver_id=drivers[2].id, cargo_weight=900
    )
    await store.create_trip(
        vehicle_id=vehicles[4].id, driver_id=drivers[2].id, cargo_weight=21000
    )
    print("  Created 4 trips")

    # ── Drive them through the engine ─────────────────────────────────
    await engine.dispatch_trip(dispatched.id)
    await engine.dispatch_trip(completed.id)
    await engine.complete_trip(completed.id, vehicles[0].odometer + 320)
    await engine.dispatch_trip(cancelled.id)
    await engine.cancel_trip(cancelled.id, reason="Customer postponed delivery")
    print("  Recorded trip dispatch / completion / cancellation history")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await get_engine().dispose()


if __name__ == "__main__":
    asyncio.run(main())
