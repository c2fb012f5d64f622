"""
In-memory adapters for the entity store and history log.

Default backing for the engine in tests and single-process tools.  Both
hand out copies, so callers cannot change stored state by mutating the
returned objects.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from src.domain.entities import Driver, StatusChangeRecord, Trip, Vehicle
from src.domain.enums import DriverStatus, EntityType, TripStatus, VehicleStatus
from src.domain.errors import NotFound
from src.domain.ports import EntityStore, HistoryLog


class InMemoryEntityStore(EntityStore):
    def __init__(self) -> None:
        self.vehicles: dict[int, Vehicle] = {}
        self.drivers: dict[int, Driver] = {}
        self.trips: dict[int, Trip] = {}

    # ── Seeding ───────────────────────────────────────────────────────

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self.vehicles[vehicle.id] = replace(vehicle)
        return vehicle

    def add_driver(self, driver: Driver) -> Driver:
        self.drivers[driver.id] = replace(driver)
        return driver

    def add_trip(self, trip: Trip) -> Trip:
        self.trips[trip.id] = replace(trip)
        return trip

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        vehicle = self.vehicles.get(vehicle_id)
        return replace(vehicle) if vehicle else None

    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        driver = self.drivers.get(driver_id)
        return replace(driver) if driver else None

    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        trip = self.trips.get(trip_id)
        return replace(trip) if trip else None

    async def list_ids(self, entity_type: EntityType) -> list[int]:
        table = {
            EntityType.VEHICLE: self.vehicles,
            EntityType.DRIVER: self.drivers,
            EntityType.TRIP: self.trips,
        }[EntityType(entity_type)]
        return sorted(table)

    # ── Writes ────────────────────────────────────────────────────────

    async def update_vehicle_status(self, vehicle_id: int, status: VehicleStatus) -> None:
        self._require(self.vehicles, EntityType.VEHICLE, vehicle_id).status = status

    async def update_driver_status(self, driver_id: int, status: DriverStatus) -> None:
        self._require(self.drivers, EntityType.DRIVER, driver_id).status = status

    async def update_trip_status(self, trip_id: int, status: TripStatus) -> None:
        self._require(self.trips, EntityType.TRIP, trip_id).status = status

    async def set_vehicle_odometer(self, vehicle_id: int, odometer: float) -> None:
        self._require(self.vehicles, EntityType.VEHICLE, vehicle_id).odometer = odometer

    async def set_vehicle_last_maintenance(self, vehicle_id: int, when: datetime) -> None:
        vehicle = self._require(self.vehicles, EntityType.VEHICLE, vehicle_id)
        vehicle.last_maintenance = when

    async def increment_driver_trips(self, driver_id: int, amount: int = 1) -> None:
        driver = self._require(self.drivers, EntityType.DRIVER, driver_id)
        driver.trips_completed += amount

    async def set_trip_odometers(
        self,
        trip_id: int,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> None:
        trip = self._require(self.trips, EntityType.TRIP, trip_id)
        if start is not None:
            trip.start_odometer = start
        if end is not None:
            trip.end_odometer = end

    @staticmethod
    def _require(table: dict, entity_type: EntityType, entity_id: int):
        try:
            return table[entity_id]
        except KeyError:
            raise NotFound(entity_type, entity_id) from None


class InMemoryHistoryLog(HistoryLog):
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.records: list[StatusChangeRecord] = []
        self._ids = itertools.count(1)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def append(
        self,
        entity_type: EntityType,
        entity_id: int,
        previous_status: Optional[str],
        new_status: str,
        reason: Optional[str] = None,
    ) -> StatusChangeRecord:
        record = StatusChangeRecord(
            id=next(self._ids),
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            previous_status=previous_status,
            new_status=new_status,
            created_at=self._clock(),
            reason=reason,
        )
        self.records.append(record)
        return record

    def _for(self, entity_type: EntityType, entity_id: int) -> list[StatusChangeRecord]:
        entity_type = EntityType(entity_type)
        return self._newest_first(
            r for r in self.records
            if r.entity_type is entity_type and r.entity_id == entity_id
        )

    @staticmethod
    def _newest_first(records) -> list[StatusChangeRecord]:
        return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)

    @staticmethod
    def _in_range(record, from_time, to_time) -> bool:
        if from_time is not None and record.created_at < from_time:
            return False
        if to_time is not None and record.created_at > to_time:
            return False
        return True

    async def latest(
        self, entity_type: EntityType, entity_id: int
    ) -> Optional[StatusChangeRecord]:
        records = self._for(entity_type, entity_id)
        return records[0] if records else None

    async def query(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[StatusChangeRecord]:
        return [
            r for r in self._for(entity_type, entity_id)
            if self._in_range(r, from_time, to_time)
        ][:limit]

    async def entity_history(
        self,
        entity_type: EntityType,
        entity_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StatusChangeRecord]:
        return self._for(entity_type, entity_id)[offset:offset + limit]

    async def recent(
        self, entity_type: EntityType, since: datetime, limit: int = 100
    ) -> list[StatusChangeRecord]:
        entity_type = EntityType(entity_type)
        return self._newest_first(
            r for r in self.records
            if r.entity_type is entity_type and r.created_at >= since
        )[:limit]

    async def count(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> int:
        return sum(
            1 for r in self._for(entity_type, entity_id)
            if self._in_range(r, from_time, to_time)
        )

    async def purge_before(self, cutoff: datetime) -> int:
        kept = [r for r in self.records if r.created_at >= cutoff]
        deleted = len(self.records) - len(kept)
        self.records = kept
        return deleted
