"""
Ports -- the narrow interfaces the engine consumes from its environment.

``EntityStore`` holds the current-state records, ``HistoryLog`` the
append-only audit trail.  Adapters live in ``src.infrastructure``; the two
stores are never assumed to share a transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entities import Driver, Entity, StatusChangeRecord, Trip, Vehicle
from .enums import DriverStatus, EntityType, TripStatus, VehicleStatus


class EntityStore(ABC):
    @abstractmethod
    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]: ...

    @abstractmethod
    async def get_driver(self, driver_id: int) -> Optional[Driver]: ...

    @abstractmethod
    async def get_trip(self, trip_id: int) -> Optional[Trip]: ...

    @abstractmethod
    async def update_vehicle_status(
        self, vehicle_id: int, status: VehicleStatus
    ) -> None: ...

    @abstractmethod
    async def update_driver_status(
        self, driver_id: int, status: DriverStatus
    ) -> None: ...

    @abstractmethod
    async def update_trip_status(self, trip_id: int, status: TripStatus) -> None: ...

    @abstractmethod
    async def set_vehicle_odometer(self, vehicle_id: int, odometer: float) -> None: ...

    @abstractmethod
    async def set_vehicle_last_maintenance(
        self, vehicle_id: int, when: datetime
    ) -> None: ...

    @abstractmethod
    async def increment_driver_trips(self, driver_id: int, amount: int = 1) -> None: ...

    @abstractmethod
    async def set_trip_odometers(
        self,
        trip_id: int,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> None:
        """Set whichever of *start* / *end* is not None."""

    @abstractmethod
    async def list_ids(self, entity_type: EntityType) -> list[int]: ...

    # ── Generic dispatch ──────────────────────────────────────────────

    async def get(self, entity_type: EntityType, entity_id: int) -> Optional[Entity]:
        entity_type = EntityType(entity_type)
        if entity_type is EntityType.VEHICLE:
            return await self.get_vehicle(entity_id)
        if entity_type is EntityType.DRIVER:
            return await self.get_driver(entity_id)
        return await self.get_trip(entity_id)

    async def update_status(
        self, entity_type: EntityType, entity_id: int, status
    ) -> None:
        entity_type = EntityType(entity_type)
        if entity_type is EntityType.VEHICLE:
            await self.update_vehicle_status(entity_id, VehicleStatus(status))
        elif entity_type is EntityType.DRIVER:
            await self.update_driver_status(entity_id, DriverStatus(status))
        else:
            await self.update_trip_status(entity_id, TripStatus(status))


class HistoryLog(ABC):
    """Append-only store of ``StatusChangeRecord``; queries return newest first."""

    @abstractmethod
    async def append(
        self,
        entity_type: EntityType,
        entity_id: int,
        previous_status: Optional[str],
        new_status: str,
        reason: Optional[str] = None,
    ) -> StatusChangeRecord: ...

    @abstractmethod
    async def latest(
        self, entity_type: EntityType, entity_id: int
    ) -> Optional[StatusChangeRecord]: ...

    @abstractmethod
    async def query(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[StatusChangeRecord]:
        """Records with ``from_time <= created_at <= to_time``."""

    @abstractmethod
    async def entity_history(
        self,
        entity_type: EntityType,
        entity_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StatusChangeRecord]: ...

    @abstractmethod
    async def recent(
        self, entity_type: EntityType, since: datetime, limit: int = 100
    ) -> list[StatusChangeRecord]: ...

    @abstractmethod
    async def count(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> int: ...

    @abstractmethod
    async def purge_before(self, cutoff: datetime) -> int:
        """Retention purge: delete records created before *cutoff*."""
