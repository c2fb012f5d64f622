"""
Repository Pattern -- SQLAlchemy adapters for the engine's store ports.

Each call opens its own session from the injected factory and commits
before returning: the entity tables and the history table are never
written in one transaction, so a crash between the two leaves drift that
the consistency checker can find.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import DriverModel, StatusHistoryModel, TripModel, VehicleModel
from src.domain.entities import Driver, StatusChangeRecord, Trip, Vehicle
from src.domain.enums import DriverStatus, EntityType, TripStatus, VehicleStatus
from src.domain.errors import NotFound
from src.domain.ports import EntityStore, HistoryLog


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC (SQLite hands back naive datetimes)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_vehicle(row: VehicleModel) -> Vehicle:
    return Vehicle(
        id=row.id,
        status=VehicleStatus(row.status),
        max_capacity=row.max_capacity,
        odometer=row.odometer,
        last_maintenance=_utc(row.last_maintenance),
        name=row.name or "",
        license_plate=row.license_plate or "",
    )


def _to_driver(row: DriverModel) -> Driver:
    return Driver(
        id=row.id,
        status=DriverStatus(row.status),
        license_expiry=row.license_expiry,
        trips_completed=row.trips_completed,
        safety_score=row.safety_score,
        name=row.name or "",
    )


def _to_trip(row: TripModel) -> Trip:
    return Trip(
        id=row.id,
        vehicle_id=row.vehicle_id,
        driver_id=row.driver_id,
        status=TripStatus(row.status),
        cargo_weight=row.cargo_weight,
        start_odometer=row.start_odometer,
        end_odometer=row.end_odometer,
    )


def _to_record(row: StatusHistoryModel) -> StatusChangeRecord:
    return StatusChangeRecord(
        id=row.id,
        entity_type=EntityType(row.entity_type),
        entity_id=row.entity_id,
        previous_status=row.previous_status,
        new_status=row.new_status,
        created_at=_utc(row.created_at),
        reason=row.reason,
    )


_MODELS = {
    EntityType.VEHICLE: VehicleModel,
    EntityType.DRIVER: DriverModel,
    EntityType.TRIP: TripModel,
}


class SqlEntityStore(EntityStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Creation (fleet registration, seeding) ────────────────────────

    async def create_vehicle(self, **fields) -> Vehicle:
        return _to_vehicle(await self._create(VehicleModel(**fields)))

    async def create_driver(self, **fields) -> Driver:
        return _to_driver(await self._create(DriverModel(**fields)))

    async def create_trip(self, **fields) -> Trip:
        return _to_trip(await self._create(TripModel(**fields)))

    async def _create(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        async with self.session_factory() as session:
            row = await session.get(VehicleModel, vehicle_id)
            return _to_vehicle(row) if row else None

    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        async with self.session_factory() as session:
            row = await session.get(DriverModel, driver_id)
            return _to_driver(row) if row else None

    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        async with self.session_factory() as session:
            row = await session.get(TripModel, trip_id)
            return _to_trip(row) if row else None

    async def list_ids(self, entity_type: EntityType) -> list[int]:
        model = _MODELS[EntityType(entity_type)]
        async with self.session_factory() as session:
            result = await session.execute(select(model.id).order_by(model.id))
            return list(result.scalars().all())

    # ── Writes ────────────────────────────────────────────────────────

    async def update_vehicle_status(self, vehicle_id: int, status: VehicleStatus) -> None:
        await self._update(EntityType.VEHICLE, vehicle_id, status=VehicleStatus(status))

    async def update_driver_status(self, driver_id: int, status: DriverStatus) -> None:
        await self._update(EntityType.DRIVER, driver_id, status=DriverStatus(status))

    async def update_trip_status(self, trip_id: int, status: TripStatus) -> None:
        await self._update(EntityType.TRIP, trip_id, status=TripStatus(status))

    async def set_vehicle_odometer(self, vehicle_id: int, odometer: float) -> None:
        await self._update(EntityType.VEHICLE, vehicle_id, odometer=odometer)

    async def set_vehicle_last_maintenance(self, vehicle_id: int, when: datetime) -> None:
        await self._update(EntityType.VEHICLE, vehicle_id, last_maintenance=when)

    async def increment_driver_trips(self, driver_id: int, amount: int = 1) -> None:
        await self._update(
            EntityType.DRIVER,
            driver_id,
            trips_completed=DriverModel.trips_completed + amount,
        )

    async def set_trip_odometers(
        self,
        trip_id: int,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> None:
        values = {}
        if start is not None:
            values["start_odometer"] = start
        if end is not None:
            values["end_odometer"] = end
        if values:
            await self._update(EntityType.TRIP, trip_id, **values)

    async def _update(self, entity_type: EntityType, entity_id: int, **values) -> None:
        model = _MODELS[entity_type]
        async with self.session_factory() as session:
            result = await session.execute(
                update(model).where(model.id == entity_id).values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFound(entity_type, entity_id)
            await session.commit()


class SqlHistoryLog(HistoryLog):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _entity_query(entity_type: EntityType, entity_id: int):
        return (
            select(StatusHistoryModel)
            .where(
                StatusHistoryModel.entity_type == EntityType(entity_type),
                StatusHistoryModel.entity_id == entity_id,
            )
            .order_by(StatusHistoryModel.created_at.desc(), StatusHistoryModel.id.desc())
        )

    @staticmethod
    def _in_range(query, from_time, to_time):
        if from_time is not None:
            query = query.where(StatusHistoryModel.created_at >= _utc(from_time))
        if to_time is not None:
            query = query.where(StatusHistoryModel.created_at <= _utc(to_time))
        return query

    async def _records(self, query) -> list[StatusChangeRecord]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_record(row) for row in result.scalars().all()]

    async def append(
        self,
        entity_type: EntityType,
        entity_id: int,
        previous_status: Optional[str],
        new_status: str,
        reason: Optional[str] = None,
    ) -> StatusChangeRecord:
        row = StatusHistoryModel(
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            created_at=datetime.now(timezone.utc),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_record(row)

    async def latest(
        self, entity_type: EntityType, entity_id: int
    ) -> Optional[StatusChangeRecord]:
        records = await self._records(self._entity_query(entity_type, entity_id).limit(1))
        return records[0] if records else None

    async def query(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[StatusChangeRecord]:
        query = self._in_range(
            self._entity_query(entity_type, entity_id), from_time, to_time
        )
        return await self._records(query.limit(limit))

    async def entity_history(
        self,
        entity_type: EntityType,
        entity_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StatusChangeRecord]:
        query = self._entity_query(entity_type, entity_id).limit(limit).offset(offset)
        return await self._records(query)

    async def recent(
        self, entity_type: EntityType, since: datetime, limit: int = 100
    ) -> list[StatusChangeRecord]:
        query = (
            select(StatusHistoryModel)
            .where(
                StatusHistoryModel.entity_type == EntityType(entity_type),
                StatusHistoryModel.created_at >= _utc(since),
            )
            .order_by(StatusHistoryModel.created_at.desc(), StatusHistoryModel.id.desc())
            .limit(limit)
        )
        return await self._records(query)

    async def count(
        self,
        entity_type: EntityType,
        entity_id: int,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
    ) -> int:
        query = self._in_range(
            select(func.count())
            .select_from(StatusHistoryModel)
            .where(
                StatusHistoryModel.entity_type == EntityType(entity_type),
                StatusHistoryModel.entity_id == entity_id,
            ),
            from_time,
            to_time,
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def purge_before(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(StatusHistoryModel).where(
                    StatusHistoryModel.created_at < _utc(cutoff)
                )
            )
            await session.commit()
            return result.rowcount or 0
