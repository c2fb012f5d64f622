"""
Status Engine
=============

Single-entity transition (``transition_vehicle`` / ``_driver`` / ``_trip``)
-------------------------------------------------------------------------
1. load entity            -- ``NotFound`` if missing
2. validate               -- ``InvalidTransition`` against the rule table
3. mutate status          -- entity store
4. append history record  -- ``PartialFailure`` if this fails after 3
5. publish event          -- listener errors are logged, never raised

Steps 2-4 run while owning the entity's lock.  ``transition_trip`` to
dispatched / completed / cancelled runs the compound operation instead,
since those statuses are tied to the vehicle's and driver's.

Compound trip operations
------------------------
``dispatch_trip``, ``complete_trip`` and ``cancel_trip`` own the trip, its
vehicle and its driver (in that order), check every precondition before
mutating anything, then run the trip -> vehicle -> driver transitions as a
``Saga`` so that a failure part-way through is compensated and surfaced as
``PartialFailure`` naming the failed step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from src.config import settings

from .consistency import ConsistencyChecker, ConsistencyReport, CorrectionReport
from .entities import Driver, Entity, StatusChangeRecord, Trip, Vehicle
from .enums import (
    DRIVER_ASSIGNMENT_TRANSITIONS,
    DriverStatus,
    EntityType,
    TripStatus,
    VehicleStatus,
)
from .errors import (
    CargoViolation,
    LicenseExpired,
    NotAvailable,
    NotFound,
    OdometerViolation,
    PartialFailure,
    StatusEngineError,
)
from .events import EventNotifier, Listener, StatusChangeEvent
from .locking import EntityRef, LocalLockManager, LockManager
from .ports import EntityStore, HistoryLog
from .saga import Saga
from .transitions import ensure_valid

logger = logging.getLogger(__name__)

APPEND_HISTORY = "append_history"
PUBLISH_EVENT = "publish_event"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusEngine:
    def __init__(
        self,
        store: EntityStore,
        history: HistoryLog,
        notifier: Optional[EventNotifier] = None,
        locks: Optional[LockManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        license_warning_days: Optional[int] = None,
    ):
        self.store = store
        self.history = history
        self.notifier = notifier or EventNotifier()
        self.locks = locks or LocalLockManager()
        self._clock = clock or _utcnow
        self.license_warning_days = (
            settings.license_warning_days
            if license_warning_days is None
            else license_warning_days
        )
        self.consistency = ConsistencyChecker(store, history, self.locks)

    # ── Subscriptions ─────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.notifier.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self.notifier.unsubscribe(listener)

    # ── Single-entity transitions ─────────────────────────────────────

    async def transition_vehicle(
        self,
        vehicle_id: int,
        new_status: VehicleStatus,
        reason: Optional[str] = None,
    ) -> StatusChangeRecord:
        async with self.locks.hold(EntityRef(EntityType.VEHICLE, vehicle_id)):
            vehicle = await self._load(EntityType.VEHICLE, vehicle_id)
            leaving_shop = (
                vehicle.status == VehicleStatus.IN_SHOP
                and new_status == VehicleStatus.AVAILABLE
            )
            record = await self._apply(EntityType.VEHICLE, vehicle, new_status, reason)
            if leaving_shop:
                await self.store.set_vehicle_last_maintenance(
                    vehicle_id, record.created_at
                )
            return record

    async def transition_driver(
        self,
        driver_id: int,
        new_status: DriverStatus,
        reason: Optional[str] = None,
    ) -> StatusChangeRecord:
        async with self.locks.hold(EntityRef(EntityType.DRIVER, driver_id)):
            driver = await self._load(EntityType.DRIVER, driver_id)
            return await self._apply(EntityType.DRIVER, driver, new_status, reason)

    async def transition_trip(
        self,
        trip_id: int,
        new_status: TripStatus,
        reason: Optional[str] = None,
        end_odometer: Optional[float] = None,
    ) -> StatusChangeRecord:
        """
        Move a trip to *new_status*.

        Dispatching, completing and cancelling also move the trip's vehicle
        and driver, so those targets run ``dispatch_trip`` / ``complete_trip``
        / ``cancel_trip`` and return the trip's resulting history record.
        Completion needs *end_odometer*.
        """
        try:
            target = TripStatus(new_status)
        except ValueError:
            target = None

        if target is TripStatus.DISPATCHED:
            await self.dispatch_trip(trip_id)
        elif target is TripStatus.COMPLETED:
            if end_odometer is None:
                trip = await self._load(EntityType.TRIP, trip_id)
                ensure_valid(EntityType.TRIP, trip.status, target)
                raise StatusEngineError(
                    f"Completing trip {trip_id} requires an end odometer"
                )
            await self.complete_trip(trip_id, end_odometer)
        elif target is TripStatus.CANCELLED:
            await self.cancel_trip(trip_id, reason)
        else:
            async with self.locks.hold(EntityRef(EntityType.TRIP, trip_id)):
                trip = await self._load(EntityType.TRIP, trip_id)
                return await self._apply(EntityType.TRIP, trip, new_status, reason)
        return await self.history.latest(EntityType.TRIP, trip_id)

    # ── Compound trip operations ──────────────────────────────────────

    async def dispatch_trip(self, trip_id: int) -> Trip:
        async with self.locks.hold(EntityRef(EntityType.TRIP, trip_id)):
            trip = await self._load(EntityType.TRIP, trip_id)
            async with self.locks.hold(
                EntityRef(EntityType.VEHICLE, trip.vehicle_id),
                EntityRef(EntityType.DRIVER, trip.driver_id),
            ):
                vehicle = await self._load(EntityType.VEHICLE, trip.vehicle_id)
                driver = await self._load(EntityType.DRIVER, trip.driver_id)

                ensure_valid(EntityType.TRIP, trip.status, TripStatus.DISPATCHED)
                self._check_dispatchable(trip, vehicle, driver)

                async def dispatch_trip_record():
                    await self.store.set_trip_odometers(
                        trip.id, start=vehicle.odometer
                    )
                    await self._apply(
                        EntityType.TRIP, trip, TripStatus.DISPATCHED, "Trip dispatched"
                    )

                saga = Saga("dispatch", trip.id)
                self._add_step(
                    saga, "trip", EntityType.TRIP, trip,
                    TripStatus.DISPATCHED, action=dispatch_trip_record,
                )
                self._add_step(
                    saga, "vehicle", EntityType.VEHICLE, vehicle,
                    VehicleStatus.ON_TRIP, reason=f"Assigned to trip {trip.id}",
                )
                self._add_step(
                    saga, "driver", EntityType.DRIVER, driver,
                    DriverStatus.ON_TRIP, reason=f"Assigned to trip {trip.id}",
                    rules=DRIVER_ASSIGNMENT_TRANSITIONS,
                )
                await saga.run()

                logger.info(
                    "Trip %s dispatched (vehicle=%s, driver=%s, cargo=%s)",
                    trip.id, vehicle.id, driver.id, trip.cargo_weight,
                )
                return await self._load(EntityType.TRIP, trip.id)

    async def complete_trip(self, trip_id: int, end_odometer: float) -> Trip:
        async with self.locks.hold(EntityRef(EntityType.TRIP, trip_id)):
            trip = await self._load(EntityType.TRIP, trip_id)
            async with self.locks.hold(
                EntityRef(EntityType.VEHICLE, trip.vehicle_id),
                EntityRef(EntityType.DRIVER, trip.driver_id),
            ):
                vehicle = await self._load(EntityType.VEHICLE, trip.vehicle_id)
                driver = await self._load(EntityType.DRIVER, trip.driver_id)

                ensure_valid(EntityType.TRIP, trip.status, TripStatus.COMPLETED)
                floors = [vehicle.odometer]
                if trip.start_odometer is not None:
                    floors.append(trip.start_odometer)
                if end_odometer < max(floors):
                    raise OdometerViolation(trip.id, end_odometer, max(floors))

                async def complete_trip_record():
                    await self.store.set_trip_odometers(trip.id, end=end_odometer)
                    await self._apply(
                        EntityType.TRIP, trip, TripStatus.COMPLETED, "Trip completed"
                    )

                saga = Saga("complete", trip.id)
                self._add_step(
                    saga, "trip", EntityType.TRIP, trip,
                    TripStatus.COMPLETED, action=complete_trip_record,
                )
                self._add_vehicle_release(saga, trip, vehicle, end_odometer)
                self._add_driver_release(saga, trip, driver, count_trip=True)
                await saga.run()

                logger.info(
                    "Trip %s completed (odometer %s -> %s)",
                    trip.id, trip.start_odometer, end_odometer,
                )
                return await self._load(EntityType.TRIP, trip.id)

    async def cancel_trip(self, trip_id: int, reason: Optional[str] = None) -> Trip:
        async with self.locks.hold(EntityRef(EntityType.TRIP, trip_id)):
            trip = await self._load(EntityType.TRIP, trip_id)
            ensure_valid(EntityType.TRIP, trip.status, TripStatus.CANCELLED)

            if trip.status != TripStatus.DISPATCHED:
                # A draft trip never occupied its vehicle or driver
                await self._apply(
                    EntityType.TRIP, trip, TripStatus.CANCELLED,
                    reason or "Trip cancelled",
                )
                return await self._load(EntityType.TRIP, trip.id)

            async with self.locks.hold(
                EntityRef(EntityType.VEHICLE, trip.vehicle_id),
                EntityRef(EntityType.DRIVER, trip.driver_id),
            ):
                vehicle = await self._load(EntityType.VEHICLE, trip.vehicle_id)
                driver = await self._load(EntityType.DRIVER, trip.driver_id)

                saga = Saga("cancel", trip.id)
                self._add_step(
                    saga, "trip", EntityType.TRIP, trip,
                    TripStatus.CANCELLED, reason=reason or "Trip cancelled",
                )
                self._add_vehicle_release(saga, trip, vehicle)
                self._add_driver_release(saga, trip, driver)
                await saga.run()

                logger.info("Trip %s cancelled", trip.id)
                return await self._load(EntityType.TRIP, trip.id)

    # ── Consistency ───────────────────────────────────────────────────

    async def check(
        self, entity_type: EntityType, entity_id: int
    ) -> ConsistencyReport:
        return await self.consistency.check(entity_type, entity_id)

    async def correct(
        self, entity_type: EntityType, entity_id: int
    ) -> CorrectionReport:
        return await self.consistency.correct(entity_type, entity_id)

    # ── Internals ─────────────────────────────────────────────────────

    async def _load(self, entity_type: EntityType, entity_id: int) -> Entity:
        entity = await self.store.get(entity_type, entity_id)
        if entity is None:
            raise NotFound(entity_type, entity_id)
        return entity

    async def _apply(
        self,
        entity_type: EntityType,
        entity: Entity,
        new_status,
        reason: Optional[str],
        rules: Optional[Mapping] = None,
    ) -> StatusChangeRecord:
        """Validate, mutate, record and publish one transition (lock held)."""
        ensure_valid(entity_type, entity.status, new_status, rules)
        previous = entity.status
        await self.store.update_status(entity_type, entity.id, new_status)
        return await self._record(
            entity_type, entity.id, previous.value, new_status, reason
        )

    async def _record(
        self,
        entity_type: EntityType,
        entity_id: int,
        previous: Optional[str],
        new_status,
        reason: Optional[str],
    ) -> StatusChangeRecord:
        new_value = getattr(new_status, "value", new_status)
        try:
            record = await self.history.append(
                entity_type, entity_id, previous, new_value, reason
            )
        except Exception as exc:
            logger.error(
                "%s %s set to %s but history append failed: %s",
                entity_type.value, entity_id, new_value, exc,
            )
            raise PartialFailure(
                f"{entity_type.value} {entity_id} changed to {new_value} "
                f"but was not recorded in history",
                entity_type=entity_type,
                entity_id=entity_id,
                step=APPEND_HISTORY,
            ) from exc

        try:
            await self.notifier.publish(StatusChangeEvent.from_record(record))
        except Exception as exc:
            logger.error(
                "%s %s recorded as %s but event publish failed: %s",
                entity_type.value, entity_id, new_value, exc,
            )
            raise PartialFailure(
                f"{entity_type.value} {entity_id} changed to {new_value} "
                f"but the change event was not published",
                entity_type=entity_type,
                entity_id=entity_id,
                step=PUBLISH_EVENT,
            ) from exc
        return record

    async def _force(
        self,
        entity_type: EntityType,
        entity_id: int,
        current,
        status,
        reason: str,
    ) -> StatusChangeRecord:
        """Set *status* without validation and record it (compensation only)."""
        await self.store.update_status(entity_type, entity_id, status)
        return await self._record(
            entity_type, entity_id, getattr(current, "value", current), status, reason
        )

    def _check_dispatchable(self, trip: Trip, vehicle: Vehicle, driver: Driver) -> None:
        if vehicle.status != VehicleStatus.AVAILABLE:
            raise NotAvailable(EntityType.VEHICLE, vehicle.id, vehicle.status)
        if not vehicle.can_carry(trip.cargo_weight):
            raise CargoViolation(vehicle.id, trip.cargo_weight, vehicle.max_capacity)
        if driver.status != DriverStatus.ON_DUTY:
            raise NotAvailable(EntityType.DRIVER, driver.id, driver.status)

        today = self._clock().date()
        if not driver.license_valid_on(today):
            raise LicenseExpired(driver.id, driver.license_expiry)
        days_left = driver.days_until_license_expiry(today)
        if days_left < self.license_warning_days:
            logger.warning(
                "Driver %s license expires in %d days (%s)",
                driver.id, days_left, driver.license_expiry,
            )

    def _add_step(
        self,
        saga: Saga,
        name: str,
        entity_type: EntityType,
        entity: Entity,
        new_status,
        reason: Optional[str] = None,
        rules: Optional[Mapping] = None,
        action: Optional[Callable] = None,
    ) -> None:
        """Add a status step whose undo forces *entity* back to its current status."""
        previous = entity.status
        undo_reason = f"compensation: {saga.operation} of trip {saga.entity_id} failed"

        async def run():
            await self._apply(entity_type, entity, new_status, reason, rules)

        async def compensate():
            await self._force(entity_type, entity.id, new_status, previous, undo_reason)

        async def revert(exc: Exception):
            await self._undo_partial(entity_type, entity.id, new_status, previous, exc, undo_reason)

        saga.add(name, action or run, compensate, revert)

    async def _undo_partial(
        self, entity_type, entity_id, new_status, previous, exc, reason
    ) -> None:
        if not isinstance(exc, PartialFailure) or (exc.entity_type, exc.entity_id) != (
            entity_type,
            entity_id,
        ):
            return
        if exc.step == APPEND_HISTORY:
            # Never recorded: restoring the live status matches history again
            await self.store.update_status(entity_type, entity_id, previous)
        elif exc.step == PUBLISH_EVENT:
            await self._force(entity_type, entity_id, new_status, previous, reason)

    def _add_vehicle_release(
        self,
        saga: Saga,
        trip: Trip,
        vehicle: Vehicle,
        end_odometer: Optional[float] = None,
    ) -> None:
        previous_odometer = vehicle.odometer
        release = vehicle.status == VehicleStatus.ON_TRIP
        if not release:
            logger.warning(
                "Vehicle %s is %s, not on-trip; leaving its status unchanged "
                "while closing trip %s",
                vehicle.id, vehicle.status.value, trip.id,
            )
        reason = f"Released from trip {trip.id}"
        undo_reason = f"compensation: {saga.operation} of trip {trip.id} failed"

        async def run():
            if end_odometer is not None:
                await self.store.set_vehicle_odometer(vehicle.id, end_odometer)
            if release:
                await self._apply(
                    EntityType.VEHICLE, vehicle, VehicleStatus.AVAILABLE, reason
                )

        async def compensate():
            if end_odometer is not None:
                await self.store.set_vehicle_odometer(vehicle.id, previous_odometer)
            if release:
                await self._force(
                    EntityType.VEHICLE, vehicle.id,
                    VehicleStatus.AVAILABLE, VehicleStatus.ON_TRIP, undo_reason,
                )

        async def revert(exc: Exception):
            if end_odometer is not None:
                await self.store.set_vehicle_odometer(vehicle.id, previous_odometer)
            await self._undo_partial(
                EntityType.VEHICLE, vehicle.id, VehicleStatus.AVAILABLE,
                VehicleStatus.ON_TRIP, exc, undo_reason,
            )

        saga.add("vehicle", run, compensate, revert)

    def _add_driver_release(
        self,
        saga: Saga,
        trip: Trip,
        driver: Driver,
        count_trip: bool = False,
    ) -> None:
        release = driver.status == DriverStatus.ON_TRIP
        if not release:
            logger.warning(
                "Driver %s is %s, not on-trip; leaving its status unchanged "
                "while closing trip %s",
                driver.id, driver.status.value, trip.id,
            )
        reason = f"Released from trip {trip.id}"
        undo_reason = f"compensation: {saga.operation} of trip {trip.id} failed"
        counted = False

        async def run():
            nonlocal counted
            if count_trip:
                await self.store.increment_driver_trips(driver.id)
                counted = True
            if release:
                await self._apply(
                    EntityType.DRIVER, driver, DriverStatus.ON_DUTY, reason,
                    DRIVER_ASSIGNMENT_TRANSITIONS,
                )

        async def compensate():
            nonlocal counted
            if counted:
                await self.store.increment_driver_trips(driver.id, -1)
                counted = False
            if release:
                await self._force(
                    EntityType.DRIVER, driver.id,
                    DriverStatus.ON_DUTY, DriverStatus.ON_TRIP, undo_reason,
                )

        async def revert(exc: Exception):
            nonlocal counted
            if counted:
                await self.store.increment_driver_trips(driver.id, -1)
                counted = False
            await self._undo_partial(
                EntityType.DRIVER, driver.id, DriverStatus.ON_DUTY,
                DriverStatus.ON_TRIP, exc, undo_reason,
            )

        saga.add("driver", run, compensate, revert)
