"""
Compound trip operations: dispatch, completion, cancellation.

Covers the precondition checks (nothing changes on rejection) and the
saga behaviour when a step fails part-way through.
"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from src.domain.entities import Driver, Trip, Vehicle
from src.domain.enums import DriverStatus, EntityType, TripStatus, VehicleStatus
from src.domain.errors import (
    CargoViolation,
    InvalidTransition,
    LicenseExpired,
    NotAvailable,
    NotFound,
    OdometerViolation,
    PartialFailure,
)


async def _statuses(store):
    return (
        (await store.get_trip(1)).status,
        (await store.get_vehicle(1)).status,
        (await store.get_driver(1)).status,
    )


async def _assert_all_consistent(engine):
    for entity_type in EntityType:
        report = await engine.check(entity_type, 1)
        assert report.is_consistent, report


# ── Dispatch ──────────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_scenario(self, engine, store, history):
        trip = await engine.dispatch_trip(1)

        assert trip.status == TripStatus.DISPATCHED
        assert trip.start_odometer == 45000
        assert await _statuses(store) == (
            TripStatus.DISPATCHED, VehicleStatus.ON_TRIP, DriverStatus.ON_TRIP,
        )
        assert [(r.entity_type, r.new_status) for r in history.records] == [
            (EntityType.TRIP, "dispatched"),
            (EntityType.VEHICLE, "on-trip"),
            (EntityType.DRIVER, "on-trip"),
        ]
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_events_in_step_order(self, engine, events):
        await engine.dispatch_trip(1)
        assert [e.entity_type for e in events] == [
            EntityType.TRIP, EntityType.VEHICLE, EntityType.DRIVER,
        ]

    @pytest.mark.asyncio
    async def test_exact_capacity_accepted(self, engine, store):
        store.trips[1].cargo_weight = 20000
        await engine.dispatch_trip(1)
        assert (await store.get_trip(1)).status == TripStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_cargo_violation_changes_nothing(self, engine, store, history):
        store.trips[1].cargo_weight = 25000

        with pytest.raises(CargoViolation) as excinfo:
            await engine.dispatch_trip(1)

        assert excinfo.value.max_capacity == 20000
        assert await _statuses(store) == (
            TripStatus.DRAFT, VehicleStatus.AVAILABLE, DriverStatus.ON_DUTY,
        )
        assert history.records == []

    @pytest.mark.asyncio
    async def test_expired_license(self, engine, store, history):
        store.drivers[1].license_expiry = date(2026, 3, 1)  # clock is 2026-03-02

        with pytest.raises(LicenseExpired):
            await engine.dispatch_trip(1)
        assert history.records == []

    @pytest.mark.asyncio
    async def test_license_expiring_today_is_valid(self, engine, store):
        store.drivers[1].license_expiry = date(2026, 3, 2)
        await engine.dispatch_trip(1)

    @pytest.mark.asyncio
    async def test_license_expiring_soon_logs_warning(self, engine, store, caplog):
        store.drivers[1].license_expiry = date(2026, 3, 5)
        await engine.dispatch_trip(1)
        assert "license expires in 3 days" in caplog.text

    @pytest.mark.asyncio
    async def test_vehicle_not_available(self, engine, store, history):
        await engine.transition_vehicle(1, VehicleStatus.IN_SHOP)

        with pytest.raises(NotAvailable) as excinfo:
            await engine.dispatch_trip(1)

        assert excinfo.value.entity_type is EntityType.VEHICLE
        assert (await store.get_trip(1)).status == TripStatus.DRAFT
        assert len(history.records) == 1

    @pytest.mark.asyncio
    async def test_driver_not_on_duty(self, engine, store):
        await engine.transition_driver(1, DriverStatus.OFF_DUTY)

        with pytest.raises(NotAvailable) as excinfo:
            await engine.dispatch_trip(1)

        assert excinfo.value.entity_type is EntityType.DRIVER
        assert (await store.get_vehicle(1)).status == VehicleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_dispatch_twice_rejected(self, engine, dispatched):
        with pytest.raises(InvalidTransition):
            await engine.dispatch_trip(1)

    @pytest.mark.asyncio
    async def test_missing_vehicle(self, engine, store):
        store.add_trip(Trip(id=2, vehicle_id=42, driver_id=1, cargo_weight=10))
        with pytest.raises(NotFound):
            await engine.dispatch_trip(2)

    @pytest.mark.asyncio
    async def test_busy_driver_cannot_take_second_trip(self, engine, store, dispatched):
        store.add_vehicle(Vehicle(id=2, max_capacity=5000))
        store.add_trip(Trip(id=2, vehicle_id=2, driver_id=1, cargo_weight=100))

        with pytest.raises(NotAvailable):
            await engine.dispatch_trip(2)
        assert (await store.get_vehicle(2)).status == VehicleStatus.AVAILABLE


# ── Completion ────────────────────────────────────────────────────────


class TestComplete:
    @pytest.mark.asyncio
    async def test_completion_scenario(self, engine, store, dispatched):
        assert dispatched.start_odometer == 45000

        trip = await engine.complete_trip(1, 45450)

        assert trip.status == TripStatus.COMPLETED
        assert trip.end_odometer == 45450
        vehicle = await store.get_vehicle(1)
        assert vehicle.status == VehicleStatus.AVAILABLE
        assert vehicle.odometer == 45450
        driver = await store.get_driver(1)
        assert driver.status == DriverStatus.ON_DUTY
        assert driver.trips_completed == 1
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_odometer_below_start_rejected(self, engine, store, history, dispatched):
        before = len(history.records)

        with pytest.raises(OdometerViolation):
            await engine.complete_trip(1, 44000)

        assert await _statuses(store) == (
            TripStatus.DISPATCHED, VehicleStatus.ON_TRIP, DriverStatus.ON_TRIP,
        )
        assert (await store.get_vehicle(1)).odometer == 45000
        assert (await store.get_driver(1)).trips_completed == 0
        assert len(history.records) == before

    @pytest.mark.asyncio
    async def test_zero_distance_allowed(self, engine, dispatched):
        trip = await engine.complete_trip(1, 45000)
        assert trip.status == TripStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_draft_trip_cannot_complete(self, engine, store):
        with pytest.raises(InvalidTransition):
            await engine.complete_trip(1, 46000)
        assert (await store.get_driver(1)).trips_completed == 0

    @pytest.mark.asyncio
    async def test_complete_twice_rejected(self, engine, store, dispatched):
        await engine.complete_trip(1, 45100)
        with pytest.raises(InvalidTransition):
            await engine.complete_trip(1, 45200)
        assert (await store.get_driver(1)).trips_completed == 1

    @pytest.mark.asyncio
    async def test_vehicle_sent_to_shop_mid_trip_keeps_status(
        self, engine, store, dispatched
    ):
        await engine.transition_vehicle(1, VehicleStatus.IN_SHOP, "Breakdown")

        await engine.complete_trip(1, 45200)

        vehicle = await store.get_vehicle(1)
        assert vehicle.status == VehicleStatus.IN_SHOP
        assert vehicle.odometer == 45200
        assert (await store.get_driver(1)).status == DriverStatus.ON_DUTY
        await _assert_all_consistent(engine)


# ── Cancellation ──────────────────────────────────────────────────────


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_draft_leaves_vehicle_and_driver(self, engine, store, history):
        trip = await engine.cancel_trip(1)

        assert trip.status == TripStatus.CANCELLED
        assert (await store.get_vehicle(1)).status == VehicleStatus.AVAILABLE
        assert (await store.get_driver(1)).status == DriverStatus.ON_DUTY
        assert len(history.records) == 1

    @pytest.mark.asyncio
    async def test_cancel_dispatched_releases(self, engine, store, history, dispatched):
        trip = await engine.cancel_trip(1, reason="Customer cancelled")

        assert trip.status == TripStatus.CANCELLED
        assert (await store.get_vehicle(1)).status == VehicleStatus.AVAILABLE
        assert (await store.get_driver(1)).status == DriverStatus.ON_DUTY
        assert (await store.get_driver(1)).trips_completed == 0
        trip_record = await history.latest(EntityType.TRIP, 1)
        assert trip_record.reason == "Customer cancelled"
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_cancel_completed_rejected(self, engine, store, dispatched):
        await engine.complete_trip(1, 45300)
        with pytest.raises(InvalidTransition):
            await engine.cancel_trip(1)
        assert (await store.get_trip(1)).status == TripStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, engine):
        await engine.cancel_trip(1)
        with pytest.raises(InvalidTransition):
            await engine.cancel_trip(1)


# ── Saga compensation ─────────────────────────────────────────────────


class TestSagaCompensation:
    @pytest.mark.asyncio
    async def test_dispatch_fails_at_driver_step(self, engine, store, history):
        store.update_driver_status = AsyncMock(side_effect=RuntimeError("driver table locked"))

        with pytest.raises(PartialFailure) as excinfo:
            await engine.dispatch_trip(1)

        err = excinfo.value
        assert err.operation == "dispatch"
        assert err.step == "driver"
        assert err.completed_steps == ("trip", "vehicle")
        assert err.compensated is True
        assert (await store.get_trip(1)).status == TripStatus.DRAFT
        assert (await store.get_vehicle(1)).status == VehicleStatus.AVAILABLE
        assert [r.new_status for r in history.records] == [
            "dispatched", "on-trip", "available", "draft",
        ]
        assert history.records[-1].reason.startswith("compensation: dispatch")
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_history_failure_on_driver_record_is_reverted(
        self, engine, store, history
    ):
        original = history.append

        async def append(entity_type, *args, **kwargs):
            if entity_type is EntityType.DRIVER:
                raise RuntimeError("history insert failed")
            return await original(entity_type, *args, **kwargs)

        history.append = append

        with pytest.raises(PartialFailure) as excinfo:
            await engine.dispatch_trip(1)

        assert excinfo.value.step == "driver"
        assert excinfo.value.compensated is True
        assert await _statuses(store) == (
            TripStatus.DRAFT, VehicleStatus.AVAILABLE, DriverStatus.ON_DUTY,
        )
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_first_step_failure_reraises_original(self, engine, store, history):
        store.update_trip_status = AsyncMock(side_effect=ConnectionError("store down"))

        with pytest.raises(ConnectionError):
            await engine.dispatch_trip(1)
        assert history.records == []

    @pytest.mark.asyncio
    async def test_failed_compensation_reported(self, engine, store):
        original = store.update_trip_status

        async def flaky(trip_id, status):
            if status == TripStatus.DRAFT:
                raise RuntimeError("trip table offline")
            await original(trip_id, status)

        store.update_trip_status = flaky
        store.update_driver_status = AsyncMock(side_effect=RuntimeError("driver down"))

        with pytest.raises(PartialFailure) as excinfo:
            await engine.dispatch_trip(1)

        assert excinfo.value.compensated is False
        assert (await store.get_trip(1)).status == TripStatus.DISPATCHED
        assert (await store.get_vehicle(1)).status == VehicleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_complete_fails_at_driver_step_restores_vehicle(
        self, engine, store, history, dispatched
    ):
        store.increment_driver_trips = AsyncMock(side_effect=RuntimeError("counter down"))

        with pytest.raises(PartialFailure) as excinfo:
            await engine.complete_trip(1, 45450)

        assert excinfo.value.operation == "complete"
        assert excinfo.value.compensated is True
        vehicle = await store.get_vehicle(1)
        assert vehicle.status == VehicleStatus.ON_TRIP
        assert vehicle.odometer == 45000
        assert (await store.get_trip(1)).status == TripStatus.DISPATCHED
        assert (await store.get_driver(1)).status == DriverStatus.ON_TRIP
        await _assert_all_consistent(engine)

    @pytest.mark.asyncio
    async def test_complete_retry_after_compensation(self, engine, store, dispatched):
        real_increment = store.increment_driver_trips
        store.increment_driver_trips = AsyncMock(side_effect=RuntimeError("counter down"))
        with pytest.raises(PartialFailure):
            await engine.complete_trip(1, 45450)

        store.increment_driver_trips = real_increment
        trip = await engine.complete_trip(1, 45450)

        assert trip.status == TripStatus.COMPLETED
        assert (await store.get_driver(1)).trips_completed == 1


class TestMultipleDrivers:
    @pytest.mark.asyncio
    async def test_second_trip_after_completion(self, engine, store, dispatched):
        await engine.complete_trip(1, 45450)
        store.add_driver(Driver(id=2, status=DriverStatus.ON_DUTY, license_expiry=date(2028, 1, 1)))
        store.add_trip(Trip(id=2, vehicle_id=1, driver_id=2, cargo_weight=5000))

        trip = await engine.dispatch_trip(2)

        assert trip.start_odometer == 45450
        assert (await store.get_vehicle(1)).status == VehicleStatus.ON_TRIP
