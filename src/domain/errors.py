"""Exception hierarchy raised by the status engine."""

from __future__ import annotations

from typing import Any, Optional


class StatusEngineError(Exception):
    """Base exception for all status engine errors."""


class NotFound(StatusEngineError):
    """The referenced vehicle, driver or trip does not exist."""

    def __init__(self, entity_type: Any, entity_id: int) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{_label(entity_type)} {entity_id} not found")


class InvalidTransition(StatusEngineError):
    """A status change is not present in the entity's rule table."""

    def __init__(self, entity_type: Any, current: Any, requested: Any) -> None:
        self.entity_type = entity_type
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot transition {_label(entity_type)} from "
            f"{_label(current)} to {_label(requested)}"
        )


class CargoViolation(StatusEngineError):
    def __init__(self, vehicle_id: int, cargo_weight: float, max_capacity: float):
        self.vehicle_id = vehicle_id
        self.cargo_weight = cargo_weight
        self.max_capacity = max_capacity
        super().__init__(
            f"Cargo weight {cargo_weight}kg exceeds vehicle {vehicle_id} "
            f"capacity {max_capacity}kg"
        )


class LicenseExpired(StatusEngineError):
    def __init__(self, driver_id: int, license_expiry: Any):
        self.driver_id = driver_id
        self.license_expiry = license_expiry
        super().__init__(f"Driver {driver_id} license expired on {license_expiry}")


class NotAvailable(StatusEngineError):
    """A vehicle or driver is not idle and cannot take a trip."""

    def __init__(self, entity_type: Any, entity_id: int, status: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        super().__init__(
            f"{_label(entity_type)} {entity_id} is not available "
            f"(status {_label(status)})"
        )


class OdometerViolation(StatusEngineError):
    def __init__(self, trip_id: int, end_odometer: float, minimum: float):
        self.trip_id = trip_id
        self.end_odometer = end_odometer
        self.minimum = minimum
        super().__init__(
            f"End odometer {end_odometer} for trip {trip_id} is below {minimum}"
        )


class PartialFailure(StatusEngineError):
    """
    An operation mutated state but did not finish.

    The live entity status may disagree with its history; callers should
    run a consistency check.  For compound trip operations ``step`` names
    the saga step that failed and ``compensated`` tells whether earlier
    steps were successfully rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        entity_type: Any = None,
        entity_id: Optional[int] = None,
        operation: Optional[str] = None,
        step: Optional[str] = None,
        completed_steps: tuple[str, ...] = (),
        compensated: bool = False,
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        self.step = step
        self.completed_steps = completed_steps
        self.compensated = compensated
        super().__init__(message)


class LockTimeout(StatusEngineError):
    """Could not obtain ownership of an entity in time."""


class HistoryQueryError(StatusEngineError):
    """Bad pagination or date range for a history query."""


def _label(value: Any) -> str:
    return getattr(value, "value", value)
