"""
Domain entities.

Patterns used
-------------
- Plain dataclasses for the three tracked entities; their ``status`` is
  only ever changed by the status engine, never by the entity itself.
- ``StatusChangeRecord`` is a frozen value object: one per accepted
  transition, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from .enums import DriverStatus, EntityType, TripStatus, VehicleStatus


@dataclass
class Vehicle:
    id: int
    status: VehicleStatus = VehicleStatus.AVAILABLE
    max_capacity: float = 0.0  # kg
    odometer: float = 0.0
    last_maintenance: Optional[datetime] = None
    name: str = ""
    license_plate: str = ""

    def can_carry(self, cargo_weight: float) -> bool:
        return cargo_weight <= self.max_capacity


@dataclass
class Driver:
    id: int
    status: DriverStatus = DriverStatus.OFF_DUTY
    license_expiry: date = date.max
    trips_completed: int = 0
    safety_score: float = 100.0
    name: str = ""

    def license_valid_on(self, day: date) -> bool:
        return self.license_expiry >= day

    def days_until_license_expiry(self, day: date) -> int:
        return (self.license_expiry - day).days


@dataclass
class Trip:
    id: int
    vehicle_id: int
    driver_id: int
    status: TripStatus = TripStatus.DRAFT
    cargo_weight: float = 0.0
    start_odometer: Optional[float] = None
    end_odometer: Optional[float] = None


Entity = Union[Vehicle, Driver, Trip]
Status = Union[VehicleStatus, DriverStatus, TripStatus]


@dataclass(frozen=True)
class StatusChangeRecord:
    id: int
    entity_type: EntityType
    entity_id: int
    previous_status: Optional[str]
    new_status: str
    created_at: datetime
    reason: Optional[str] = None
