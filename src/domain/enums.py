"""Domain enumerations and state-transition rules."""

import enum


class EntityType(str, enum.Enum):
    VEHICLE = "vehicle"
    DRIVER = "driver"
    TRIP = "trip"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    ON_TRIP = "on-trip"
    IN_SHOP = "in-shop"
    RETIRED = "retired"


class DriverStatus(str, enum.Enum):
    ON_DUTY = "on-duty"
    OFF_DUTY = "off-duty"
    SUSPENDED = "suspended"
    ON_TRIP = "on-trip"  # set only by trip dispatch


class TripStatus(str, enum.Enum):
    DRAFT = "draft"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machines: map current status -> set of valid next statuses

VEHICLE_TRANSITIONS: dict[VehicleStatus, set[VehicleStatus]] = {
    VehicleStatus.AVAILABLE: {
        VehicleStatus.ON_TRIP,
        VehicleStatus.IN_SHOP,
        VehicleStatus.RETIRED,
    },
    VehicleStatus.ON_TRIP: {VehicleStatus.AVAILABLE, VehicleStatus.IN_SHOP},
    VehicleStatus.IN_SHOP: {VehicleStatus.AVAILABLE, VehicleStatus.RETIRED},
    VehicleStatus.RETIRED: set(),
}

DRIVER_TRANSITIONS: dict[DriverStatus, set[DriverStatus]] = {
    DriverStatus.ON_DUTY: {DriverStatus.OFF_DUTY, DriverStatus.SUSPENDED},
    DriverStatus.OFF_DUTY: {DriverStatus.ON_DUTY, DriverStatus.SUSPENDED},
    DriverStatus.SUSPENDED: {DriverStatus.ON_DUTY, DriverStatus.OFF_DUTY},
    # Only trip completion / cancellation may release a driver
    DriverStatus.ON_TRIP: set(),
}

TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.DRAFT: {TripStatus.DISPATCHED, TripStatus.CANCELLED},
    TripStatus.DISPATCHED: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

# Used by the compound trip operations only
DRIVER_ASSIGNMENT_TRANSITIONS: dict[DriverStatus, set[DriverStatus]] = {
    DriverStatus.ON_DUTY: {DriverStatus.ON_TRIP},
    DriverStatus.ON_TRIP: {DriverStatus.ON_DUTY},
}

TRANSITIONS: dict[EntityType, dict] = {
    EntityType.VEHICLE: VEHICLE_TRANSITIONS,
    EntityType.DRIVER: DRIVER_TRANSITIONS,
    EntityType.TRIP: TRIP_TRANSITIONS,
}

STATUS_TYPES: dict[EntityType, type[enum.Enum]] = {
    EntityType.VEHICLE: VehicleStatus,
    EntityType.DRIVER: DriverStatus,
    EntityType.TRIP: TripStatus,
}

# Global lock acquisition order for multi-entity operations
LOCK_ORDER: dict[EntityType, int] = {
    EntityType.TRIP: 0,
    EntityType.VEHICLE: 1,
    EntityType.DRIVER: 2,
}
