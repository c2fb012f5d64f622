"""
SQLAlchemy ORM models.

Tables
------
* ``vehicles``        -- fleet assets with capacity and odometer
* ``drivers``         -- personnel with license expiry and trip counter
* ``trips``           -- assignments of one vehicle + one driver
* ``status_history``  -- append-only audit trail of status changes

Indexes
-------
* **B-Tree** on every ``status`` column for look-ups by state.
* **B-Tree** on ``(entity_type, entity_id, created_at)`` in
  ``status_history`` for "latest record" and range queries.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from src.domain.enums import DriverStatus, EntityType, TripStatus, VehicleStatus


def _values(enum_cls):
    # Persist the wire value ("on-trip"), not the member name
    return [member.value for member in enum_cls]


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, default="")
    license_plate = Column(String(32), unique=True, nullable=True)
    status = Column(
        Enum(VehicleStatus, name="vehiclestatus", values_callable=_values),
        default=VehicleStatus.AVAILABLE,
        nullable=False,
    )
    max_capacity = Column(Float, nullable=False)
    odometer = Column(Float, default=0.0, nullable=False)
    last_maintenance = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_vehicles_status", "status"),)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, default="")
    status = Column(
        Enum(DriverStatus, name="driverstatus", values_callable=_values),
        default=DriverStatus.OFF_DUTY,
        nullable=False,
    )
    license_expiry = Column(Date, nullable=False)
    trips_completed = Column(Integer, default=0, nullable=False)
    safety_score = Column(Float, default=100.0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_drivers_status", "status"),)


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    status = Column(
        Enum(TripStatus, name="tripstatus", values_callable=_values),
        default=TripStatus.DRAFT,
        nullable=False,
    )
    cargo_weight = Column(Float, nullable=False)
    start_odometer = Column(Float, nullable=True)
    end_odometer = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_vehicle", "vehicle_id"),
        Index("idx_trips_driver", "driver_id"),
    )


class StatusHistoryModel(Base):
    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(
        Enum(EntityType, name="entitytype", values_callable=_values),
        nullable=False,
    )
    entity_id = Column(Integer, nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_status_history_entity", "entity_type", "entity_id", "created_at"),
        Index("idx_status_history_created", "created_at"),
    )
