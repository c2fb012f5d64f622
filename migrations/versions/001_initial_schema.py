"""Initial schema: fleet entities and the status history audit trail.

Revision ID: 001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False, server_default=""),
        sa.Column("license_plate", sa.String(32), unique=True, nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "available", "on-trip", "in-shop", "retired", name="vehiclestatus"
            ),
            default="available",
            nullable=False,
        ),
        sa.Column("max_capacity", sa.Float, nullable=False),
        sa.Column("odometer", sa.Float, default=0.0, nullable=False),
        sa.Column("last_maintenance", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_vehicles_status", "vehicles", ["status"])

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum(
                "on-duty", "off-duty", "suspended", "on-trip", name="driverstatus"
            ),
            default="off-duty",
            nullable=False,
        ),
        sa.Column("license_expiry", sa.Date, nullable=False),
        sa.Column("trips_completed", sa.Integer, default=0, nullable=False),
        sa.Column("safety_score", sa.Float, default=100.0, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum(
                "draft", "dispatched", "completed", "cancelled", name="tripstatus"
            ),
            default="draft",
            nullable=False,
        ),
        sa.Column("cargo_weight", sa.Float, nullable=False),
        sa.Column("start_odometer", sa.Float, nullable=True),
        sa.Column("end_odometer", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_vehicle", "trips", ["vehicle_id"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])

    # ── status_history ────────────────────────────────────────────────
    op.create_table(
        "status_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "entity_type",
            sa.Enum("vehicle", "driver", "trip", name="entitytype"),
            nullable=False,
        ),
        sa.Column("entity_id", sa.Integer, nullable=False),
        sa.Column("previous_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_status_history_entity",
        "status_history",
        ["entity_type", "entity_id", "created_at"],
    )
    op.create_index("idx_status_history_created", "status_history", ["created_at"])


def downgrade() -> None:
    op.drop_table("status_history")
    op.drop_table("trips")
    op.drop_table("drivers")
    op.drop_table("vehicles")
    op.execute("DROP TYPE IF EXISTS entitytype")
    op.execute("DROP TYPE IF EXISTS tripstatus")
    op.execute("DROP TYPE IF EXISTS driverstatus")
    op.execute("DROP TYPE IF EXISTS vehiclestatus")
