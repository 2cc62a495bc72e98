"""
Initial schema - all 7 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Customers
    op.create_table(
        "customers",
        sa.Column("customer_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("travel_time_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("license_expiry_date", sa.Date),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("travel_time_minutes >= 0", name="ck_customer_travel_time_non_negative"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="ck_customer_status"),
    )

    # 2. Products
    op.create_table(
        "products",
        sa.Column("product_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("half_life_minutes", sa.Float, nullable=False),
        sa.Column("shelf_life_minutes", sa.Float, nullable=False),
        sa.Column("synthesis_time_minutes", sa.Float, nullable=False, server_default="0"),
        sa.Column("qc_time_minutes", sa.Float, nullable=False, server_default="0"),
        sa.Column("packaging_time_minutes", sa.Float, nullable=False, server_default="0"),
        sa.Column("overage_percent", sa.Float, nullable=False, server_default="0"),
        sa.Column("dispensing_minutes_per_dose", sa.Integer, nullable=False, server_default="15"),
        sa.Column("activity_unit", sa.String(10), nullable=False, server_default="mCi"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("half_life_minutes > 0", name="ck_product_half_life_positive"),
        sa.CheckConstraint("shelf_life_minutes > 0", name="ck_product_shelf_life_positive"),
        sa.CheckConstraint(
            "synthesis_time_minutes >= 0 AND qc_time_minutes >= 0 AND packaging_time_minutes >= 0",
            name="ck_product_stage_durations_non_negative",
        ),
        sa.CheckConstraint("overage_percent >= 0", name="ck_product_overage_non_negative"),
        sa.CheckConstraint("dispensing_minutes_per_dose > 0", name="ck_product_dispensing_minutes_positive"),
    )

    # 3. Customer ↔ Product permissions
    op.create_table(
        "customer_products",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.UniqueConstraint("customer_id", "product_id", name="uq_customer_product"),
    )

    # 4. Capacity windows
    op.create_table(
        "capacity_windows",
        sa.Column("window_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("window_date", sa.Date, nullable=False),
        sa.Column("start_time", sa.DateTime, nullable=False),
        sa.Column("end_time", sa.DateTime, nullable=False),
        sa.Column("capacity_minutes", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("window_date", "start_time", "end_time", name="uq_capacity_window_span"),
        sa.CheckConstraint("capacity_minutes > 0", name="ck_window_capacity_positive"),
        sa.CheckConstraint("end_time > start_time", name="ck_window_span_positive"),
    )
    op.create_index("ix_capacity_windows_date", "capacity_windows", ["window_date", "start_time"])

    # 5. Delivery slots
    op.create_table(
        "delivery_slots",
        sa.Column("slot_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("window_id", UUID(as_uuid=True), sa.ForeignKey("capacity_windows.window_id"), nullable=False),
        sa.Column("slot_time", sa.DateTime, nullable=False),
        sa.Column("duration_minutes", sa.Integer, nullable=False),
        sa.Column("capacity_minutes", sa.Integer, nullable=False),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.CheckConstraint("capacity_minutes > 0", name="ck_slot_capacity_positive"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_slot_duration_positive"),
    )
    op.create_index("ix_delivery_slots_window", "delivery_slots", ["window_id", "slot_time"])

    # 6. Reservations
    op.create_table(
        "reservations",
        sa.Column("reservation_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("reservation_number", sa.String(32), nullable=False, unique=True),
        sa.Column("window_id", UUID(as_uuid=True), sa.ForeignKey("capacity_windows.window_id"), nullable=False),
        sa.Column("slot_id", UUID(as_uuid=True), sa.ForeignKey("delivery_slots.slot_id")),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.customer_id")),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id")),
        sa.Column("requested_date", sa.DateTime, nullable=False),
        sa.Column("requested_activity", sa.Float),
        sa.Column("activity_unit", sa.String(10), nullable=False, server_default="mCi"),
        sa.Column("number_of_doses", sa.Integer, nullable=False, server_default="1"),
        sa.Column("estimated_minutes", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="TENTATIVE"),
        sa.Column("expires_at", sa.DateTime),
        sa.Column("converted_order_id", UUID(as_uuid=True)),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.CheckConstraint("estimated_minutes > 0", name="ck_reservation_minutes_positive"),
        sa.CheckConstraint("number_of_doses > 0", name="ck_reservation_doses_positive"),
        sa.CheckConstraint(
            "status IN ('TENTATIVE', 'CONFIRMED', 'EXPIRED', 'CANCELLED', 'CONVERTED')",
            name="ck_reservation_status",
        ),
    )
    op.create_index("ix_reservations_window_status", "reservations", ["window_id", "status"])
    op.create_index("ix_reservations_slot_status", "reservations", ["slot_id", "status"])
    op.create_index("ix_reservations_status_expires", "reservations", ["status", "expires_at"])

    # 7. Orders
    op.create_table(
        "orders",
        sa.Column("order_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("order_number", sa.String(32), nullable=False, unique=True),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.customer_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("reservation_id", UUID(as_uuid=True), sa.ForeignKey("reservations.reservation_id")),
        sa.Column("delivery_time", sa.DateTime, nullable=False),
        sa.Column("target_time", sa.DateTime),
        sa.Column("requested_activity", sa.Float, nullable=False),
        sa.Column("activity_unit", sa.String(10), nullable=False, server_default="mCi"),
        sa.Column("number_of_doses", sa.Integer, nullable=False, server_default="1"),
        sa.Column("synthesis_start_time", sa.DateTime, nullable=False),
        sa.Column("qc_start_time", sa.DateTime, nullable=False),
        sa.Column("packaging_start_time", sa.DateTime, nullable=False),
        sa.Column("dispatch_time", sa.DateTime, nullable=False),
        sa.Column("calculated_production_activity", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("special_notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("requested_activity > 0", name="ck_order_activity_positive"),
        sa.CheckConstraint(
            "calculated_production_activity >= requested_activity", name="ck_order_production_covers_request"
        ),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'VALIDATED', 'SCHEDULED', 'CANCELLED')",
            name="ck_order_status",
        ),
    )
    op.create_index("ix_orders_customer_delivery", "orders", ["customer_id", "delivery_time"])


def downgrade() -> None:
    tables = [
        "orders",
        "reservations",
        "delivery_slots",
        "capacity_windows",
        "customer_products",
        "products",
        "customers",
    ]
    for table in tables:
        op.drop_table(table)
