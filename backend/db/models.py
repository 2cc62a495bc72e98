"""
DoseOps Database Models

Tables:
  Master data (supplied by external CRUD screens):
  1. customers           - Ordering sites (+ travel time, license expiry)
  2. products            - Radiopharmaceuticals (+ half-life, stage durations)
  3. customer_products   - Which products a customer is licensed to order

  Capacity:
  4. capacity_windows    - Fixed minute budgets per delivery/production window
  5. delivery_slots      - Finer-grained sub-windows with their own budget
  6. reservations        - Capacity holds (TENTATIVE → CONFIRMED → CONVERTED)

  Downstream:
  7. orders              - Dose orders with their computed backward schedule

Window consumption is never stored. It is always the sum of
estimated_minutes over live reservations (see capacity.ledger).
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
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
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def utcnow() -> datetime:
    """Naive UTC now. All stored instants are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ReservationStatus(str, enum.Enum):
    TENTATIVE = "TENTATIVE"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    CONVERTED = "CONVERTED"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    travel_time_minutes = Column(Integer, nullable=False, default=0)
    license_expiry_date = Column(Date)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("travel_time_minutes >= 0", name="ck_customer_travel_time_non_negative"),
        CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="ck_customer_status"),
    )

    permitted_products = relationship("CustomerProduct", back_populates="customer", cascade="all, delete-orphan")


# ─── 2. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    half_life_minutes = Column(Float, nullable=False)
    shelf_life_minutes = Column(Float, nullable=False)
    synthesis_time_minutes = Column(Float, nullable=False, default=0)
    qc_time_minutes = Column(Float, nullable=False, default=0)
    packaging_time_minutes = Column(Float, nullable=False, default=0)
    overage_percent = Column(Float, nullable=False, default=0)
    # Time standard for dispensing; drives a reservation's estimated minutes
    dispensing_minutes_per_dose = Column(Integer, nullable=False, default=15)
    activity_unit = Column(String(10), nullable=False, default="mCi")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("half_life_minutes > 0", name="ck_product_half_life_positive"),
        CheckConstraint("shelf_life_minutes > 0", name="ck_product_shelf_life_positive"),
        CheckConstraint(
            "synthesis_time_minutes >= 0 AND qc_time_minutes >= 0 AND packaging_time_minutes >= 0",
            name="ck_product_stage_durations_non_negative",
        ),
        CheckConstraint("overage_percent >= 0", name="ck_product_overage_non_negative"),
        CheckConstraint("dispensing_minutes_per_dose > 0", name="ck_product_dispensing_minutes_positive"),
    )


# ─── 3. Customer ↔ Product permissions ──────────────────────────────────────


class CustomerProduct(Base):
    __tablename__ = "customer_products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)

    __table_args__ = (UniqueConstraint("customer_id", "product_id", name="uq_customer_product"),)

    customer = relationship("Customer", back_populates="permitted_products")


# ─── 4. Capacity Windows ────────────────────────────────────────────────────


class CapacityWindow(Base):
    __tablename__ = "capacity_windows"

    window_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    window_date = Column(Date, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    capacity_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_capacity_windows_date", "window_date", "start_time"),
        UniqueConstraint("window_date", "start_time", "end_time", name="uq_capacity_window_span"),
        CheckConstraint("capacity_minutes > 0", name="ck_window_capacity_positive"),
        CheckConstraint("end_time > start_time", name="ck_window_span_positive"),
    )

    slots = relationship("DeliverySlot", back_populates="window", order_by="DeliverySlot.slot_time")


# ─── 5. Delivery Slots ──────────────────────────────────────────────────────


class DeliverySlot(Base):
    __tablename__ = "delivery_slots"

    slot_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    window_id = Column(GUID(), ForeignKey("capacity_windows.window_id"), nullable=False)
    slot_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    capacity_minutes = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_delivery_slots_window", "window_id", "slot_time"),
        CheckConstraint("capacity_minutes > 0", name="ck_slot_capacity_positive"),
        CheckConstraint("duration_minutes > 0", name="ck_slot_duration_positive"),
    )

    window = relationship("CapacityWindow", back_populates="slots")


# ─── 6. Reservations ────────────────────────────────────────────────────────


class Reservation(Base):
    __tablename__ = "reservations"

    reservation_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    reservation_number = Column(String(32), nullable=False, unique=True)
    window_id = Column(GUID(), ForeignKey("capacity_windows.window_id"), nullable=False)
    slot_id = Column(GUID(), ForeignKey("delivery_slots.slot_id"), nullable=True)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=True)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=True)
    requested_date = Column(DateTime, nullable=False)
    requested_activity = Column(Float)
    activity_unit = Column(String(10), nullable=False, default="mCi")
    number_of_doses = Column(Integer, nullable=False, default=1)
    estimated_minutes = Column(Integer, nullable=False)
    status = Column(
        Enum(
            ReservationStatus,
            name="reservation_status",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=ReservationStatus.TENTATIVE,
    )
    expires_at = Column(DateTime)  # Set only while TENTATIVE
    converted_order_id = Column(GUID(), nullable=True)  # Downstream entity, set on CONVERTED
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    __table_args__ = (
        Index("ix_reservations_window_status", "window_id", "status"),
        Index("ix_reservations_slot_status", "slot_id", "status"),
        Index("ix_reservations_status_expires", "status", "expires_at"),
        CheckConstraint("estimated_minutes > 0", name="ck_reservation_minutes_positive"),
        CheckConstraint("number_of_doses > 0", name="ck_reservation_doses_positive"),
    )


# ─── 7. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(32), nullable=False, unique=True)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    reservation_id = Column(GUID(), ForeignKey("reservations.reservation_id"), nullable=True)
    delivery_time = Column(DateTime, nullable=False)
    target_time = Column(DateTime)  # Injection time; delivery_time when unset
    requested_activity = Column(Float, nullable=False)
    activity_unit = Column(String(10), nullable=False, default="mCi")
    number_of_doses = Column(Integer, nullable=False, default=1)

    # Backward schedule: recomputable from the inputs above, stored for planners
    synthesis_start_time = Column(DateTime, nullable=False)
    qc_start_time = Column(DateTime, nullable=False)
    packaging_start_time = Column(DateTime, nullable=False)
    dispatch_time = Column(DateTime, nullable=False)
    calculated_production_activity = Column(Float, nullable=False)

    status = Column(String(20), nullable=False, default="DRAFT")
    special_notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_orders_customer_delivery", "customer_id", "delivery_time"),
        CheckConstraint("requested_activity > 0", name="ck_order_activity_positive"),
        CheckConstraint("calculated_production_activity >= requested_activity", name="ck_order_production_covers_request"),
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'VALIDATED', 'SCHEDULED', 'CANCELLED')",
            name="ck_order_status",
        ),
    )
