"""
Order intake.

Validates that a customer may order a product, plans the dose backward from
the delivery time and persists the order in DRAFT. When the order redeems a
capacity reservation, that reservation is first confirmed (its own commit;
a no-op when already CONFIRMED) and then converted in the same commit as the
order insert. A failure between the two leaves the reservation CONFIRMED with
no order, and the next attempt picks it up from there.
"""

import secrets
import uuid
from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from capacity.reservations import ReservationStateMachine
from core.config import get_settings
from db.models import Customer, Order, Product, utcnow
from scheduling.planner import DosePlan, ProductScheduleInputs, ScheduleRequest, plan_dose

logger = structlog.get_logger()


class OrderRejected(ValueError):
    """The customer may not place this order. Carries a stable error code."""

    def __init__(self, code: str, message: str, **details):
        self.code = code
        self.details = details
        super().__init__(message)


class CustomerNotFound(LookupError):
    pass


class ProductNotFound(LookupError):
    pass


async def load_customer(db: AsyncSession, customer_id: uuid.UUID) -> Customer:
    """Customer with its permitted products eagerly loaded."""
    result = await db.execute(
        select(Customer)
        .where(Customer.customer_id == customer_id)
        .options(selectinload(Customer.permitted_products))
        .execution_options(populate_existing=True)
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return customer


async def load_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found")
    return product


def validate_customer_for_product(customer: Customer, product: Product, today: date | None = None) -> None:
    today = today or utcnow().date()
    if customer.status != "active":
        raise OrderRejected(
            "VALIDATION_ERROR",
            f"Customer {customer.customer_id} is {customer.status}",
            customer_status=customer.status,
        )
    if customer.license_expiry_date is not None and customer.license_expiry_date < today:
        raise OrderRejected(
            "LICENSE_EXPIRED",
            f"Customer license expired on {customer.license_expiry_date.isoformat()}",
            license_expiry_date=customer.license_expiry_date.isoformat(),
        )
    if not product.is_active:
        raise OrderRejected("PRODUCT_NOT_PERMITTED", f"Product {product.code} is not active")
    permitted = {link.product_id for link in customer.permitted_products}
    if product.product_id not in permitted:
        raise OrderRejected(
            "PRODUCT_NOT_PERMITTED",
            f"Product {product.code} is not permitted for customer {customer.customer_id}",
            product_code=product.code,
        )


def estimate_reservation_minutes(product: Product | None, number_of_doses: int = 1) -> int:
    """Dispensing time standard × doses."""
    if product is not None and product.dispensing_minutes_per_dose:
        per_dose = product.dispensing_minutes_per_dose
    else:
        per_dose = get_settings().default_dispensing_minutes_per_dose
    return per_dose * max(1, number_of_doses)


def generate_order_number(now: datetime) -> str:
    return f"ORD-{now:%y%m%d}-{secrets.randbelow(10000):04d}"


def quote(
    customer: Customer,
    product: Product,
    delivery_time: datetime,
    requested_activity: float,
    *,
    activity_unit: str | None = None,
    target_time: datetime | None = None,
    now: datetime | None = None,
) -> DosePlan:
    """Validate and plan without persisting anything."""
    now = now or utcnow()
    validate_customer_for_product(customer, product, now.date())
    return plan_dose(
        ProductScheduleInputs.from_product(product),
        ScheduleRequest(
            delivery_time=delivery_time,
            travel_time_minutes=customer.travel_time_minutes or 0,
            requested_activity=requested_activity,
            activity_unit=activity_unit or product.activity_unit,
            target_time=target_time,
        ),
        now=now,
    )


async def create_order(
    db: AsyncSession,
    customer: Customer,
    product: Product,
    delivery_time: datetime,
    requested_activity: float,
    *,
    activity_unit: str | None = None,
    target_time: datetime | None = None,
    number_of_doses: int = 1,
    special_notes: str | None = None,
    reservation_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Plan and persist a DRAFT order.

    With a reservation, the hold is confirmed first (a no-op when it already
    is), so an expired hold fails with ReservationExpired before the order is
    written. If converting fails after that, the reservation stays CONFIRMED
    and the order insert is rolled back.
    """
    now = now or utcnow()
    plan = quote(
        customer,
        product,
        delivery_time,
        requested_activity,
        activity_unit=activity_unit,
        target_time=target_time,
        now=now,
    )

    machine = ReservationStateMachine(db)
    if reservation_id is not None:
        reservation = await machine.get(reservation_id)
        for field, expected in (("customer_id", customer.customer_id), ("product_id", product.product_id)):
            held = getattr(reservation, field)
            if held is not None and held != expected:
                raise OrderRejected(
                    "VALIDATION_ERROR",
                    f"Reservation {reservation_id} was made for a different {field.split('_')[0]}",
                    reservation_id=str(reservation_id),
                )
        await machine.confirm(reservation_id)

    order = Order(
        order_id=uuid.uuid4(),
        order_number=generate_order_number(now),
        customer_id=customer.customer_id,
        product_id=product.product_id,
        reservation_id=reservation_id,
        delivery_time=delivery_time,
        target_time=target_time,
        requested_activity=requested_activity,
        activity_unit=plan.activity_unit,
        number_of_doses=number_of_doses,
        synthesis_start_time=plan.schedule.synthesis_start_time,
        qc_start_time=plan.schedule.qc_start_time,
        packaging_start_time=plan.schedule.packaging_start_time,
        dispatch_time=plan.schedule.dispatch_time,
        calculated_production_activity=plan.production_activity,
        status="DRAFT",
        special_notes=special_notes,
        created_at=now,
    )
    db.add(order)

    if reservation_id is not None:
        try:
            # convert() commits the order insert and the status change together
            await machine.convert(reservation_id, order.order_id)
        except Exception:
            await db.rollback()
            raise
    else:
        await db.commit()

    logger.info(
        "order.created",
        order_id=str(order.order_id),
        order_number=order.order_number,
        reservation_id=str(reservation_id) if reservation_id else None,
        synthesis_start_time=plan.schedule.synthesis_start_time.isoformat(),
        production_activity=round(plan.production_activity, 3),
    )
    return order
