"""
Reservations Router: capacity holds against production windows.

  POST /                 place a TENTATIVE hold (409 CAPACITY_FULL when it does not fit)
  POST /{id}/confirm     TENTATIVE → CONFIRMED (409 RESERVATION_EXPIRED once the hold lapsed)
  POST /{id}/cancel      TENTATIVE → CANCELLED, capacity released immediately
  POST /{id}/convert     create the DRAFT order this reservation was held for

A TENTATIVE hold past its expires_at is reported as EXPIRED even before the
sweep has rewritten its stored status.
"""

from datetime import datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from api.v1.routers.orders import OrderResponse
from capacity.reservations import ReservationStateMachine, expires_in_seconds, is_lapsed
from db.models import Product, Reservation, ReservationStatus, as_utc_naive, utcnow
from orders.intake import OrderRejected, create_order, estimate_reservation_minutes, load_customer, load_product

router = APIRouter(prefix="/api/v1/reservations", tags=["reservations"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ReservationCreate(BaseModel):
    window_id: UUID
    slot_id: UUID | None = None
    customer_id: UUID | None = None
    product_id: UUID | None = None
    requested_date: datetime | None = None  # Defaults to the window start
    requested_activity: float | None = Field(None, gt=0)
    activity_unit: str = "mCi"
    number_of_doses: int = Field(1, ge=1)
    estimated_minutes: int | None = Field(None, gt=0)  # Derived from the product when omitted
    hold_minutes: int | None = Field(None, ge=1, le=24 * 60)
    notes: str | None = None

    @field_validator("requested_date")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc_naive(value) if value is not None else None


class ReservationCancel(BaseModel):
    reason: str | None = None


class ReservationConvert(BaseModel):
    delivery_time: datetime | None = None  # Defaults to the reservation's requested_date
    target_time: datetime | None = None
    special_notes: str | None = None

    @field_validator("delivery_time", "target_time")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc_naive(value) if value is not None else None


class ReservationResponse(BaseModel):
    reservation_id: UUID
    reservation_number: str
    window_id: UUID
    slot_id: UUID | None
    customer_id: UUID | None
    product_id: UUID | None
    requested_date: datetime
    requested_activity: float | None
    activity_unit: str
    number_of_doses: int
    estimated_minutes: int
    status: ReservationStatus
    expires_at: datetime | None
    expires_in_seconds: int = 0
    converted_order_id: UUID | None
    notes: str | None
    created_at: datetime
    confirmed_at: datetime | None
    cancelled_at: datetime | None

    model_config = {"from_attributes": True}


class ConversionResponse(BaseModel):
    reservation: ReservationResponse
    order: OrderResponse


def _to_response(reservation: Reservation, now: datetime) -> ReservationResponse:
    response = ReservationResponse.model_validate(reservation)
    if is_lapsed(reservation, now):
        response.status = ReservationStatus.EXPIRED
    else:
        response.expires_in_seconds = expires_in_seconds(reservation, now)
    return response


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ReservationResponse])
async def list_reservations(
    window_id: UUID | None = None,
    customer_id: UUID | None = None,
    product_id: UUID | None = None,
    status: ReservationStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    query = select(Reservation)
    if window_id:
        query = query.where(Reservation.window_id == window_id)
    if customer_id:
        query = query.where(Reservation.customer_id == customer_id)
    if product_id:
        query = query.where(Reservation.product_id == product_id)
    if status:
        query = query.where(Reservation.status == status)
    query = query.order_by(Reservation.requested_date, Reservation.created_at).offset(skip).limit(limit)
    result = await db.execute(query)
    now = utcnow()
    return [_to_response(r, now) for r in result.scalars().all()]


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(reservation_id: UUID, db: AsyncSession = Depends(get_db)):
    reservation = await ReservationStateMachine(db).get(reservation_id)
    return _to_response(reservation, utcnow())


@router.post("/", response_model=ReservationResponse, status_code=201)
async def create_reservation(body: ReservationCreate, db: AsyncSession = Depends(get_db)):
    """Place a TENTATIVE hold on a window (and optionally one of its slots)."""
    product: Product | None = None
    if body.product_id:
        product = await load_product(db, body.product_id)
    if body.customer_id:
        await load_customer(db, body.customer_id)

    estimated = body.estimated_minutes or estimate_reservation_minutes(product, body.number_of_doses)
    hold = timedelta(minutes=body.hold_minutes) if body.hold_minutes else None

    reservation = await ReservationStateMachine(db).create(
        body.window_id,
        estimated,
        hold=hold,
        slot_id=body.slot_id,
        requested_date=body.requested_date,
        customer_id=body.customer_id,
        product_id=body.product_id,
        requested_activity=body.requested_activity,
        activity_unit=body.activity_unit,
        number_of_doses=body.number_of_doses,
        notes=body.notes,
    )
    return _to_response(reservation, utcnow())


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
async def confirm_reservation(reservation_id: UUID, db: AsyncSession = Depends(get_db)):
    reservation = await ReservationStateMachine(db).confirm(reservation_id)
    return _to_response(reservation, utcnow())


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: UUID,
    body: ReservationCancel | None = None,
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    reservation = await ReservationStateMachine(db).cancel(reservation_id, reason)
    return _to_response(reservation, utcnow())


@router.post("/{reservation_id}/convert", response_model=ConversionResponse)
async def convert_reservation(
    reservation_id: UUID,
    body: ReservationConvert | None = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Turn a live reservation into a DRAFT order. The reservation must name a
    customer, a product and a requested activity.
    """
    body = body or ReservationConvert()
    machine = ReservationStateMachine(db)
    reservation = await machine.get(reservation_id)
    if reservation.customer_id is None or reservation.product_id is None or not reservation.requested_activity:
        raise OrderRejected(
            "VALIDATION_ERROR",
            f"Reservation {reservation_id} needs a customer, product and requested activity to become an order",
            reservation_id=str(reservation_id),
        )

    customer = await load_customer(db, reservation.customer_id)
    product = await load_product(db, reservation.product_id)
    order = await create_order(
        db,
        customer,
        product,
        body.delivery_time or reservation.requested_date,
        reservation.requested_activity,
        activity_unit=reservation.activity_unit,
        target_time=body.target_time,
        number_of_doses=reservation.number_of_doses,
        special_notes=body.special_notes or reservation.notes,
        reservation_id=reservation_id,
    )
    reservation = await machine.get(reservation_id)
    return ConversionResponse(
        reservation=_to_response(reservation, utcnow()),
        order=OrderResponse.model_validate(order),
    )
