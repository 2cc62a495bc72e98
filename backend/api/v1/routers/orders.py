"""
Orders Router: dose scheduling quotes and order intake.

  POST /schedule   backward schedule + production activity, nothing persisted
  POST /           validate, plan and persist a DRAFT order, optionally
                   redeeming a capacity reservation
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from db.models import Order, as_utc_naive
from orders.intake import create_order, load_customer, load_product, quote

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ScheduleRequestBody(BaseModel):
    customer_id: UUID
    product_id: UUID
    delivery_time: datetime
    requested_activity: float = Field(..., gt=0)
    activity_unit: str | None = None
    target_time: datetime | None = None  # Injection time; defaults to delivery_time

    @field_validator("delivery_time", "target_time")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc_naive(value) if value is not None else None


class ScheduleResponse(BaseModel):
    synthesis_start_time: datetime
    qc_start_time: datetime
    packaging_start_time: datetime
    dispatch_time: datetime
    delivery_time: datetime
    target_time: datetime
    requested_activity: float
    production_activity: float
    activity_unit: str
    lead_time_minutes: float
    decay_minutes: float
    shelf_life_margin_minutes: float


class OrderCreate(ScheduleRequestBody):
    number_of_doses: int = Field(1, ge=1)
    special_notes: str | None = None
    reservation_id: UUID | None = None


class OrderResponse(BaseModel):
    order_id: UUID
    order_number: str
    customer_id: UUID
    product_id: UUID
    reservation_id: UUID | None
    delivery_time: datetime
    target_time: datetime | None
    requested_activity: float
    activity_unit: str
    number_of_doses: int
    synthesis_start_time: datetime
    qc_start_time: datetime
    packaging_start_time: datetime
    dispatch_time: datetime
    calculated_production_activity: float
    status: str
    special_notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/schedule", response_model=ScheduleResponse)
async def schedule_order(body: ScheduleRequestBody, db: AsyncSession = Depends(get_db)):
    """Quote the backward schedule for a prospective order."""
    customer = await load_customer(db, body.customer_id)
    product = await load_product(db, body.product_id)
    plan = quote(
        customer,
        product,
        body.delivery_time,
        body.requested_activity,
        activity_unit=body.activity_unit,
        target_time=body.target_time,
    )
    return ScheduleResponse(
        synthesis_start_time=plan.schedule.synthesis_start_time,
        qc_start_time=plan.schedule.qc_start_time,
        packaging_start_time=plan.schedule.packaging_start_time,
        dispatch_time=plan.schedule.dispatch_time,
        delivery_time=plan.schedule.delivery_time,
        target_time=plan.target_time,
        requested_activity=plan.requested_activity,
        production_activity=round(plan.production_activity, 4),
        activity_unit=plan.activity_unit,
        lead_time_minutes=plan.schedule.lead_time_minutes,
        decay_minutes=plan.decay_minutes,
        shelf_life_margin_minutes=plan.shelf_life_margin_minutes,
    )


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    customer_id: UUID | None = None,
    status: str | None = None,
    from_time: datetime | None = None,
    to_time: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List orders, soonest delivery first."""
    query = select(Order)
    if customer_id:
        query = query.where(Order.customer_id == customer_id)
    if status:
        query = query.where(Order.status == status)
    if from_time:
        query = query.where(Order.delivery_time >= as_utc_naive(from_time))
    if to_time:
        query = query.where(Order.delivery_time <= as_utc_naive(to_time))
    query = query.order_by(Order.delivery_time).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)):
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("/", response_model=OrderResponse, status_code=201)
async def place_order(body: OrderCreate, db: AsyncSession = Depends(get_db)):
    """
    Create a DRAFT order.

    With `reservation_id`, the reservation is confirmed (if still TENTATIVE)
    and converted to this order; an expired hold fails with 409 and nothing
    is written.
    """
    customer = await load_customer(db, body.customer_id)
    product = await load_product(db, body.product_id)
    return await create_order(
        db,
        customer,
        product,
        body.delivery_time,
        body.requested_activity,
        activity_unit=body.activity_unit,
        target_time=body.target_time,
        number_of_doses=body.number_of_doses,
        special_notes=body.special_notes,
        reservation_id=body.reservation_id,
    )
