"""
Availability Router: production windows, delivery slots and the capacity calendar.

Window consumption is never stored; every figure here comes from the
capacity ledger at request time.
"""

from datetime import date, datetime, time
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from capacity.calendar import WindowUtilization, generate_window_specs, summarize_calendar, summarize_window
from capacity.ledger import CapacityLedger, WindowUsage
from core.config import get_settings
from db.models import CapacityWindow, DeliverySlot, Product, as_utc_naive
from orders.intake import estimate_reservation_minutes, load_product
from scheduling.decay import InvalidParameter

router = APIRouter(prefix="/api/v1/availability", tags=["availability"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class WindowCreate(BaseModel):
    name: str | None = None
    window_date: date | None = None  # Defaults to the date of start_time
    start_time: datetime
    end_time: datetime
    capacity_minutes: int = Field(..., gt=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_utc_naive(value)


class WindowGenerate(BaseModel):
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    capacity_minutes: int = Field(..., gt=0)
    exclude_weekends: bool = False
    name_prefix: str = "Production Window"


class WindowUpdate(BaseModel):
    name: str | None = None
    capacity_minutes: int | None = Field(None, gt=0)
    is_active: bool | None = None


class WindowResponse(BaseModel):
    window_id: UUID
    name: str
    window_date: date
    start_time: datetime
    end_time: datetime
    capacity_minutes: int
    is_active: bool
    reserved_minutes: int = 0
    committed_minutes: int = 0
    available_minutes: int = 0
    utilization_percent: float = 0.0
    status: str = "AVAILABLE"

    model_config = {"from_attributes": True}


class GenerateResponse(BaseModel):
    created: int
    skipped: int
    windows: list[WindowResponse]


class SlotCreate(BaseModel):
    slot_time: datetime
    duration_minutes: int = Field(..., gt=0)
    capacity_minutes: int = Field(..., gt=0)
    is_available: bool = True

    @field_validator("slot_time")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_utc_naive(value)


class SlotResponse(BaseModel):
    slot_id: UUID
    window_id: UUID
    slot_time: datetime
    duration_minutes: int
    capacity_minutes: int
    is_available: bool
    committed_minutes: int = 0
    available_minutes: int = 0

    model_config = {"from_attributes": True}


class CalendarSummaryResponse(BaseModel):
    total_windows: int
    total_capacity_minutes: int
    total_reserved_minutes: int
    total_committed_minutes: int
    total_available_minutes: int
    average_utilization_percent: float
    status_counts: dict[str, int]


class CalendarResponse(BaseModel):
    start_date: date
    end_date: date
    windows: list[WindowResponse]
    summary: CalendarSummaryResponse


class CapacityCheck(BaseModel):
    window_id: UUID
    slot_id: UUID | None = None
    estimated_minutes: int | None = Field(None, gt=0)
    product_id: UUID | None = None
    number_of_doses: int = Field(1, ge=1)


class CapacityCheckResponse(BaseModel):
    window_id: UUID
    slot_id: UUID | None
    requested_minutes: int
    available_minutes: int
    can_book: bool
    would_overbook_by: int


# ─── Helpers ────────────────────────────────────────────────────────────────


def _window_response(window: CapacityWindow, usage: WindowUsage) -> WindowResponse:
    utilization: WindowUtilization = summarize_window(
        window.capacity_minutes,
        usage.tentative_minutes,
        usage.confirmed_minutes,
        get_settings().near_full_utilization_percent,
    )
    response = WindowResponse.model_validate(window)
    response.reserved_minutes = utilization.reserved_minutes
    response.committed_minutes = utilization.committed_minutes
    response.available_minutes = utilization.available_minutes
    response.utilization_percent = utilization.utilization_percent
    response.status = utilization.status
    return response


async def _windows_with_usage(db: AsyncSession, windows: list[CapacityWindow]) -> list[WindowResponse]:
    usage = await CapacityLedger(db).usage_by_window([w.window_id for w in windows])
    return [_window_response(w, usage[w.window_id]) for w in windows]


async def _find_window(db: AsyncSession, window_date: date, start_time: datetime, end_time: datetime):
    result = await db.execute(
        select(CapacityWindow).where(
            CapacityWindow.window_date == window_date,
            CapacityWindow.start_time == start_time,
            CapacityWindow.end_time == end_time,
        )
    )
    return result.scalar_one_or_none()


# ─── Windows ────────────────────────────────────────────────────────────────


@router.get("/windows", response_model=list[WindowResponse])
async def list_windows(
    start_date: date | None = None,
    end_date: date | None = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
):
    query = select(CapacityWindow)
    if start_date:
        query = query.where(CapacityWindow.window_date >= start_date)
    if end_date:
        query = query.where(CapacityWindow.window_date <= end_date)
    if not include_inactive:
        query = query.where(CapacityWindow.is_active.is_(True))
    query = query.order_by(CapacityWindow.window_date, CapacityWindow.start_time)
    result = await db.execute(query)
    return await _windows_with_usage(db, list(result.scalars().all()))


@router.post("/windows", response_model=WindowResponse, status_code=201)
async def create_window(body: WindowCreate, db: AsyncSession = Depends(get_db)):
    if body.end_time <= body.start_time:
        raise InvalidParameter("end_time must be after start_time")
    window_date = body.window_date or body.start_time.date()
    if await _find_window(db, window_date, body.start_time, body.end_time) is not None:
        raise HTTPException(status_code=409, detail="A window with this span already exists")

    window = CapacityWindow(
        name=body.name or f"Production Window {window_date.isoformat()}",
        window_date=window_date,
        start_time=body.start_time,
        end_time=body.end_time,
        capacity_minutes=body.capacity_minutes,
    )
    db.add(window)
    await db.commit()
    await db.refresh(window)
    return _window_response(window, WindowUsage())


@router.post("/windows/generate", response_model=GenerateResponse, status_code=201)
async def generate_windows(body: WindowGenerate, db: AsyncSession = Depends(get_db)):
    """Create one window per day in the range, skipping days that already have one for the same span."""
    specs = generate_window_specs(
        body.start_date,
        body.end_date,
        body.start_time,
        body.end_time,
        body.capacity_minutes,
        exclude_weekends=body.exclude_weekends,
        name_prefix=body.name_prefix,
    )

    created: list[CapacityWindow] = []
    skipped = 0
    for spec in specs:
        if await _find_window(db, spec.window_date, spec.start_time, spec.end_time) is not None:
            skipped += 1
            continue
        window = CapacityWindow(
            name=spec.name,
            window_date=spec.window_date,
            start_time=spec.start_time,
            end_time=spec.end_time,
            capacity_minutes=spec.capacity_minutes,
        )
        db.add(window)
        created.append(window)
    await db.commit()

    return GenerateResponse(
        created=len(created),
        skipped=skipped,
        windows=[_window_response(w, WindowUsage()) for w in created],
    )


@router.patch("/windows/{window_id}", response_model=WindowResponse)
async def update_window(window_id: UUID, body: WindowUpdate, db: AsyncSession = Depends(get_db)):
    """Rename, (de)activate or resize a window. Shrinking below committed minutes is refused with 409."""
    ledger = CapacityLedger(db)
    if body.capacity_minutes is not None:
        await ledger.resize(window_id, body.capacity_minutes)

    window = await ledger.get_window(window_id)
    if body.name is not None:
        window.name = body.name
    if body.is_active is not None:
        window.is_active = body.is_active
    await db.commit()

    return (await _windows_with_usage(db, [window]))[0]


# ─── Slots ──────────────────────────────────────────────────────────────────


@router.get("/windows/{window_id}/slots", response_model=list[SlotResponse])
async def list_slots(window_id: UUID, db: AsyncSession = Depends(get_db)):
    ledger = CapacityLedger(db)
    await ledger.get_window(window_id)
    result = await db.execute(
        select(DeliverySlot).where(DeliverySlot.window_id == window_id).order_by(DeliverySlot.slot_time)
    )
    slots = []
    for slot in result.scalars().all():
        response = SlotResponse.model_validate(slot)
        response.committed_minutes = await ledger.slot_committed_minutes(slot.slot_id)
        response.available_minutes = max(0, slot.capacity_minutes - response.committed_minutes)
        slots.append(response)
    return slots


@router.post("/windows/{window_id}/slots", response_model=SlotResponse, status_code=201)
async def create_slot(window_id: UUID, body: SlotCreate, db: AsyncSession = Depends(get_db)):
    window = await CapacityLedger(db).get_window(window_id)
    if not (window.start_time <= body.slot_time < window.end_time):
        raise InvalidParameter(
            f"slot_time {body.slot_time.isoformat()} is outside window "
            f"{window.start_time.isoformat()} - {window.end_time.isoformat()}"
        )
    if body.capacity_minutes > window.capacity_minutes:
        raise InvalidParameter(
            f"slot capacity {body.capacity_minutes} exceeds window capacity {window.capacity_minutes}"
        )

    slot = DeliverySlot(
        window_id=window_id,
        slot_time=body.slot_time,
        duration_minutes=body.duration_minutes,
        capacity_minutes=body.capacity_minutes,
        is_available=body.is_available,
    )
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    response = SlotResponse.model_validate(slot)
    response.available_minutes = slot.capacity_minutes
    return response


# ─── Calendar & checks ──────────────────────────────────────────────────────


@router.get("/calendar", response_model=CalendarResponse)
async def capacity_calendar(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Per-window utilization with FULL / NEAR_FULL / AVAILABLE status, plus totals."""
    if end_date < start_date:
        raise InvalidParameter(f"end_date {end_date} precedes start_date {start_date}")

    result = await db.execute(
        select(CapacityWindow)
        .where(
            CapacityWindow.window_date >= start_date,
            CapacityWindow.window_date <= end_date,
            CapacityWindow.is_active.is_(True),
        )
        .order_by(CapacityWindow.window_date, CapacityWindow.start_time)
    )
    windows = await _windows_with_usage(db, list(result.scalars().all()))
    summary = summarize_calendar(
        [
            WindowUtilization(
                capacity_minutes=w.capacity_minutes,
                reserved_minutes=w.reserved_minutes,
                committed_minutes=w.committed_minutes,
                available_minutes=w.available_minutes,
                utilization_percent=w.utilization_percent,
                status=w.status,
            )
            for w in windows
        ]
    )
    return CalendarResponse(
        start_date=start_date,
        end_date=end_date,
        windows=windows,
        summary=CalendarSummaryResponse(
            total_windows=summary.total_windows,
            total_capacity_minutes=summary.total_capacity_minutes,
            total_reserved_minutes=summary.total_reserved_minutes,
            total_committed_minutes=summary.total_committed_minutes,
            total_available_minutes=summary.total_available_minutes,
            average_utilization_percent=summary.average_utilization_percent,
            status_counts=summary.status_counts,
        ),
    )


@router.post("/check-capacity", response_model=CapacityCheckResponse)
async def check_capacity(body: CapacityCheck, db: AsyncSession = Depends(get_db)):
    """Advisory only: a later booking can still be rejected if the window fills in between."""
    requested = body.estimated_minutes
    if requested is None:
        product: Product | None = await load_product(db, body.product_id) if body.product_id else None
        requested = estimate_reservation_minutes(product, body.number_of_doses)

    ledger = CapacityLedger(db)
    window = await ledger.get_window(body.window_id)
    available = await ledger.available_minutes(body.window_id) if window.is_active else 0
    if body.slot_id is not None:
        available = min(available, await ledger.slot_available_minutes(body.slot_id))

    return CapacityCheckResponse(
        window_id=body.window_id,
        slot_id=body.slot_id,
        requested_minutes=requested,
        available_minutes=available,
        can_book=requested <= available,
        would_overbook_by=max(0, requested - available),
    )
