"""
Dispatch Router: activity remaining at dispatch and at delivery.

Read-only use of the decay calculator for shipping paperwork; the calibrated
activity is what QC measured at calibration time.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from db.models import as_utc_naive
from orders.intake import load_product
from scheduling.decay import activity_at, elapsed_minutes

router = APIRouter(prefix="/api/v1/dispatch", tags=["dispatch"])


class DecayedActivityRequest(BaseModel):
    calibrated_activity: float = Field(..., gt=0)
    calibration_time: datetime
    dispatch_time: datetime
    delivery_time: datetime | None = None
    product_id: UUID | None = None
    half_life_minutes: float | None = Field(None, gt=0)  # Overrides the product's half-life
    activity_unit: str = "mCi"

    @field_validator("calibration_time", "dispatch_time", "delivery_time")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc_naive(value) if value is not None else None

    @model_validator(mode="after")
    def _needs_half_life(self):
        if self.product_id is None and self.half_life_minutes is None:
            raise ValueError("Either product_id or half_life_minutes is required")
        return self


class DecayedActivityResponse(BaseModel):
    half_life_minutes: float
    calibrated_activity: float
    calibration_time: datetime
    activity_at_dispatch: float
    minutes_to_dispatch: float
    activity_at_delivery: float | None
    minutes_to_delivery: float | None
    activity_unit: str


@router.post("/decayed-activity", response_model=DecayedActivityResponse)
async def decayed_activity(body: DecayedActivityRequest, db: AsyncSession = Depends(get_db)):
    half_life = body.half_life_minutes
    if half_life is None:
        product = await load_product(db, body.product_id)
        half_life = product.half_life_minutes

    at_dispatch = activity_at(body.calibrated_activity, body.calibration_time, body.dispatch_time, half_life)
    at_delivery = None
    minutes_to_delivery = None
    if body.delivery_time is not None:
        at_delivery = activity_at(body.calibrated_activity, body.calibration_time, body.delivery_time, half_life)
        minutes_to_delivery = elapsed_minutes(body.calibration_time, body.delivery_time)

    return DecayedActivityResponse(
        half_life_minutes=half_life,
        calibrated_activity=body.calibrated_activity,
        calibration_time=body.calibration_time,
        activity_at_dispatch=round(at_dispatch, 4),
        minutes_to_dispatch=elapsed_minutes(body.calibration_time, body.dispatch_time),
        activity_at_delivery=round(at_delivery, 4) if at_delivery is not None else None,
        minutes_to_delivery=minutes_to_delivery,
        activity_unit=body.activity_unit,
    )
