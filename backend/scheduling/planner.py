"""
Dose Planner: one call from order inputs to a production plan.

Chains the backward scheduler, the decay calculator and the shelf-life check
the way order intake needs them:
  1. Backward schedule from the delivery time
  2. Reject targets (injection times) that precede synthesis start
  3. Reject schedules that exceed the product's shelf life
  4. Optionally reject schedules whose synthesis start has already passed
  5. Production activity at synthesis start, including overage
"""

from dataclasses import dataclass
from datetime import datetime

from scheduling.backward import BackwardSchedule, schedule
from scheduling.decay import InvalidParameter, elapsed_minutes, production_activity_for_target
from scheduling.feasibility import ScheduleInfeasible, check_shelf_life


class TargetBeforeProduction(ScheduleInfeasible):
    reason = "target_before_production"


class ProductionStartInPast(ScheduleInfeasible):
    reason = "production_start_in_past"


@dataclass(frozen=True)
class ProductScheduleInputs:
    """Immutable per-product inputs to the schedule."""

    half_life_minutes: float
    shelf_life_minutes: float
    synthesis_time_minutes: float
    qc_time_minutes: float
    packaging_time_minutes: float
    overage_percent: float = 0.0

    @classmethod
    def from_product(cls, product) -> "ProductScheduleInputs":
        return cls(
            half_life_minutes=product.half_life_minutes,
            shelf_life_minutes=product.shelf_life_minutes,
            synthesis_time_minutes=product.synthesis_time_minutes or 0,
            qc_time_minutes=product.qc_time_minutes or 0,
            packaging_time_minutes=product.packaging_time_minutes or 0,
            overage_percent=product.overage_percent or 0,
        )


@dataclass(frozen=True)
class ScheduleRequest:
    delivery_time: datetime
    travel_time_minutes: float
    requested_activity: float
    activity_unit: str = "mCi"
    target_time: datetime | None = None


@dataclass(frozen=True)
class DosePlan:
    schedule: BackwardSchedule
    target_time: datetime
    requested_activity: float
    production_activity: float
    activity_unit: str
    shelf_life_margin_minutes: float

    @property
    def decay_minutes(self) -> float:
        """Minutes of decay between synthesis start and the target time."""
        return elapsed_minutes(self.schedule.synthesis_start_time, self.target_time)


def plan_dose(product: ProductScheduleInputs, request: ScheduleRequest, now: datetime | None = None) -> DosePlan:
    if request.requested_activity <= 0:
        raise InvalidParameter(f"requested_activity must be positive, got {request.requested_activity}")

    backward = schedule(
        request.delivery_time,
        request.travel_time_minutes,
        product.packaging_time_minutes,
        product.qc_time_minutes,
        product.synthesis_time_minutes,
    )
    target_time = request.target_time or request.delivery_time

    if target_time < backward.synthesis_start_time:
        raise TargetBeforeProduction(
            f"Target time {target_time.isoformat()} precedes synthesis start "
            f"{backward.synthesis_start_time.isoformat()}",
            target_time=target_time.isoformat(),
            synthesis_start_time=backward.synthesis_start_time.isoformat(),
        )

    margin = check_shelf_life(backward.synthesis_start_time, request.delivery_time, product.shelf_life_minutes)

    if now is not None and backward.synthesis_start_time < now:
        raise ProductionStartInPast(
            f"Synthesis would have to start at {backward.synthesis_start_time.isoformat()}, which has passed",
            synthesis_start_time=backward.synthesis_start_time.isoformat(),
            late_by_minutes=round(elapsed_minutes(backward.synthesis_start_time, now), 2),
        )

    production_activity = production_activity_for_target(
        request.requested_activity,
        product.half_life_minutes,
        target_time,
        backward.synthesis_start_time,
        product.overage_percent,
    )

    return DosePlan(
        schedule=backward,
        target_time=target_time,
        requested_activity=request.requested_activity,
        production_activity=production_activity,
        activity_unit=request.activity_unit,
        shelf_life_margin_minutes=margin,
    )
