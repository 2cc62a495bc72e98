"""
Backward Scheduler: derive stage start times from a fixed delivery deadline.

  dispatch          = delivery          - travel
  packaging_start   = dispatch          - packaging
  qc_start          = packaging_start   - qc
  synthesis_start   = qc_start          - synthesis

Does not compare against "now": rejecting a schedule whose synthesis start
has already passed is the caller's decision (see scheduling.planner).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from scheduling.decay import InvalidParameter


@dataclass(frozen=True)
class BackwardSchedule:
    synthesis_start_time: datetime
    qc_start_time: datetime
    packaging_start_time: datetime
    dispatch_time: datetime
    delivery_time: datetime

    @property
    def lead_time_minutes(self) -> float:
        """Minutes from synthesis start to delivery."""
        return (self.delivery_time - self.synthesis_start_time).total_seconds() / 60.0


def schedule(
    delivery_time: datetime,
    travel_time_minutes: float,
    packaging_time_minutes: float,
    qc_time_minutes: float,
    synthesis_time_minutes: float,
) -> BackwardSchedule:
    durations = {
        "travel_time_minutes": travel_time_minutes,
        "packaging_time_minutes": packaging_time_minutes,
        "qc_time_minutes": qc_time_minutes,
        "synthesis_time_minutes": synthesis_time_minutes,
    }
    for name, value in durations.items():
        if value < 0:
            raise InvalidParameter(f"{name} must be non-negative, got {value}")

    dispatch_time = delivery_time - timedelta(minutes=travel_time_minutes)
    packaging_start_time = dispatch_time - timedelta(minutes=packaging_time_minutes)
    qc_start_time = packaging_start_time - timedelta(minutes=qc_time_minutes)
    synthesis_start_time = qc_start_time - timedelta(minutes=synthesis_time_minutes)

    return BackwardSchedule(
        synthesis_start_time=synthesis_start_time,
        qc_start_time=qc_start_time,
        packaging_start_time=packaging_start_time,
        dispatch_time=dispatch_time,
        delivery_time=delivery_time,
    )
