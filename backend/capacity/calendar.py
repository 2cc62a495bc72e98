"""
Capacity calendar helpers.

Window generation across a date range and the utilization view shown on the
planner's availability calendar. Pure: the router supplies existing windows
and ledger usage, these functions only shape them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from scheduling.decay import InvalidParameter

FULL = "FULL"
NEAR_FULL = "NEAR_FULL"
AVAILABLE = "AVAILABLE"


@dataclass(frozen=True)
class WindowSpec:
    name: str
    window_date: date
    start_time: datetime
    end_time: datetime
    capacity_minutes: int


@dataclass(frozen=True)
class WindowUtilization:
    capacity_minutes: int
    reserved_minutes: int  # TENTATIVE, not yet lapsed
    committed_minutes: int  # CONFIRMED or CONVERTED
    available_minutes: int
    utilization_percent: float
    status: str


@dataclass
class CalendarSummary:
    total_windows: int = 0
    total_capacity_minutes: int = 0
    total_reserved_minutes: int = 0
    total_committed_minutes: int = 0
    total_available_minutes: int = 0
    status_counts: dict[str, int] = field(default_factory=lambda: {FULL: 0, NEAR_FULL: 0, AVAILABLE: 0})

    @property
    def average_utilization_percent(self) -> float:
        if self.total_capacity_minutes <= 0:
            return 0.0
        used = self.total_reserved_minutes + self.total_committed_minutes
        return round(used / self.total_capacity_minutes * 100, 1)


def generate_window_specs(
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    capacity_minutes: int,
    exclude_weekends: bool = False,
    name_prefix: str = "Production Window",
) -> list[WindowSpec]:
    """One window per day from start_date to end_date inclusive."""
    if end_date < start_date:
        raise InvalidParameter(f"end_date {end_date} precedes start_date {start_date}")
    if capacity_minutes <= 0:
        raise InvalidParameter(f"capacity_minutes must be positive, got {capacity_minutes}")
    if end_time <= start_time:
        raise InvalidParameter(f"end_time {end_time} must be after start_time {start_time}")

    specs = []
    day = start_date
    while day <= end_date:
        # Monday=0 ... Saturday=5, Sunday=6
        if not (exclude_weekends and day.weekday() >= 5):
            specs.append(
                WindowSpec(
                    name=f"{name_prefix} {day.isoformat()}",
                    window_date=day,
                    start_time=datetime.combine(day, start_time),
                    end_time=datetime.combine(day, end_time),
                    capacity_minutes=capacity_minutes,
                )
            )
        day += timedelta(days=1)
    return specs


def summarize_window(
    capacity_minutes: int,
    reserved_minutes: int,
    committed_minutes: int,
    near_full_percent: float = 80,
) -> WindowUtilization:
    used = reserved_minutes + committed_minutes
    utilization = round(used / capacity_minutes * 100, 1) if capacity_minutes > 0 else 100.0

    if utilization >= 100:
        status = FULL
    elif utilization >= near_full_percent:
        status = NEAR_FULL
    else:
        status = AVAILABLE

    return WindowUtilization(
        capacity_minutes=capacity_minutes,
        reserved_minutes=reserved_minutes,
        committed_minutes=committed_minutes,
        available_minutes=max(0, capacity_minutes - used),
        utilization_percent=utilization,
        status=status,
    )


def summarize_calendar(rows: list[WindowUtilization]) -> CalendarSummary:
    summary = CalendarSummary()
    for row in rows:
        summary.total_windows += 1
        summary.total_capacity_minutes += row.capacity_minutes
        summary.total_reserved_minutes += row.reserved_minutes
        summary.total_committed_minutes += row.committed_minutes
        summary.total_available_minutes += row.available_minutes
        summary.status_counts[row.status] += 1
    return summary
