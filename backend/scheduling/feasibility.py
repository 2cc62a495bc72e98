"""Shelf-life feasibility for a computed backward schedule."""

from datetime import datetime

from scheduling.decay import InvalidParameter, elapsed_minutes


class ScheduleInfeasible(ValueError):
    """A well-formed request whose schedule cannot be honoured. Never auto-corrected."""

    reason = "schedule_infeasible"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.details = details


class ShelfLifeExceeded(ScheduleInfeasible):
    reason = "shelf_life_exceeded"

    def __init__(self, *, elapsed_minutes: float, shelf_life_minutes: float):
        self.elapsed_minutes = elapsed_minutes
        self.shelf_life_minutes = shelf_life_minutes
        self.over_by_minutes = max(0.0, elapsed_minutes - shelf_life_minutes)
        super().__init__(
            f"Dose would be {elapsed_minutes:.1f} min old at delivery; "
            f"shelf life is {shelf_life_minutes:.1f} min (over by {self.over_by_minutes:.1f} min)",
            elapsed_minutes=round(elapsed_minutes, 2),
            shelf_life_minutes=shelf_life_minutes,
            over_by_minutes=round(self.over_by_minutes, 2),
        )


def is_within_shelf_life(production_time: datetime, delivery_time: datetime, shelf_life_minutes: float) -> bool:
    if shelf_life_minutes <= 0:
        raise InvalidParameter(f"shelf_life_minutes must be positive, got {shelf_life_minutes}")
    elapsed = elapsed_minutes(production_time, delivery_time)
    return 0 <= elapsed <= shelf_life_minutes


def check_shelf_life(production_time: datetime, delivery_time: datetime, shelf_life_minutes: float) -> float:
    """Return the remaining margin in minutes, or raise ShelfLifeExceeded."""
    if not is_within_shelf_life(production_time, delivery_time, shelf_life_minutes):
        raise ShelfLifeExceeded(
            elapsed_minutes=elapsed_minutes(production_time, delivery_time),
            shelf_life_minutes=shelf_life_minutes,
        )
    return shelf_life_minutes - elapsed_minutes(production_time, delivery_time)
