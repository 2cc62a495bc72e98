"""
Decay Calculator: Radioactive decay and its inverse.

  A(t1) = A(t0) × 2^(-(t1 - t0) / T½)

The same formula runs in both directions: with t1 after t0 it decays an
activity forward (activity at dispatch, at delivery); with t1 before t0 it
back-calculates the larger activity that must have existed earlier
(activity to produce at synthesis start).

All functions are pure and safe to call concurrently.
"""

import math
from datetime import datetime


class InvalidParameter(ValueError):
    """Raised for malformed scheduling inputs (non-positive half-life, negative durations, ...)."""


def decay_constant(half_life_minutes: float) -> float:
    """λ = ln 2 / T½, per minute."""
    _require_positive_half_life(half_life_minutes)
    return math.log(2) / half_life_minutes


def elapsed_minutes(start: datetime, end: datetime) -> float:
    """Signed minutes from start to end (negative when end precedes start)."""
    return (end - start).total_seconds() / 60.0


def decayed_activity(initial_activity: float, half_life_minutes: float, minutes: float) -> float:
    """Activity remaining after `minutes` (negative minutes grow the activity)."""
    _require_positive_half_life(half_life_minutes)
    try:
        factor = math.pow(2.0, -minutes / half_life_minutes)
    except OverflowError:
        raise InvalidParameter(
            f"{-minutes:.1f} min of back-calculation is {-minutes / half_life_minutes:.0f} half-lives; "
            "the required activity is not representable"
        ) from None
    return initial_activity * factor


def activity_at(initial_activity: float, t0: datetime, t1: datetime, half_life_minutes: float) -> float:
    """Activity at t1 given `initial_activity` measured at t0."""
    return decayed_activity(initial_activity, half_life_minutes, elapsed_minutes(t0, t1))


def production_activity_for_target(
    requested_activity: float,
    half_life_minutes: float,
    target_time: datetime,
    production_time: datetime,
    overage_percent: float,
) -> float:
    """
    Activity that must exist at `production_time` so that decay alone leaves
    `requested_activity` at `target_time`, inflated by `overage_percent`.
    """
    if requested_activity <= 0:
        raise InvalidParameter(f"requested_activity must be positive, got {requested_activity}")
    if overage_percent < 0:
        raise InvalidParameter(f"overage_percent must be non-negative, got {overage_percent}")
    if production_time > target_time:
        raise InvalidParameter(
            f"production_time {production_time.isoformat()} is after target_time {target_time.isoformat()}"
        )
    required = activity_at(requested_activity, target_time, production_time, half_life_minutes)
    return required * (1 + overage_percent / 100)


def _require_positive_half_life(half_life_minutes: float) -> None:
    if half_life_minutes <= 0:
        raise InvalidParameter(f"half_life_minutes must be positive, got {half_life_minutes}")
