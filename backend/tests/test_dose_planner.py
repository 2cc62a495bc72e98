"""
Dose planner: backward schedule + decay + shelf life for one order.
"""

from datetime import datetime, timedelta

import pytest

from scheduling.decay import InvalidParameter
from scheduling.feasibility import ScheduleInfeasible, ShelfLifeExceeded
from scheduling.planner import (
    ProductionStartInPast,
    ProductScheduleInputs,
    ScheduleRequest,
    TargetBeforeProduction,
    plan_dose,
)

T = datetime(2026, 3, 2, 10, 0)

LONG_LIVED = ProductScheduleInputs(
    half_life_minutes=360,
    shelf_life_minutes=480,
    synthesis_time_minutes=90,
    qc_time_minutes=30,
    packaging_time_minutes=15,
)


def test_reference_scenario():
    plan = plan_dose(LONG_LIVED, ScheduleRequest(delivery_time=T, travel_time_minutes=60, requested_activity=100))

    assert plan.schedule.dispatch_time == T - timedelta(minutes=60)
    assert plan.schedule.packaging_start_time == T - timedelta(minutes=75)
    assert plan.schedule.qc_start_time == T - timedelta(minutes=105)
    assert plan.schedule.synthesis_start_time == T - timedelta(minutes=195)
    # 100 × 2^(195/360)
    assert plan.production_activity == pytest.approx(145.56, abs=0.01)
    assert plan.shelf_life_margin_minutes == pytest.approx(480 - 195)
    assert plan.target_time == T
    assert plan.decay_minutes == pytest.approx(195)


def test_target_time_after_delivery_adds_decay():
    at_delivery = plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 100))
    at_injection = plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 100, target_time=T + timedelta(minutes=30)))
    assert at_injection.production_activity > at_delivery.production_activity
    assert at_injection.decay_minutes == pytest.approx(225)


def test_overage_inflates_production_activity():
    with_overage = ProductScheduleInputs(**{**LONG_LIVED.__dict__, "overage_percent": 10})
    base = plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 100)).production_activity
    inflated = plan_dose(with_overage, ScheduleRequest(T, 60, 100)).production_activity
    assert inflated == pytest.approx(base * 1.1)


def test_target_before_synthesis_start_is_infeasible():
    request = ScheduleRequest(T, 60, 100, target_time=T - timedelta(minutes=300))
    with pytest.raises(TargetBeforeProduction) as exc_info:
        plan_dose(LONG_LIVED, request)
    assert isinstance(exc_info.value, ScheduleInfeasible)
    assert exc_info.value.reason == "target_before_production"


def test_shelf_life_violation_is_rejected_not_corrected():
    short_shelf = ProductScheduleInputs(**{**LONG_LIVED.__dict__, "shelf_life_minutes": 120})
    with pytest.raises(ShelfLifeExceeded) as exc_info:
        plan_dose(short_shelf, ScheduleRequest(T, 60, 100))
    assert exc_info.value.over_by_minutes == pytest.approx(75)


def test_production_start_in_past_rejected_when_now_given():
    now = T - timedelta(minutes=100)
    with pytest.raises(ProductionStartInPast) as exc_info:
        plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 100), now=now)
    assert exc_info.value.details["late_by_minutes"] == pytest.approx(95)


def test_past_start_allowed_without_now():
    plan = plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 100))
    assert plan.schedule.synthesis_start_time < T


def test_non_positive_activity_rejected():
    with pytest.raises(InvalidParameter):
        plan_dose(LONG_LIVED, ScheduleRequest(T, 60, 0))


def test_from_product_reads_model_attributes():
    class _Product:
        half_life_minutes = 109.8
        shelf_life_minutes = 600
        synthesis_time_minutes = 90
        qc_time_minutes = None
        packaging_time_minutes = 15
        overage_percent = None

    inputs = ProductScheduleInputs.from_product(_Product())
    assert inputs.qc_time_minutes == 0
    assert inputs.overage_percent == 0
    assert inputs.half_life_minutes == 109.8
