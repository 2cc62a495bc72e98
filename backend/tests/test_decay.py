"""
Tests for the decay calculator: forward decay, back-calculation and overage.
"""

import math
from datetime import datetime, timedelta

import pytest

from scheduling.decay import (
    InvalidParameter,
    activity_at,
    decay_constant,
    decayed_activity,
    elapsed_minutes,
    production_activity_for_target,
)

T0 = datetime(2026, 3, 2, 6, 0)


class TestActivityAt:
    def test_one_half_life_halves_activity(self):
        assert activity_at(100, T0, T0 + timedelta(minutes=110), 110) == pytest.approx(50.0)

    def test_zero_elapsed_is_identity(self):
        assert activity_at(42.5, T0, T0, 110) == pytest.approx(42.5)

    def test_backwards_in_time_grows_activity(self):
        assert activity_at(50, T0 + timedelta(minutes=110), T0, 110) == pytest.approx(100.0)

    def test_round_trip_is_identity(self):
        t1 = T0 + timedelta(minutes=137)
        forward = activity_at(250.0, T0, t1, 109.8)
        assert activity_at(forward, t1, T0, 109.8) == pytest.approx(250.0, rel=1e-9)

    def test_monotonic_decay(self):
        values = [activity_at(100, T0, T0 + timedelta(minutes=m), 68) for m in range(0, 600, 30)]
        assert all(later < earlier for earlier, later in zip(values, values[1:]))

    @pytest.mark.parametrize("half_life", [0, -5])
    def test_non_positive_half_life_rejected(self, half_life):
        with pytest.raises(InvalidParameter, match="half_life_minutes"):
            activity_at(100, T0, T0 + timedelta(minutes=10), half_life)

    def test_unrepresentable_back_calculation_rejected(self):
        # A day of 1.27-minute half-lives is ~1134 doublings, past float range
        with pytest.raises(InvalidParameter, match="half-lives"):
            activity_at(100, T0 + timedelta(hours=24), T0, 1.27)

    def test_long_forward_decay_underflows_to_zero(self):
        assert activity_at(100, T0, T0 + timedelta(hours=24), 1.27) == 0.0


class TestHelpers:
    def test_decay_constant_is_ln2_over_half_life(self):
        assert decay_constant(110) == pytest.approx(math.log(2) / 110)

    def test_exponential_form_matches_power_of_two(self):
        lam = decay_constant(110)
        assert decayed_activity(80, 110, 45) == pytest.approx(80 * math.exp(-lam * 45))

    def test_elapsed_minutes_is_signed(self):
        assert elapsed_minutes(T0, T0 + timedelta(minutes=90)) == pytest.approx(90)
        assert elapsed_minutes(T0 + timedelta(minutes=90), T0) == pytest.approx(-90)


class TestProductionActivityForTarget:
    def test_overage_applied_after_back_calculation(self):
        target = T0 + timedelta(minutes=360)
        without = production_activity_for_target(100, 360, target, T0, 0)
        with_overage = production_activity_for_target(100, 360, target, T0, 10)
        assert without == pytest.approx(200.0)
        assert with_overage == pytest.approx(220.0)

    def test_overage_is_strictly_increasing(self):
        target = T0 + timedelta(minutes=120)
        values = [production_activity_for_target(100, 110, target, T0, pct) for pct in (0, 5, 10, 25)]
        assert all(later > earlier for earlier, later in zip(values, values[1:]))

    def test_production_at_target_needs_only_the_request(self):
        assert production_activity_for_target(75, 110, T0, T0, 0) == pytest.approx(75)

    def test_result_never_below_request(self):
        target = T0 + timedelta(minutes=1)
        assert production_activity_for_target(10, 6000, target, T0, 0) >= 10

    def test_rejects_non_positive_activity(self):
        with pytest.raises(InvalidParameter, match="requested_activity"):
            production_activity_for_target(0, 110, T0 + timedelta(hours=1), T0, 0)

    def test_rejects_negative_overage(self):
        with pytest.raises(InvalidParameter, match="overage_percent"):
            production_activity_for_target(100, 110, T0 + timedelta(hours=1), T0, -1)

    def test_rejects_production_after_target(self):
        with pytest.raises(InvalidParameter, match="after target_time"):
            production_activity_for_target(100, 110, T0, T0 + timedelta(minutes=1), 0)
