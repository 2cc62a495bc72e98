from datetime import date, datetime, time

import pytest

from capacity.calendar import (
    AVAILABLE,
    FULL,
    NEAR_FULL,
    generate_window_specs,
    summarize_calendar,
    summarize_window,
)
from scheduling.decay import InvalidParameter


class TestGenerateWindowSpecs:
    def test_one_window_per_day(self):
        specs = generate_window_specs(date(2030, 3, 4), date(2030, 3, 6), time(6), time(10), 120)
        assert [s.window_date for s in specs] == [date(2030, 3, 4), date(2030, 3, 5), date(2030, 3, 6)]
        assert specs[0].start_time == datetime(2030, 3, 4, 6)
        assert specs[0].end_time == datetime(2030, 3, 4, 10)
        assert specs[0].name == "Production Window 2030-03-04"

    def test_exclude_weekends(self):
        # 2030-03-08 is a Friday
        specs = generate_window_specs(
            date(2030, 3, 8), date(2030, 3, 11), time(6), time(10), 120, exclude_weekends=True
        )
        assert [s.window_date.weekday() for s in specs] == [4, 0]

    @pytest.mark.parametrize(
        "args",
        [
            (date(2030, 3, 5), date(2030, 3, 4), time(6), time(10), 120),
            (date(2030, 3, 4), date(2030, 3, 4), time(10), time(6), 120),
            (date(2030, 3, 4), date(2030, 3, 4), time(6), time(10), 0),
        ],
    )
    def test_invalid_ranges(self, args):
        with pytest.raises(InvalidParameter):
            generate_window_specs(*args)


class TestSummaries:
    @pytest.mark.parametrize(
        "reserved,committed,status",
        [(0, 0, AVAILABLE), (50, 45, AVAILABLE), (60, 36, NEAR_FULL), (60, 60, FULL)],
    )
    def test_status_thresholds(self, reserved, committed, status):
        assert summarize_window(120, reserved, committed).status == status

    def test_zero_capacity_is_full(self):
        row = summarize_window(0, 0, 0)
        assert row.status == FULL
        assert row.available_minutes == 0

    def test_calendar_totals(self):
        summary = summarize_calendar([summarize_window(100, 10, 10), summarize_window(100, 50, 50)])
        assert summary.total_windows == 2
        assert summary.total_available_minutes == 80
        assert summary.average_utilization_percent == 60.0
        assert summary.status_counts == {FULL: 1, NEAR_FULL: 0, AVAILABLE: 1}

    def test_empty_calendar(self):
        assert summarize_calendar([]).average_utilization_percent == 0.0
