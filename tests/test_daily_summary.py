"""Tests for daily history and vitals summaries."""

from datetime import date, datetime

import pytz

from conftest import intake
from intake_ledger.domain.records import BloodPressureRecord, WeightRecord
from intake_ledger.services.daily_summary import (
    DAILY_COLUMNS,
    summarize_intake_by_day,
    summarize_vitals,
    write_daily_summary,
)
from intake_ledger.utils.timezone_utils import datetime_to_ms


def _ms(day: int, hour: int) -> int:
    return datetime_to_ms(pytz.UTC.localize(datetime(2024, 3, day, hour)))


def test_intake_grouped_by_logical_day(tmp_path) -> None:
    """Test per-day totals with a 02:00 day start."""
    records = [
        intake("a", 250, now=_ms(9, 10)),
        intake("b", 500, now=_ms(10, 1)),
        intake("c", 300, now=_ms(10, 8), intake_type="salt"),
        intake("d", 200, now=_ms(10, 9)),
    ]

    daily = summarize_intake_by_day(records, day_start_hour=2)

    if list(daily.columns) != DAILY_COLUMNS:
        raise AssertionError(f"Unexpected columns: {list(daily.columns)}")
    if list(daily["date"]) != [date(2024, 3, 9), date(2024, 3, 10)]:
        raise AssertionError(f"Unexpected days: {list(daily['date'])}")

    first, second = daily.iloc[0], daily.iloc[1]
    if first["water_total"] != 750 or first["water_count"] != 2:
        raise AssertionError(f"01:00 must count toward the previous day: {first.to_dict()}")
    if second["salt_total"] != 300 or second["water_total"] != 200:
        raise AssertionError(f"Unexpected second day: {second.to_dict()}")

    output = tmp_path / "daily.csv"
    write_daily_summary(daily, output)
    if not output.exists():
        raise AssertionError("Expected the CSV to be written")


def test_empty_history() -> None:
    """Test that no records produce an empty frame with the expected columns."""
    daily = summarize_intake_by_day([])
    if not daily.empty or list(daily.columns) != DAILY_COLUMNS:
        raise AssertionError("Expected an empty frame")


def test_vitals_averages() -> None:
    """Test weight and per-position blood pressure averages."""
    records = [
        WeightRecord(id="w1", timestamp=1, weight=70.0),
        WeightRecord(id="w2", timestamp=2, weight=71.0),
        BloodPressureRecord(id="b1", timestamp=1, systolic=120, diastolic=80, heart_rate=60, position="sitting", arm="left"),
        BloodPressureRecord(id="b2", timestamp=2, systolic=130, diastolic=84, position="sitting", arm="left"),
        BloodPressureRecord(id="b3", timestamp=3, systolic=140, diastolic=90, heart_rate=70, position="standing", arm="right"),
    ]

    summary = summarize_vitals(records)

    if summary.weight_avg != 70.5 or summary.weight_count != 2:
        raise AssertionError(f"Unexpected weight summary: {summary}")
    if summary.systolic_avg != {"sitting": 125.0, "standing": 140.0}:
        raise AssertionError(f"Unexpected systolic averages: {summary.systolic_avg}")
    if summary.heart_rate_avg != 65.0 or summary.bp_count != 3:
        raise AssertionError(f"Unexpected heart rate summary: {summary}")
