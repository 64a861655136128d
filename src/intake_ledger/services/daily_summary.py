"""
Daily history and vitals summaries.

Groups intake records by logical day and computes averages over weight and
blood pressure readings for history views.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

import pandas as pd
from pydantic import BaseModel

from intake_ledger.domain.records import (
    BloodPressureRecord,
    BodyPosition,
    IntakeRecord,
    IntakeType,
    LedgerRecord,
    WeightRecord,
)
from intake_ledger.services.aggregation import logical_day

logger = logging.getLogger(__name__)

DAILY_COLUMNS = ["date", "water_total", "salt_total", "water_count", "salt_count"]


def summarize_intake_by_day(
    records: Iterable[LedgerRecord], day_start_hour: int = 0, timezone_str: str = "UTC"
) -> pd.DataFrame:
    """
    Total water and salt per logical day.

    Args:
        records: Intake records (other kinds are ignored).
        day_start_hour: Hour at which a logical day begins.
        timezone_str: Time zone for wall-clock day boundaries.

    Returns:
        DataFrame with one row per day, sorted by date.
    """
    rows = [
        {
            "date": logical_day(r.timestamp, day_start_hour, timezone_str),
            "type": r.type,
            "amount": r.amount,
        }
        for r in records
        if isinstance(r, IntakeRecord)
    ]
    if not rows:
        return pd.DataFrame(columns=DAILY_COLUMNS)

    df = pd.DataFrame(rows)
    totals = df.pivot_table(
        index="date", columns="type", values="amount", aggfunc="sum", fill_value=0
    )
    counts = df.pivot_table(
        index="date", columns="type", values="amount", aggfunc="count", fill_value=0
    )

    daily = pd.DataFrame(index=totals.index)
    for intake_type in (IntakeType.WATER.value, IntakeType.SALT.value):
        daily[f"{intake_type}_total"] = (
            totals[intake_type] if intake_type in totals.columns else 0
        )
        daily[f"{intake_type}_count"] = (
            counts[intake_type] if intake_type in counts.columns else 0
        )

    daily = daily.reset_index().sort_values("date")[DAILY_COLUMNS]
    daily[["water_count", "salt_count"]] = daily[["water_count", "salt_count"]].astype(int)
    logger.debug(f"Summarized {len(df)} intake records into {len(daily)} days")
    return daily.reset_index(drop=True)


class VitalsSummary(BaseModel):
    weight_count: int = 0
    weight_avg: float | None = None
    weight_min: float | None = None
    weight_max: float | None = None
    bp_count: int = 0
    systolic_avg: dict[str, float] = {}
    diastolic_avg: dict[str, float] = {}
    heart_rate_avg: float | None = None


def summarize_vitals(records: Iterable[LedgerRecord]) -> VitalsSummary:
    """Averages over weight and blood pressure readings, blood pressure per position."""
    records = list(records)
    summary = VitalsSummary()

    weights = pd.Series([r.weight for r in records if isinstance(r, WeightRecord)], dtype=float)
    if not weights.empty:
        summary.weight_count = int(weights.size)
        summary.weight_avg = round(float(weights.mean()), 2)
        summary.weight_min = float(weights.min())
        summary.weight_max = float(weights.max())

    bp = pd.DataFrame(
        [r.model_dump() for r in records if isinstance(r, BloodPressureRecord)],
        columns=["systolic", "diastolic", "heart_rate", "position"],
    )
    if not bp.empty:
        summary.bp_count = len(bp)
        by_position = bp.groupby("position")[["systolic", "diastolic"]].mean().round(1)
        for position in (BodyPosition.SITTING.value, BodyPosition.STANDING.value):
            if position in by_position.index:
                summary.systolic_avg[position] = float(by_position.loc[position, "systolic"])
                summary.diastolic_avg[position] = float(by_position.loc[position, "diastolic"])
        heart_rates = pd.to_numeric(bp["heart_rate"], errors="coerce").dropna()
        if not heart_rates.empty:
            summary.heart_rate_avg = round(float(heart_rates.mean()), 1)

    return summary


def write_daily_summary(daily: pd.DataFrame, output_file: Path) -> None:
    """Write a daily summary to CSV."""
    output_file.parent.mkdir(parents=True, exist_ok=True)
    daily.to_csv(output_file, index=False)
    logger.info(f"Wrote {len(daily)} daily rows to {output_file}")
