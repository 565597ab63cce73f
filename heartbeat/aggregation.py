"""Turn raw heart rate measurements into activity slots and chart rollups.

Every function here is pure: it takes the measurements as loaded from the API
and returns fresh aggregates. All times are UTC; timestamps without an offset
are read as UTC. Averages are rounded half away from zero.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Union

import polars as pl
from pydantic import ValidationError

from heartbeat.config import (
    HEART_RATE_STATUS,
    NO_ACTIVITY_LABEL,
    SLOT_MINUTES,
    WEEKDAY_LABELS,
)
from heartbeat.models import (
    Activity,
    ActivitySlot,
    DayPoint,
    OverviewSummary,
    RawMeasurement,
    WeekdayRollup,
    format_utc,
)

MeasurementLike = Union[RawMeasurement, Mapping[str, Any]]
DayLike = Union[date, str]


class Sample(NamedTuple):
    """A measurement that passed validation."""

    timestamp: datetime  # aware, UTC
    bpm: float
    record: RawMeasurement


def round_half_away(value: float) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def valid_samples(measurements: Iterable[MeasurementLike]) -> List[Sample]:
    """Drop records without a parseable timestamp or a finite value, keeping input order."""
    samples = []
    for item in measurements:
        if isinstance(item, RawMeasurement):
            record = item
        else:
            try:
                record = RawMeasurement.model_validate(item)
            except ValidationError:
                continue
        ts = record.timestamp
        bpm = record.bpm
        if ts is None or bpm is None:
            continue
        samples.append(Sample(ts, bpm, record))
    return samples


def _as_day(day: DayLike) -> date:
    if isinstance(day, datetime):
        return day.astimezone(timezone.utc).date() if day.tzinfo else day.date()
    if isinstance(day, date):
        return day
    return date.fromisoformat(day[:10])


def _samples_frame(samples: List[Sample]) -> pl.DataFrame:
    """Samples as a frame of naive UTC timestamps and float bpm values."""
    return pl.DataFrame(
        {
            "timestamp": [s.timestamp.replace(tzinfo=None) for s in samples],
            "bpm": [s.bpm for s in samples],
        },
        schema={"timestamp": pl.Datetime("us"), "bpm": pl.Float64},
    )


def _activity_titles(activity_lookup: Optional[Iterable[Any]]) -> Dict[int, str]:
    titles: Dict[int, str] = {}
    for activity in activity_lookup or []:
        if isinstance(activity, Activity):
            titles[activity.id] = activity.title
        elif isinstance(activity, Mapping) and activity.get("id") is not None:
            titles[activity["id"]] = str(activity.get("title", ""))
    return titles


def compute_slots(
    measurements: Iterable[MeasurementLike],
    activity_lookup: Optional[Iterable[Any]] = None,
    day: Optional[DayLike] = None,
) -> List[ActivitySlot]:
    """
    Average measurements per half-hour slot.

    Args:
        measurements: raw records; malformed ones are skipped
        activity_lookup: known activities, used to label slots
        day: optional UTC calendar day; only samples in [day 00:00, next day 00:00) count

    Returns:
        Slots ordered newest first
    """
    samples = valid_samples(measurements)
    if day is not None:
        day_start = datetime.combine(_as_day(day), datetime.min.time(), tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        samples = [s for s in samples if day_start <= s.timestamp < day_end]
    if not samples:
        return []

    buckets = (
        _samples_frame(samples)
        .with_row_index("row")
        .with_columns(pl.col("timestamp").dt.truncate(f"{SLOT_MINUTES}m").alias("slot_start"))
        .group_by("slot_start")
        .agg(
            pl.col("bpm").sum().alias("bpm_sum"),
            pl.len().alias("sample_count"),
            # Newest sample in the slot; on a tie the earliest input row wins
            pl.col("row")
            .filter(pl.col("timestamp") == pl.col("timestamp").max())
            .first()
            .alias("representative_row"),
        )
        .sort("slot_start", descending=True)
    )

    titles = _activity_titles(activity_lookup)
    slots = []
    for row in buckets.to_dicts():
        start = row["slot_start"].replace(tzinfo=timezone.utc)
        representative = samples[row["representative_row"]].record
        activity_id = representative.activity_id
        label = titles.get(activity_id, NO_ACTIVITY_LABEL) if activity_id is not None else NO_ACTIVITY_LABEL
        slots.append(
            ActivitySlot(
                slot_start_iso=format_utc(start),
                average_bpm=round_half_away(row["bpm_sum"] / row["sample_count"]),
                sample_count=row["sample_count"],
                representative_measurement_id=representative.id,
                activity_id=activity_id,
                activity_label=label,
            )
        )
    return slots


def apply_activity_tags(slots: List[ActivitySlot], tags: Mapping[str, str]) -> List[ActivitySlot]:
    """Fill in locally stored labels for slots the server has no activity for."""
    tagged = []
    for slot in slots:
        label = tags.get(slot.slot_start_iso)
        if label and slot.activity_label == NO_ACTIVITY_LABEL:
            slot = slot.model_copy(update={"activity_label": label})
        tagged.append(slot)
    return tagged


def compute_weekly_rollup(measurements: Iterable[MeasurementLike]) -> List[WeekdayRollup]:
    """
    Average heart rate per day of the week, Sunday first.

    Samples from every week are pooled by weekday. Days without samples
    report an average and count of 0.
    """
    samples = valid_samples(measurements)
    totals: Dict[int, Dict[str, Any]] = {}
    if samples:
        weekdays = (
            _samples_frame(samples)
            # polars weekdays run Monday=1 .. Sunday=7; shift to Sunday=0 .. Saturday=6
            .with_columns((pl.col("timestamp").dt.weekday() % 7).alias("weekday"))
            .group_by("weekday")
            .agg(
                pl.col("bpm").sum().alias("bpm_sum"),
                pl.len().alias("sample_count"),
            )
        )
        totals = {row["weekday"]: row for row in weekdays.to_dicts()}

    rollup = []
    for index, label in enumerate(WEEKDAY_LABELS):
        row = totals.get(index)
        if row is None:
            rollup.append(WeekdayRollup(day_of_week=label, average_bpm=0, sample_count=0))
            continue
        rollup.append(
            WeekdayRollup(
                day_of_week=label,
                average_bpm=round_half_away(row["bpm_sum"] / row["sample_count"]),
                sample_count=row["sample_count"],
            )
        )
    return rollup


def compute_day_series(measurements: Iterable[MeasurementLike]) -> Dict[str, List[DayPoint]]:
    """Chart points per UTC day (``YYYY-MM-DD``), each day in time order."""
    series: Dict[str, List[DayPoint]] = {}
    for sample in sorted(valid_samples(measurements), key=lambda s: s.timestamp):
        ts = sample.timestamp
        series.setdefault(ts.strftime("%Y-%m-%d"), []).append(
            DayPoint(time=f"{ts.hour}:{ts.minute:02d}", bpm=round_half_away(sample.bpm))
        )
    return series


def compute_overview(
    measurements: Iterable[MeasurementLike], selected_day: Optional[DayLike] = None
) -> OverviewSummary:
    """Everything the overview page shows. The selected day defaults to the newest day with data."""
    measurements = list(measurements)
    samples = sorted(valid_samples(measurements), key=lambda s: s.timestamp)
    data_by_day = compute_day_series(measurements)
    days = sorted(data_by_day, reverse=True)
    total = len(samples)

    if selected_day is not None:
        day_key = _as_day(selected_day).isoformat()
    else:
        day_key = days[0] if days else None
    points = data_by_day.get(day_key, []) if day_key else []

    latest = samples[-1] if samples else None
    return OverviewSummary(
        days=days,
        data_by_day=data_by_day,
        weekly=compute_weekly_rollup(measurements),
        latest_bpm=latest.bpm if latest else None,
        latest_date=format_utc(latest.timestamp) if latest else None,
        average_bpm=round_half_away(sum(s.bpm for s in samples) / total) if total else None,
        total_samples=total,
        selected_day=day_key,
        selected_average_bpm=(
            round_half_away(sum(p.bpm for p in points) / len(points)) if points else None
        ),
        selected_samples=len(points),
        selected_active_minutes=round_half_away(len(points) / 2),
        week_average_heart_rate=round_half_away(sum(s.bpm for s in samples) / total) if total else 0,
        week_average_steps=round_half_away(total / 7),
        week_total_active_minutes=round_half_away(total / 2),
    )


def classify_heart_rate(bpm: float) -> str:
    """Status label for a heart rate: low, normal, elevated or high."""
    for status, upper in HEART_RATE_STATUS.items():
        if bpm < upper:
            return status
    return "high"
