"""Tests for measurement aggregation."""

from datetime import date

from heartbeat.aggregation import (
    apply_activity_tags,
    classify_heart_rate,
    compute_overview,
    compute_slots,
    compute_weekly_rollup,
    round_half_away,
)
from heartbeat.config import NO_ACTIVITY_LABEL, WEEKDAY_LABELS
from heartbeat.models import Activity, RawMeasurement


def sample(created_at, value, **extra):
    return {"createdAt": created_at, "value": value, **extra}


MORNING = [
    sample("2024-01-15T10:00:00Z", 70),
    sample("2024-01-15T10:05:00Z", 80),
    sample("2024-01-15T10:45:00Z", 90),
]


def test_slots_average_per_half_hour_newest_first():
    slots = compute_slots(MORNING, [])

    assert [(s.slot_start_iso, s.average_bpm, s.sample_count) for s in slots] == [
        ("2024-01-15T10:30:00Z", 90, 1),
        ("2024-01-15T10:00:00Z", 75, 2),
    ]


def test_malformed_records_are_ignored():
    noisy = MORNING + [
        sample("2024-01-15T10:10:00Z", "abc"),
        {"value": 75},
        sample("not-a-date", 100),
        sample("2024-01-15T10:20:00Z", None),
        sample("2024-01-15T10:25:00Z", "NaN"),
    ]

    assert compute_slots(noisy, []) == compute_slots(MORNING, [])


def test_numeric_strings_and_models_are_accepted():
    measurements = [
        RawMeasurement(created_at="2024-01-15T10:00:00Z", value="72"),
        sample("2024-01-15T10:10:00Z", "74.0"),
    ]

    slots = compute_slots(measurements)

    assert len(slots) == 1
    assert slots[0].average_bpm == 73
    assert slots[0].sample_count == 2


def test_average_rounds_half_away_from_zero():
    slots = compute_slots([sample("2024-01-15T10:00:00Z", 70), sample("2024-01-15T10:01:00Z", 71)])

    assert slots[0].average_bpm == 71


def test_round_half_away():
    assert round_half_away(2.5) == 3
    assert round_half_away(3.5) == 4
    assert round_half_away(-2.5) == -3
    assert round_half_away(2.49) == 2
    assert round_half_away(75.0) == 75


def test_offsets_are_normalized_to_utc():
    slots = compute_slots([sample("2024-01-15T11:10:00+01:00", 64), sample("2024-01-15T10:20:00", 66)])

    assert [(s.slot_start_iso, s.average_bpm) for s in slots] == [("2024-01-15T10:00:00Z", 65)]


def test_day_filter_uses_half_open_utc_day():
    measurements = [
        sample("2024-01-15T23:59:59Z", 60),
        sample("2024-01-16T00:00:00Z", 100),
        sample("2024-01-16T08:00:00Z", 80),
    ]

    day_15 = compute_slots(measurements, [], date(2024, 1, 15))
    day_16 = compute_slots(measurements, [], "2024-01-16")

    assert [s.slot_start_iso for s in day_15] == ["2024-01-15T23:30:00Z"]
    assert [s.slot_start_iso for s in day_16] == ["2024-01-16T08:00:00Z", "2024-01-16T00:00:00Z"]
    assert len(compute_slots(measurements, [])) == 3


def test_representative_is_newest_record_in_slot():
    activities = [Activity(id=1, title="Running"), Activity(id=2, title="Reading")]
    measurements = [
        sample("2024-01-15T10:05:00Z", 80, id=11, activityId=2),
        sample("2024-01-15T10:25:00Z", 120, id=12, activityId=1),
        sample("2024-01-15T10:10:00Z", 90, id=13),
    ]

    slots = compute_slots(measurements, activities)

    assert len(slots) == 1
    assert slots[0].representative_measurement_id == 12
    assert slots[0].activity_id == 1
    assert slots[0].activity_label == "Running"


def test_off_type_optional_fields_do_not_drop_samples():
    measurements = [
        sample("2024-01-15T10:00:00Z", 70, deviceId=7),
        sample("2024-01-15T10:05:00Z", 80, id="m-2", activityId="walk"),
        sample("2024-01-15T10:10:00Z", 90, id="13", activityId=1.0),
    ]

    slots = compute_slots(measurements, [Activity(id=1, title="Running")])

    assert [(s.average_bpm, s.sample_count) for s in slots] == [(80, 3)]
    assert slots[0].representative_measurement_id == 13
    assert slots[0].activity_label == "Running"
    assert sum(r.sample_count for r in compute_weekly_rollup(measurements)) == 3


def test_representative_matches_slot_before_epoch():
    measurements = [
        sample("1969-12-31T23:40:00Z", 60, id=4),
        sample("1969-12-31T23:59:59.500Z", 70, id=5, activityId=1),
    ]

    slots = compute_slots(measurements, [Activity(id=1, title="Running")])

    assert len(slots) == 1
    assert slots[0].slot_start_iso == "1969-12-31T23:30:00Z"
    assert slots[0].representative_measurement_id == 5
    assert slots[0].activity_label == "Running"


def test_representative_tie_keeps_first_record():
    measurements = [
        sample("2024-01-15T10:05:00Z", 80, id=1),
        sample("2024-01-15T10:05:00Z", 82, id=2),
    ]

    assert compute_slots(measurements)[0].representative_measurement_id == 1


def test_unknown_or_missing_activity_uses_placeholder_label():
    measurements = [
        sample("2024-01-15T10:05:00Z", 80, id=1, activityId=99),
        sample("2024-01-15T11:05:00Z", 80, id=2, activityId=None),
    ]

    slots = compute_slots(measurements, [{"id": 1, "title": "Running"}])

    assert [s.activity_label for s in slots] == [NO_ACTIVITY_LABEL, NO_ACTIVITY_LABEL]


def test_slots_are_recomputed_not_shared():
    first = compute_slots(MORNING, [])
    second = compute_slots(MORNING, [], "2024-01-15")

    assert first == second
    assert first[0] is not second[0]


def test_empty_input():
    assert compute_slots([], []) == []

    rollup = compute_weekly_rollup([])
    assert [r.day_of_week for r in rollup] == WEEKDAY_LABELS
    assert all(r.average_bpm == 0 and r.sample_count == 0 for r in rollup)


def test_weekly_rollup_pools_weekdays_across_weeks():
    measurements = [
        sample("2024-01-14T09:00:00Z", 60),  # Sunday
        sample("2024-01-21T09:00:00Z", 71),  # Sunday, a week later
        sample("2024-01-15T09:00:00Z", 80),  # Monday
        sample("2024-01-20T09:00:00Z", 90),  # Saturday
        sample("2024-01-17T09:00:00Z", "bad"),
    ]

    rollup = {r.day_of_week: (r.average_bpm, r.sample_count) for r in compute_weekly_rollup(measurements)}

    assert rollup["Sun"] == (66, 2)
    assert rollup["Mon"] == (80, 1)
    assert rollup["Sat"] == (90, 1)
    assert rollup["Wed"] == (0, 0)


def test_activity_tags_fill_unlabelled_slots_only():
    activities = [Activity(id=1, title="Running")]
    measurements = [
        sample("2024-01-15T10:05:00Z", 80, id=1, activityId=1),
        sample("2024-01-15T11:05:00Z", 70, id=2),
    ]
    slots = compute_slots(measurements, activities)
    tags = {"2024-01-15T10:00:00Z": "Cycling", "2024-01-15T11:00:00Z": "Rest"}

    tagged = apply_activity_tags(slots, tags)

    assert [s.activity_label for s in tagged] == ["Rest", "Running"]
    assert slots[0].activity_label == NO_ACTIVITY_LABEL


def test_overview_defaults_to_newest_day():
    measurements = [
        sample("2024-01-14T09:00:00Z", 60),
        sample("2024-01-15T10:05:00Z", 81),
        sample("2024-01-15T10:00:00Z", 70),
    ]

    summary = compute_overview(measurements)

    assert summary.days == ["2024-01-15", "2024-01-14"]
    assert summary.selected_day == "2024-01-15"
    assert [(p.time, p.bpm) for p in summary.data_by_day["2024-01-15"]] == [("10:00", 70), ("10:05", 81)]
    assert summary.selected_average_bpm == 76
    assert summary.selected_samples == 2
    assert summary.selected_active_minutes == 1
    assert summary.total_samples == 3
    assert summary.average_bpm == 70
    assert summary.latest_bpm == 81
    assert summary.latest_date == "2024-01-15T10:05:00Z"
    assert summary.week_average_heart_rate == 70
    assert summary.week_average_steps == 0
    assert summary.week_total_active_minutes == 2
    assert len(summary.weekly) == 7


def test_overview_selected_day_and_empty_input():
    measurements = [sample("2024-01-14T09:00:00Z", 60), sample("2024-01-15T10:05:00Z", 81)]

    summary = compute_overview(measurements, date(2024, 1, 14))
    assert summary.selected_day == "2024-01-14"
    assert summary.selected_average_bpm == 60

    empty = compute_overview([])
    assert empty.days == []
    assert empty.selected_day is None
    assert empty.selected_average_bpm is None
    assert empty.average_bpm is None
    assert empty.week_average_heart_rate == 0


def test_classify_heart_rate():
    assert classify_heart_rate(55) == "low"
    assert classify_heart_rate(60) == "normal"
    assert classify_heart_rate(99) == "normal"
    assert classify_heart_rate(100) == "elevated"
    assert classify_heart_rate(140) == "high"
