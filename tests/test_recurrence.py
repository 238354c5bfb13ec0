from datetime import date, datetime, timedelta

import pytest

from errors import ValidationError
from recurrence import (
    Frequency,
    RecurringSeries,
    SeriesState,
    build_occurrence,
    generate_occurrences,
    occurrence_at,
    start_series,
)


def _template(**overrides):
    template = {
        "owner_id": 1,
        "kind": "expense",
        "category": "Rent",
        "amount": 1200.0,
        "currency": "USD",
        "tags": ["home"],
        "tax": 0.0,
        "goal_id": None,
        "description": "Apartment",
        "occurred_at": datetime(2024, 1, 1, 9, 0),
    }
    template.update(overrides)
    return template


def test_daily_count_three_produces_three_instances_then_completes():
    template = _template()
    series = start_series(template, "daily", count=3)
    produced = []

    while not series.is_terminal:
        produced.append(series.fire(template, lambda payload: payload))

    assert [p["occurred_at"] for p in produced] == [
        datetime(2024, 1, 2, 9, 0),
        datetime(2024, 1, 3, 9, 0),
        datetime(2024, 1, 4, 9, 0),
    ]
    assert series.state is SeriesState.COMPLETED
    assert series.occurrences == 3
    assert series.next_trigger is None


def test_end_date_before_first_trigger_completes_immediately():
    series = start_series(_template(), "weekly", end_at=datetime(2024, 1, 5))

    assert series.state is SeriesState.COMPLETED
    assert generate_occurrences(_template(), "weekly", end_at=datetime(2024, 1, 5)) == []


def test_bare_end_date_includes_that_day():
    produced = generate_occurrences(_template(), "daily", end_at=date(2024, 1, 3))

    assert [p["occurred_at"].day for p in produced] == [2, 3]


def test_monthly_clamps_to_month_end_without_drifting():
    anchor = datetime(2024, 1, 31)
    produced = generate_occurrences(_template(occurred_at=anchor), "monthly", count=3)

    assert [p["occurred_at"] for p in produced] == [
        datetime(2024, 2, 29),
        datetime(2024, 3, 31),
        datetime(2024, 4, 30),
    ]
    assert occurrence_at(datetime(2023, 1, 31), Frequency.MONTHLY, 1) == datetime(2023, 2, 28)


def test_weekly_spacing():
    produced = generate_occurrences(_template(), "weekly", until=datetime(2024, 1, 29, 9, 0))

    assert len(produced) == 4
    gaps = {b["occurred_at"] - a["occurred_at"] for a, b in zip(produced, produced[1:])}
    assert gaps == {timedelta(weeks=1)}


def test_instances_copy_template_and_are_not_recurring():
    instance = build_occurrence(_template(), datetime(2024, 1, 2))

    assert instance["amount"] == 1200.0
    assert instance["tags"] == ["home"]
    assert instance["description"] == "Apartment (Recurring)"
    assert instance["is_recurring"] is False
    assert build_occurrence(_template(description=""), datetime(2024, 1, 2))["description"] == "Recurring transaction"


def test_invalid_template_cancels_series():
    template = _template()
    series = start_series(template, "daily", count=5)
    template["amount"] = 0

    assert series.fire(template, lambda payload: payload) is None
    assert series.state is SeriesState.CANCELED
    assert "amount must be greater than 0" in series.last_error
    assert series.occurrences == 0


def test_persist_validation_error_cancels_series():
    def reject(payload):
        raise ValidationError("Linked goal does not exist")

    series = start_series(_template(), "daily", count=2)
    series.fire(_template(), reject)

    assert series.state is SeriesState.CANCELED
    assert series.last_error == "Linked goal does not exist"


def test_storage_error_leaves_series_on_same_trigger():
    def broken(payload):
        raise RuntimeError("disk full")

    series = start_series(_template(), "daily", count=2)
    trigger = series.next_trigger

    with pytest.raises(RuntimeError):
        series.fire(_template(), broken)

    assert series.state is SeriesState.SCHEDULED
    assert series.next_trigger == trigger
    assert series.occurrences == 0


def test_is_due_and_cancel():
    series = RecurringSeries(frequency=Frequency.DAILY, anchor_at=datetime(2024, 1, 1))

    assert not series.is_due(datetime(2024, 1, 1, 23, 59))
    assert series.is_due(datetime(2024, 1, 2))

    series.cancel("Canceled by user")
    assert series.state is SeriesState.CANCELED
    assert not series.is_due(datetime(2024, 2, 1))
    assert series.fire(_template(), lambda payload: payload) is None


def test_start_series_validation():
    with pytest.raises(ValidationError):
        start_series(_template(), "hourly")
    with pytest.raises(ValidationError):
        start_series(_template(), "daily", count=0)
    with pytest.raises(ValidationError):
        start_series(_template(occurred_at=None), "daily", count=1)
    with pytest.raises(ValidationError):
        generate_occurrences(_template(), "daily")
