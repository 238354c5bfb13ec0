"""
recurrence.py
-------------
Materialize recurring transactions from a template.

A recurring series starts one cadence unit after the template's own date
(the template is never re-emitted) and fires strictly in time order until
an end date or an occurrence count stops it.  Timers live elsewhere; see
``scheduler.py`` for the job table that drives these objects.

Monthly cadence keeps the template's day-of-month and clamps to the last
day of shorter months.  Each trigger is computed from the template date
rather than from the previous trigger, so a series anchored on the 31st
returns to the 31st after February.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Callable, List, Optional, TypeVar

from dateutil.relativedelta import relativedelta

from errors import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSACTION_KINDS = ("income", "expense")


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SeriesState(str, Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    COMPLETED = "completed"
    CANCELED = "canceled"


TERMINAL_STATES = (SeriesState.COMPLETED, SeriesState.CANCELED)


def parse_frequency(value) -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        raise ValidationError(
            "Invalid recurrence frequency",
            [f"Frequency must be one of: {', '.join(f.value for f in Frequency)}"],
        ) from None


def occurrence_at(anchor: datetime, frequency: Frequency, n: int) -> datetime:
    """The n-th trigger after ``anchor`` (n=1 is the first)."""
    frequency = Frequency(frequency)
    if frequency is Frequency.DAILY:
        return anchor + timedelta(days=n)
    if frequency is Frequency.WEEKLY:
        return anchor + timedelta(weeks=n)
    return anchor + relativedelta(months=n)


def normalize_end(end_at) -> Optional[datetime]:
    """A bare date means the series may still fire on that day."""
    if end_at is None:
        return None
    if isinstance(end_at, datetime):
        return end_at
    if isinstance(end_at, date):
        return datetime.combine(end_at, time.max)
    raise ValidationError("Recurrence end date must be a date or datetime")


def _get(obj: Any, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def build_occurrence(template, trigger_at: datetime) -> dict:
    """
    The transaction a series materializes at ``trigger_at``.

    Copies the template's money fields and marks the copy non-recurring so
    an instance can never schedule a series of its own.
    """
    kind = _get(template, "kind")
    category = _get(template, "category")
    amount = _get(template, "amount")

    problems = []
    if kind not in TRANSACTION_KINDS:
        problems.append("kind must be income or expense")
    if not isinstance(category, str) or not category.strip():
        problems.append("category is required")
    if not isinstance(amount, (int, float)) or isinstance(amount, bool) or amount <= 0:
        problems.append("amount must be greater than 0")
    if problems:
        raise ValidationError("Invalid recurring template", problems)

    description = _get(template, "description")
    return {
        "owner_id": _get(template, "owner_id"),
        "kind": kind,
        "category": category,
        "amount": float(amount),
        "currency": _get(template, "currency"),
        "tags": list(_get(template, "tags") or []),
        "tax": _get(template, "tax") or 0.0,
        "goal_id": _get(template, "goal_id"),
        "occurred_at": trigger_at,
        "description": f"{description} (Recurring)" if description else "Recurring transaction",
        "is_recurring": False,
    }


@dataclass
class RecurringSeries:
    frequency: Frequency
    anchor_at: datetime
    end_at: Optional[datetime] = None
    max_count: Optional[int] = None
    occurrences: int = 0
    state: SeriesState = SeriesState.SCHEDULED
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def next_trigger(self) -> Optional[datetime]:
        if self.is_terminal:
            return None
        return occurrence_at(self.anchor_at, self.frequency, self.occurrences + 1)

    def stop_condition_met(self) -> bool:
        if self.max_count is not None and self.occurrences >= self.max_count:
            return True
        upcoming = occurrence_at(self.anchor_at, self.frequency, self.occurrences + 1)
        return self.end_at is not None and upcoming > self.end_at

    def settle(self) -> SeriesState:
        if not self.is_terminal:
            self.state = SeriesState.COMPLETED if self.stop_condition_met() else SeriesState.SCHEDULED
        return self.state

    def is_due(self, now: datetime) -> bool:
        trigger = self.next_trigger
        return trigger is not None and trigger <= now

    def cancel(self, reason: Optional[str] = None) -> None:
        if self.is_terminal:
            return
        self.state = SeriesState.CANCELED
        self.last_error = reason

    def fire(self, template, persist: Callable[[dict], T]) -> Optional[T]:
        """
        Attempt exactly one materialization for the next trigger.

        Returns whatever ``persist`` returns, or None when the series is
        finished or was canceled by an invalid template.  Any other error
        from ``persist`` propagates with the series left on the same
        trigger so the caller can retry it later.
        """
        if self.is_terminal:
            return None
        if self.stop_condition_met():
            self.state = SeriesState.COMPLETED
            return None

        trigger = self.next_trigger
        try:
            created = persist(build_occurrence(template, trigger))
        except ValidationError as exc:
            logger.warning("Canceling recurring series at %s: %s", trigger, exc.message)
            self.cancel("; ".join([exc.message, *exc.details]))
            return None

        self.occurrences += 1
        self.state = SeriesState.FIRED
        self.settle()
        return created


def start_series(template, frequency, end_at=None, count: Optional[int] = None) -> RecurringSeries:
    """Validate a recurrence request and return the series in its initial state."""
    frequency = parse_frequency(frequency)
    if count is not None:
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("Recurrence count must be a positive integer")

    anchor = _get(template, "occurred_at")
    if isinstance(anchor, date) and not isinstance(anchor, datetime):
        anchor = datetime.combine(anchor, time.min)
    if not isinstance(anchor, datetime):
        raise ValidationError("Recurring template needs an occurred_at timestamp")

    series = RecurringSeries(
        frequency=frequency,
        anchor_at=anchor,
        end_at=normalize_end(end_at),
        max_count=count,
    )
    series.settle()
    if series.state is SeriesState.COMPLETED:
        logger.info("Recurring series ends before its first trigger; nothing to schedule")
    return series


def generate_occurrences(
    template,
    frequency,
    end_at=None,
    count: Optional[int] = None,
    until: Optional[datetime] = None,
) -> List[dict]:
    """
    Every occurrence a series would produce, without persisting anything.

    Open-ended series need ``until`` to bound the sequence.
    """
    if end_at is None and count is None and until is None:
        raise ValidationError("An open-ended series needs an 'until' bound")

    series = start_series(template, frequency, end_at, count)
    produced = []
    while not series.is_terminal:
        if until is not None and not series.is_due(until):
            break
        instance = series.fire(template, lambda payload: payload)
        if instance is not None:
            produced.append(instance)
    return produced
