"""
budgets.py
----------
Period accounting for budgets.

A budget caps spending in one category over a repeating period.  Nothing
computed here is persisted: every figure is derived from the owner's full
transaction history and the wall clock each time it is asked for, so the
functions below are pure apart from reading ``settings.utc_now()`` when no
``now`` is supplied.
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple

import pandas as pd

from errors import ValidationError
from settings import WEEK_START, utc_now

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly", "yearly")
BUDGET_STATUSES = ("active", "paused", "archived")
FRAME_COLUMNS = ["OccurredAt", "Kind", "Category", "Amount"]


@dataclass
class BudgetProgress:
    budget_id: Optional[int]
    category: str
    period: str
    budget_amount: float
    spent: float
    remaining: float
    progress: float
    percentage_used: float
    is_over_budget: bool
    is_alert: bool
    transaction_count: int
    days_in_period: int
    days_elapsed: int
    daily_average: float
    window_start: datetime
    window_end: datetime

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BudgetSummary:
    total_budgets: int
    total_budget_amount: float
    total_spent: float
    total_remaining: float
    overall_progress: int
    alert_count: int
    over_budget_count: int
    health_score: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BudgetAlert:
    budget_id: Optional[int]
    category: str
    budget_amount: float
    spent: float
    progress: int
    alert_threshold: int
    is_over_budget: bool
    message: str
    severity: str

    def to_dict(self) -> dict:
        return asdict(self)


def _field(obj: Any, *names: str, default=None):
    """Read the first present attribute/key from an ORM row or a plain dict."""
    for name in names:
        if isinstance(obj, dict):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return default


def _coerce_timestamp(value) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def coerce_amount(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount):
        return None
    return amount


def transactions_frame(transactions) -> pd.DataFrame:
    """
    Normalize a transaction collection into a frame with FRAME_COLUMNS.

    Accepts ORM rows, dicts (snake_case or the camelCase wire names) or an
    already-built frame.  Rows with a missing category or kind, an
    unparseable timestamp, or a non-positive amount are dropped rather than
    raising, so one bad record never poisons a budget figure.
    """
    if isinstance(transactions, pd.DataFrame) and set(FRAME_COLUMNS).issubset(transactions.columns):
        return transactions

    rows = []
    skipped = 0
    for t in transactions or []:
        occurred_at = _coerce_timestamp(_field(t, "occurred_at", "occurredAt", "date"))
        amount = coerce_amount(_field(t, "amount"))
        kind = _field(t, "kind", "type")
        category = _field(t, "category")
        if (
            occurred_at is None
            or amount is None
            or amount <= 0
            or not isinstance(kind, str)
            or not isinstance(category, str)
            or not category
        ):
            skipped += 1
            continue
        rows.append({
            "OccurredAt": occurred_at,
            "Kind": kind.strip().lower(),
            "Category": category,
            "Amount": amount,
        })

    if skipped:
        logger.debug("Skipped %d malformed transactions", skipped)

    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["OccurredAt"] = pd.to_datetime(df["OccurredAt"])
    df["Amount"] = df["Amount"].astype(float)
    return df


def period_window(
    period: str,
    now: Optional[datetime] = None,
    week_start: int = WEEK_START,
) -> Tuple[datetime, datetime]:
    """Return the ``[start, now]`` window of the current period."""
    now = now or utc_now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "daily":
        start = midnight
    elif period == "weekly":
        days_back = (now.weekday() - week_start) % 7
        start = midnight - timedelta(days=days_back)
    elif period == "monthly":
        start = midnight.replace(day=1)
    elif period == "yearly":
        start = midnight.replace(month=1, day=1)
    else:
        raise ValidationError(f"Unknown budget period: {period!r}")
    return start, now


def days_in_period(period: str, now: Optional[datetime] = None, elapsed: bool = False,
                   week_start: int = WEEK_START) -> int:
    now = now or utc_now()
    if period == "daily":
        return 1
    if period == "weekly":
        return (now.weekday() - week_start) % 7 + 1 if elapsed else 7
    if period == "monthly":
        return now.day if elapsed else calendar.monthrange(now.year, now.month)[1]
    if period == "yearly":
        if elapsed:
            return now.timetuple().tm_yday
        return 366 if calendar.isleap(now.year) else 365
    raise ValidationError(f"Unknown budget period: {period!r}")


def _window_spend(df: pd.DataFrame, category: str, start: datetime, end: datetime) -> pd.Series:
    mask = (
        (df["Category"] == category)
        & (df["Kind"] == "expense")
        & (df["OccurredAt"] >= pd.Timestamp(start))
        & (df["OccurredAt"] <= pd.Timestamp(end))
    )
    return df.loc[mask, "Amount"]


def compute_progress(
    budget,
    transactions,
    now: Optional[datetime] = None,
    week_start: int = WEEK_START,
) -> BudgetProgress:
    """
    Current-period spend and status for one budget.

    ``transactions`` is the owner's unfiltered history; only expenses in the
    budget's category that fall inside the current period window count.
    A zero budget reports zero progress instead of dividing by zero.
    """
    now = now or utc_now()
    period = _field(budget, "period")
    category = _field(budget, "category")
    amount = coerce_amount(_field(budget, "amount")) or 0.0
    threshold = coerce_amount(_field(budget, "alert_threshold", "alertThreshold"))

    start, end = period_window(period, now, week_start)
    df = transactions_frame(transactions)
    matched = _window_spend(df, category, start, end)

    spent = float(matched.sum()) if not matched.empty else 0.0
    progress = spent / amount if amount > 0 else 0.0
    elapsed = days_in_period(period, now, elapsed=True, week_start=week_start)

    return BudgetProgress(
        budget_id=_field(budget, "id"),
        category=category,
        period=period,
        budget_amount=amount,
        spent=spent,
        remaining=max(0.0, amount - spent),
        progress=progress,
        percentage_used=progress * 100,
        is_over_budget=spent > amount,
        is_alert=threshold is not None and progress >= threshold,
        transaction_count=int(matched.shape[0]),
        days_in_period=days_in_period(period, now, week_start=week_start),
        days_elapsed=elapsed,
        daily_average=spent / elapsed if elapsed else 0.0,
        window_start=start,
        window_end=end,
    )


def aggregate_across_budgets(
    budgets: Iterable,
    transactions,
    now: Optional[datetime] = None,
    week_start: int = WEEK_START,
) -> BudgetSummary:
    """Roll every budget's current period into one health summary."""
    now = now or utc_now()
    df = transactions_frame(transactions)
    budgets = list(budgets or [])

    total_amount = 0.0
    total_spent = 0.0
    alert_count = 0
    over_count = 0
    for budget in budgets:
        result = compute_progress(budget, df, now, week_start)
        total_amount += result.budget_amount
        total_spent += result.spent
        if result.is_alert:
            alert_count += 1
        if result.is_over_budget:
            over_count += 1

    if budgets:
        health = max(0.0, 100 - (over_count / len(budgets)) * 100)
    else:
        health = 100.0

    return BudgetSummary(
        total_budgets=len(budgets),
        total_budget_amount=total_amount,
        total_spent=total_spent,
        total_remaining=max(0.0, total_amount - total_spent),
        overall_progress=round(total_spent / total_amount * 100) if total_amount > 0 else 0,
        alert_count=alert_count,
        over_budget_count=over_count,
        health_score=health,
    )


def budget_alerts(
    budgets: Iterable,
    transactions,
    now: Optional[datetime] = None,
    week_start: int = WEEK_START,
) -> List[BudgetAlert]:
    """Alerts for every budget at or past its threshold; over-budget ranks high."""
    df = transactions_frame(transactions)
    alerts = []
    for budget in budgets or []:
        result = compute_progress(budget, df, now, week_start)
        if not result.is_alert:
            continue
        pct = round(result.progress * 100)
        if result.is_over_budget:
            message = f"You're over budget on {result.category}!"
        else:
            message = f"You've reached {pct}% of your {result.category} budget."
        threshold = coerce_amount(_field(budget, "alert_threshold", "alertThreshold")) or 0.0
        alerts.append(BudgetAlert(
            budget_id=result.budget_id,
            category=result.category,
            budget_amount=result.budget_amount,
            spent=result.spent,
            progress=pct,
            alert_threshold=round(threshold * 100),
            is_over_budget=result.is_over_budget,
            message=message,
            severity="high" if result.is_over_budget else "medium",
        ))
    return alerts


def validate_budget_fields(
    category: Optional[str] = None,
    amount: Optional[float] = None,
    period: Optional[str] = None,
    alert_threshold: Optional[float] = None,
    status: Optional[str] = None,
) -> None:
    """Check whichever fields are given against the budget invariants."""
    if category is not None and not category.strip():
        raise ValidationError("Category is required")
    if amount is not None:
        value = coerce_amount(amount)
        if value is None or value < 0:
            raise ValidationError("Budget amount must be a non-negative number")
    if period is not None and period not in PERIODS:
        raise ValidationError(f"Period must be one of: {', '.join(PERIODS)}")
    if alert_threshold is not None and not (0 < alert_threshold <= 1):
        raise ValidationError("Alert threshold must be greater than 0 and at most 1")
    if status is not None and status not in BUDGET_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(BUDGET_STATUSES)}")
