"""
goals.py
--------
Savings goal rules: field validation, the amount operations a user can
apply, milestone detection and progress figures.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from errors import ValidationError
from settings import normalize_currency, utc_now

MAX_NAME_LENGTH = 100


class GoalAmountOperation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    SET = "set"


def apply_amount_operation(current: float, amount: float, operation: GoalAmountOperation) -> float:
    """New current amount after ``operation``; never drops below zero."""
    operation = GoalAmountOperation(operation)
    current = current or 0.0
    if operation is GoalAmountOperation.ADD:
        result = current + amount
    elif operation is GoalAmountOperation.SUBTRACT:
        result = current - amount
    else:
        result = amount
    return max(0.0, result)


def validate_goal_fields(
    name: Optional[str] = None,
    target_amount: Optional[float] = None,
    deadline: Optional[datetime] = None,
    currency: Optional[str] = None,
    milestones: Optional[Iterable] = None,
    now: Optional[datetime] = None,
    check_deadline: bool = True,
) -> None:
    """
    Check the given goal fields against the goal invariants.

    ``milestones`` is validated against ``target_amount`` and ``deadline``,
    so callers updating only milestones must pass the stored values for
    both.  ``check_deadline`` is off when an update leaves an existing
    deadline untouched.
    """
    now = now or utc_now()
    if name is not None:
        if not name.strip():
            raise ValidationError("Goal name is required")
        if len(name.strip()) > MAX_NAME_LENGTH:
            raise ValidationError(f"Goal name must be at most {MAX_NAME_LENGTH} characters")
    if target_amount is not None and not (math.isfinite(target_amount) and target_amount > 0):
        raise ValidationError("Target amount must be positive")
    if deadline is not None and check_deadline and deadline <= now:
        raise ValidationError("Deadline must be in the future")
    if currency is not None:
        try:
            normalize_currency(currency)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    for milestone in milestones or []:
        amount = _get(milestone, "amount")
        when = _get(milestone, "date")
        if amount is None or not math.isfinite(amount) or amount < 0:
            raise ValidationError("Milestone amount must be non-negative")
        if target_amount is not None and amount > target_amount:
            raise ValidationError("Milestone amount cannot exceed target amount")
        if deadline is not None and when is not None and when > deadline:
            raise ValidationError("Milestone date cannot be after deadline")


def _get(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def refresh_milestones(goal) -> List:
    """
    Mark milestones reached by the goal's current amount.

    Returns the milestones that flipped to completed on this call.  The goal
    itself completes once the current amount reaches the target; lowering
    the amount again does not reopen anything a user already saw completed.
    """
    current = goal.current_amount or 0.0
    reached = []
    for milestone in goal.milestones:
        if not milestone.is_completed and current >= milestone.amount:
            milestone.is_completed = True
            reached.append(milestone)
    if goal.target_amount and current >= goal.target_amount:
        goal.is_completed = True
    return reached


@dataclass
class GoalProgress:
    progress_percentage: float
    remaining: float
    days_remaining: int
    months_remaining: int
    required_monthly: float
    milestones_completed: int
    milestones_total: int

    def to_dict(self) -> dict:
        return asdict(self)


def goal_progress(goal, now: Optional[datetime] = None) -> GoalProgress:
    now = now or utc_now()
    target = goal.target_amount or 0.0
    current = goal.current_amount or 0.0

    pct = min(100.0, current / target * 100) if target > 0 else 0.0
    remaining = max(0.0, target - current)
    days = math.ceil((goal.deadline - now).total_seconds() / 86400)
    months = max(1, (goal.deadline.year - now.year) * 12 + (goal.deadline.month - now.month))
    milestones = list(goal.milestones or [])

    return GoalProgress(
        progress_percentage=pct,
        remaining=remaining,
        days_remaining=days,
        months_remaining=months,
        required_monthly=remaining / months,
        milestones_completed=sum(1 for m in milestones if m.is_completed),
        milestones_total=len(milestones),
    )
