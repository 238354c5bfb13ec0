"""
repositories.py
---------------
Owner-scoped persistence for transactions, budgets, goals and category
predictions.

Every lookup filters on ``owner_id`` so one user can never read or touch
another user's rows; a missing id/owner pair raises ``NotFoundError``.
Updates are partial: callers pass only the fields that change, and the
merged result is validated against the same rules as creation.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from budgets import coerce_amount, validate_budget_fields
from database import (
    Budget,
    BudgetEdit,
    BudgetNotification,
    CategoryPrediction,
    Goal,
    GoalNotification,
    Milestone,
    RecurringJob,
    Transaction,
    TransactionEdit,
)
from errors import DuplicateError, NotFoundError, ValidationError
from goals import GoalAmountOperation, apply_amount_operation, refresh_milestones, validate_goal_fields
from recurrence import TRANSACTION_KINDS, normalize_end, parse_frequency
from settings import DEFAULT_ALERT_THRESHOLD, DEFAULT_CURRENCY, normalize_currency

logger = logging.getLogger(__name__)

TRANSACTION_FIELDS = (
    "kind", "category", "amount", "currency", "occurred_at", "description", "tags", "tax", "goal_id",
    "is_recurring", "recurrence_frequency", "recurrence_end_date", "recurrence_count",
)
# Transaction fields an update may clear with an explicit null.
CLEARABLE_TRANSACTION_FIELDS = ("goal_id", "recurrence_frequency", "recurrence_end_date", "recurrence_count")
BUDGET_FIELDS = ("category", "amount", "period", "alert_threshold", "description", "status")
GOAL_FIELDS = ("name", "target_amount", "deadline", "currency", "milestones", "current_amount", "is_completed")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _diff(row, changes: Dict[str, Any], fields) -> tuple[dict, dict]:
    """Field-level ``{field: {from, to}}`` changes plus the previous values."""
    diff = {}
    previous = {}
    for name in fields:
        if name not in changes:
            continue
        old = getattr(row, name)
        new = changes[name]
        if old != new:
            diff[name] = {"from": _jsonable(old), "to": _jsonable(new)}
            previous[name] = _jsonable(old)
    return diff, previous


def _commit(db: Session, duplicate_message: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if "unique" in str(exc.orig).lower():
            raise DuplicateError(duplicate_message) from exc
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ValidationError("Invalid data", [str(exc.orig)]) from exc


# --- Transactions ---

def _check_currency(value: Optional[str]) -> str:
    try:
        return normalize_currency(value or DEFAULT_CURRENCY)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _validate_transaction(db: Session, owner_id: int, data: Dict[str, Any]) -> None:
    missing = [name for name in ("kind", "category", "amount", "occurred_at") if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            "Missing required fields: kind, category, amount, and occurred_at are required",
            missing,
        )
    if data["kind"] not in TRANSACTION_KINDS:
        raise ValidationError("Transaction kind must be income or expense")
    if not str(data["category"]).strip():
        raise ValidationError("Category is required")
    amount = coerce_amount(data["amount"])
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    tax = coerce_amount(data.get("tax") or 0)
    if tax is None or tax < 0:
        raise ValidationError("Tax cannot be negative")
    if not isinstance(data.get("tags") or [], list):
        raise ValidationError("Tags must be a list of strings")

    if data.get("is_recurring"):
        if not data.get("recurrence_frequency"):
            raise ValidationError("Recurrence frequency is required for recurring transactions")
        parse_frequency(data["recurrence_frequency"])
        count = data.get("recurrence_count")
        if count is not None and count < 1:
            raise ValidationError("Recurrence count must be a positive integer")

    if data.get("goal_id") is not None:
        try:
            get_goal(db, owner_id, data["goal_id"])
        except NotFoundError as exc:
            raise ValidationError("Linked goal does not exist") from exc


def list_transactions(db: Session, owner_id: int) -> List[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.owner_id == owner_id)
        .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        .all()
    )


def get_transaction(db: Session, owner_id: int, transaction_id: int) -> Transaction:
    txn = (
        db.query(Transaction)
        .filter(Transaction.id == transaction_id, Transaction.owner_id == owner_id)
        .first()
    )
    if not txn:
        raise NotFoundError("Transaction not found")
    return txn


def add_transaction(db: Session, owner_id: int, data: Dict[str, Any]) -> Transaction:
    """Validate and stage a transaction in the session without committing."""
    data = {k: v for k, v in data.items() if k in TRANSACTION_FIELDS}
    _validate_transaction(db, owner_id, data)

    is_recurring = bool(data.get("is_recurring"))
    txn = Transaction(
        owner_id=owner_id,
        kind=data["kind"],
        category=data["category"].strip(),
        amount=float(data["amount"]),
        currency=_check_currency(data.get("currency")),
        occurred_at=data["occurred_at"],
        description=(data.get("description") or "").strip(),
        tags=list(data.get("tags") or []),
        tax=float(data.get("tax") or 0.0),
        goal_id=data.get("goal_id"),
        is_recurring=is_recurring,
        recurrence_frequency=data.get("recurrence_frequency") if is_recurring else None,
        recurrence_end_date=normalize_end(data.get("recurrence_end_date")) if is_recurring else None,
        recurrence_count=data.get("recurrence_count") if is_recurring else None,
    )
    db.add(txn)
    db.flush()
    return txn


def create_transaction(db: Session, owner_id: int, data: Dict[str, Any]) -> Transaction:
    txn = add_transaction(db, owner_id, data)
    db.commit()
    db.refresh(txn)
    return txn


def update_transaction(db: Session, owner_id: int, transaction_id: int, changes: Dict[str, Any]) -> Transaction:
    txn = get_transaction(db, owner_id, transaction_id)
    changes = {
        k: v for k, v in changes.items()
        if k in TRANSACTION_FIELDS and (v is not None or k in CLEARABLE_TRANSACTION_FIELDS)
    }
    if "currency" in changes:
        changes["currency"] = _check_currency(changes["currency"])
    if "category" in changes and isinstance(changes["category"], str):
        changes["category"] = changes["category"].strip()
    if "recurrence_end_date" in changes:
        changes["recurrence_end_date"] = normalize_end(changes["recurrence_end_date"])

    merged = {name: getattr(txn, name) for name in TRANSACTION_FIELDS}
    merged.update(changes)
    _validate_transaction(db, owner_id, merged)

    diff, previous = _diff(txn, changes, TRANSACTION_FIELDS)
    if not diff:
        return txn

    for name, value in changes.items():
        setattr(txn, name, value)
    txn.edits.append(TransactionEdit(changes=diff, previous_values=previous))
    db.commit()
    db.refresh(txn)
    return txn


def delete_transaction(db: Session, owner_id: int, transaction_id: int) -> Transaction:
    txn = get_transaction(db, owner_id, transaction_id)
    # A series cannot outlive its template.
    db.query(RecurringJob).filter(RecurringJob.template_id == txn.id).delete(synchronize_session=False)
    db.delete(txn)
    db.commit()
    return txn


# --- Budgets ---

def list_budgets(db: Session, owner_id: int, status: Optional[str] = None) -> List[Budget]:
    query = db.query(Budget).filter(Budget.owner_id == owner_id)
    if status:
        query = query.filter(Budget.status == status)
    return query.order_by(Budget.created_at.desc(), Budget.id.desc()).all()


def get_budget(db: Session, owner_id: int, budget_id: int) -> Budget:
    budget = db.query(Budget).filter(Budget.id == budget_id, Budget.owner_id == owner_id).first()
    if not budget:
        raise NotFoundError("Budget not found")
    return budget


def _find_budget_clash(db: Session, owner_id: int, category: str, period: str,
                       exclude_id: Optional[int] = None) -> Optional[Budget]:
    query = db.query(Budget).filter(
        Budget.owner_id == owner_id,
        Budget.category == category,
        Budget.period == period,
    )
    if exclude_id is not None:
        query = query.filter(Budget.id != exclude_id)
    return query.first()


def create_budget(db: Session, owner_id: int, data: Dict[str, Any]) -> Budget:
    if not data.get("category") or data.get("amount") is None or not data.get("period"):
        raise ValidationError("Category, amount, and period are required")

    category = data["category"].strip()
    period = data["period"]
    threshold = data.get("alert_threshold")
    if threshold is None:
        threshold = DEFAULT_ALERT_THRESHOLD
    status = data.get("status") or "active"
    validate_budget_fields(category, data["amount"], period, threshold, status)

    if _find_budget_clash(db, owner_id, category, period):
        raise DuplicateError(f"Budget already exists for {category} ({period})")

    budget = Budget(
        owner_id=owner_id,
        category=category,
        amount=float(data["amount"]),
        period=period,
        alert_threshold=float(threshold),
        description=(data.get("description") or "").strip(),
        status=status,
    )
    budget.notifications.append(
        BudgetNotification(type="created", message=f"Budget created for {category} ({period})")
    )
    db.add(budget)
    _commit(db, f"Budget already exists for {category} ({period})")
    db.refresh(budget)
    return budget


def update_budget(db: Session, owner_id: int, budget_id: int, changes: Dict[str, Any]) -> Budget:
    budget = get_budget(db, owner_id, budget_id)
    changes = {k: v for k, v in changes.items() if k in BUDGET_FIELDS and v is not None}
    if "category" in changes:
        changes["category"] = changes["category"].strip()
    validate_budget_fields(
        changes.get("category"),
        changes.get("amount"),
        changes.get("period"),
        changes.get("alert_threshold"),
        changes.get("status"),
    )

    category = changes.get("category", budget.category)
    period = changes.get("period", budget.period)
    if _find_budget_clash(db, owner_id, category, period, exclude_id=budget.id):
        raise DuplicateError(f"Budget already exists for {category} ({period})")

    diff, previous = _diff(budget, changes, BUDGET_FIELDS)
    if not diff:
        return budget

    for name, value in changes.items():
        setattr(budget, name, value)
    budget.edits.append(BudgetEdit(changes=diff, previous_values=previous))
    budget.notifications.append(
        BudgetNotification(type="updated", message=f"Budget updated: {', '.join(sorted(diff))}")
    )
    _commit(db, f"Budget already exists for {category} ({period})")
    db.refresh(budget)
    return budget


def delete_budget(db: Session, owner_id: int, budget_id: int) -> Budget:
    budget = get_budget(db, owner_id, budget_id)
    db.delete(budget)
    db.commit()
    return budget


def acknowledge_notifications(db: Session, owner_id: int, budget_id: int) -> int:
    budget = get_budget(db, owner_id, budget_id)
    count = 0
    for notification in budget.notifications:
        if not notification.acknowledged:
            notification.acknowledged = True
            count += 1
    db.commit()
    return count


def budget_transactions(db: Session, owner_id: int, budget: Budget,
                        since: Optional[datetime] = None) -> List[Transaction]:
    """Expenses in the budget's category, newest first."""
    query = db.query(Transaction).filter(
        Transaction.owner_id == owner_id,
        Transaction.category == budget.category,
        Transaction.kind == "expense",
    )
    if since is not None:
        query = query.filter(Transaction.occurred_at >= since)
    return query.order_by(Transaction.occurred_at.desc()).all()


# --- Goals ---

def list_goals(db: Session, owner_id: int) -> List[Goal]:
    return db.query(Goal).filter(Goal.owner_id == owner_id).order_by(Goal.deadline.asc()).all()


def get_goal(db: Session, owner_id: int, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id, Goal.owner_id == owner_id).first()
    if not goal:
        raise NotFoundError("Goal not found")
    return goal


def _find_goal_clash(db: Session, owner_id: int, name: str, target_amount: float, deadline: datetime,
                     exclude_id: Optional[int] = None) -> Optional[Goal]:
    query = db.query(Goal).filter(
        Goal.owner_id == owner_id,
        Goal.name == name,
        Goal.target_amount == target_amount,
        Goal.deadline == deadline,
    )
    if exclude_id is not None:
        query = query.filter(Goal.id != exclude_id)
    return query.first()


def _build_milestones(milestones) -> List[Milestone]:
    return [
        Milestone(position=i, amount=float(m["amount"]), date=m["date"], is_completed=bool(m.get("is_completed")))
        for i, m in enumerate(milestones or [])
    ]


def _record_progress(goal: Goal, reached: List[Milestone], was_completed: bool) -> None:
    for milestone in reached:
        goal.notifications.append(
            GoalNotification(message=f"Milestone of {milestone.amount:,.2f} {goal.currency} reached")
        )
    if goal.is_completed and not was_completed:
        goal.notifications.append(GoalNotification(message=f"Goal '{goal.name}' completed"))


DUPLICATE_GOAL = "A goal with the same name, amount, and deadline already exists"


def create_goal(db: Session, owner_id: int, data: Dict[str, Any], now: Optional[datetime] = None) -> Goal:
    if not data.get("name") or not data.get("target_amount") or not data.get("deadline"):
        raise ValidationError("Missing required fields")

    name = data["name"].strip()
    currency = data.get("currency") or DEFAULT_CURRENCY
    milestones = data.get("milestones") or []
    validate_goal_fields(name, data["target_amount"], data["deadline"], currency, milestones, now=now)

    target = float(data["target_amount"])
    if _find_goal_clash(db, owner_id, name, target, data["deadline"]):
        raise DuplicateError(DUPLICATE_GOAL)

    goal = Goal(
        owner_id=owner_id,
        name=name,
        target_amount=target,
        current_amount=0.0,
        deadline=data["deadline"],
        currency=normalize_currency(currency),
        is_completed=False,
        milestones=_build_milestones(milestones),
    )
    refresh_milestones(goal)
    db.add(goal)
    _commit(db, DUPLICATE_GOAL)
    db.refresh(goal)
    return goal


def update_goal(db: Session, owner_id: int, goal_id: int, changes: Dict[str, Any],
                now: Optional[datetime] = None) -> Goal:
    goal = get_goal(db, owner_id, goal_id)
    changes = {k: v for k, v in changes.items() if k in GOAL_FIELDS and v is not None}
    if "name" in changes:
        changes["name"] = changes["name"].strip()

    target = changes.get("target_amount", goal.target_amount)
    deadline = changes.get("deadline", goal.deadline)
    milestones = changes.get("milestones", goal.milestones)
    validate_goal_fields(
        changes.get("name"),
        target,
        deadline,
        changes.get("currency"),
        milestones,
        now=now,
        check_deadline="deadline" in changes,
    )
    if "current_amount" in changes and not math.isfinite(changes["current_amount"]):
        raise ValidationError("Amount must be a non-negative number")

    if {"name", "target_amount", "deadline"} & changes.keys():
        if _find_goal_clash(db, owner_id, changes.get("name", goal.name), target, deadline, exclude_id=goal.id):
            raise DuplicateError(DUPLICATE_GOAL)

    was_completed = goal.is_completed
    for name in ("name", "target_amount", "deadline", "is_completed"):
        if name in changes:
            setattr(goal, name, changes[name])
    if "currency" in changes:
        goal.currency = normalize_currency(changes["currency"])
    if "current_amount" in changes:
        goal.current_amount = max(0.0, float(changes["current_amount"]))
    if "milestones" in changes:
        goal.milestones = _build_milestones(changes["milestones"])

    _record_progress(goal, refresh_milestones(goal), was_completed)
    _commit(db, DUPLICATE_GOAL)
    db.refresh(goal)
    return goal


def update_goal_amount(db: Session, owner_id: int, goal_id: int, amount: float,
                       operation: GoalAmountOperation) -> Goal:
    goal = get_goal(db, owner_id, goal_id)
    if amount is None or not math.isfinite(amount) or amount < 0:
        raise ValidationError("Amount must be a non-negative number")

    was_completed = goal.is_completed
    goal.current_amount = apply_amount_operation(goal.current_amount, amount, operation)
    _record_progress(goal, refresh_milestones(goal), was_completed)
    db.commit()
    db.refresh(goal)
    return goal


def toggle_goal_completion(db: Session, owner_id: int, goal_id: int) -> Goal:
    goal = get_goal(db, owner_id, goal_id)
    goal.is_completed = not goal.is_completed
    db.commit()
    db.refresh(goal)
    return goal


def delete_goal(db: Session, owner_id: int, goal_id: int) -> Goal:
    goal = get_goal(db, owner_id, goal_id)
    db.query(Transaction).filter(Transaction.goal_id == goal.id).update(
        {Transaction.goal_id: None}, synchronize_session=False
    )
    db.delete(goal)
    db.commit()
    return goal


# --- Category predictions ---

KEYWORD_CATEGORIES = {
    "coffee": "Food",
    "lunch": "Food",
    "grocery": "Food",
    "restaurant": "Food",
    "uber": "Transportation",
    "lyft": "Transportation",
    "fuel": "Transportation",
    "rent": "Housing",
    "mortgage": "Housing",
    "electricity": "Utilities",
    "internet": "Utilities",
    "movie": "Entertainment",
    "netflix": "Entertainment",
    "doctor": "Healthcare",
    "pharmacy": "Healthcare",
    "salary": "Salary",
}
LEARNED_MIN_FREQUENCY = 2


def predict_category(db: Session, owner_id: int, description: str) -> str:
    """Keyword guess, overridden once the user has confirmed a category often enough."""
    if not description or not description.strip():
        raise ValidationError("Description is required")

    lowered = description.strip().lower()
    predicted = "Other"
    for keyword, category in KEYWORD_CATEGORIES.items():
        if keyword in lowered:
            predicted = category
            break

    learned = (
        db.query(CategoryPrediction)
        .filter(CategoryPrediction.owner_id == owner_id, CategoryPrediction.description == lowered)
        .first()
    )
    if learned and learned.frequency > LEARNED_MIN_FREQUENCY:
        predicted = learned.category
    return predicted


def save_prediction(db: Session, owner_id: int, description: str, category: str) -> CategoryPrediction:
    if not description or not description.strip() or not category or not category.strip():
        raise ValidationError("Description and category are required")

    lowered = description.strip().lower()
    existing = (
        db.query(CategoryPrediction)
        .filter(CategoryPrediction.owner_id == owner_id, CategoryPrediction.description == lowered)
        .first()
    )
    if existing:
        existing.category = category.strip()
        existing.frequency += 1
        prediction = existing
    else:
        prediction = CategoryPrediction(owner_id=owner_id, description=lowered, category=category.strip())
        db.add(prediction)
    db.commit()
    db.refresh(prediction)
    return prediction
