from datetime import datetime

import pytest

import repositories as repo
from database import Budget, RecurringJob, Transaction
from errors import DuplicateError, NotFoundError, ValidationError
from goals import GoalAmountOperation

NOW = datetime(2024, 5, 15, 12, 0)


def _txn_data(**overrides):
    data = {
        "kind": "expense",
        "category": "Food",
        "amount": 42.5,
        "occurred_at": datetime(2024, 5, 10, 8, 0),
        "description": "Groceries",
    }
    data.update(overrides)
    return data


def _goal_data(**overrides):
    data = {"name": "Vacation", "target_amount": 2000, "deadline": datetime(2025, 6, 1)}
    data.update(overrides)
    return data


def test_create_and_list_transactions_newest_first(db, user):
    repo.create_transaction(db, user.id, _txn_data())
    repo.create_transaction(db, user.id, _txn_data(occurred_at=datetime(2024, 5, 12), amount=10))

    rows = repo.list_transactions(db, user.id)
    assert [t.amount for t in rows] == [10, 42.5]
    assert rows[0].currency == "USD"
    assert rows[0].tags == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"kind": "transfer"},
        {"amount": 0},
        {"category": ""},
        {"occurred_at": None},
        {"tax": -1},
        {"currency": "EURO"},
        {"is_recurring": True},
        {"is_recurring": True, "recurrence_frequency": "hourly"},
        {"is_recurring": True, "recurrence_frequency": "daily", "recurrence_count": 0},
        {"goal_id": 999},
    ],
)
def test_invalid_transactions_are_rejected(db, user, overrides):
    with pytest.raises(ValidationError):
        repo.create_transaction(db, user.id, _txn_data(**overrides))


def test_transactions_are_owner_scoped(db, user, other_user):
    txn = repo.create_transaction(db, user.id, _txn_data())

    with pytest.raises(NotFoundError):
        repo.get_transaction(db, other_user.id, txn.id)
    with pytest.raises(NotFoundError):
        repo.delete_transaction(db, other_user.id, txn.id)
    assert repo.list_transactions(db, other_user.id) == []


def test_update_transaction_records_history(db, user):
    txn = repo.create_transaction(db, user.id, _txn_data())

    updated = repo.update_transaction(db, user.id, txn.id, {"amount": 50.0, "category": " Dining "})
    assert updated.amount == 50.0
    assert updated.category == "Dining"
    assert len(updated.edits) == 1
    edit = updated.edits[0]
    assert edit.changes["amount"] == {"from": 42.5, "to": 50.0}
    assert edit.previous_values == {"amount": 42.5, "category": "Food"}

    # no-op updates leave no trace
    repo.update_transaction(db, user.id, txn.id, {"amount": 50.0})
    assert len(txn.edits) == 1

    with pytest.raises(ValidationError):
        repo.update_transaction(db, user.id, txn.id, {"amount": -3})


def test_delete_transaction_removes_its_series(db, user):
    txn = repo.create_transaction(
        db, user.id, _txn_data(is_recurring=True, recurrence_frequency="daily", recurrence_count=2)
    )
    db.add(RecurringJob(owner_id=user.id, template_id=txn.id, frequency="daily", anchor_at=txn.occurred_at))
    db.commit()

    repo.delete_transaction(db, user.id, txn.id)
    assert db.query(Transaction).count() == 0
    assert db.query(RecurringJob).count() == 0


def test_budget_duplicate_category_period_is_rejected(db, user, other_user):
    repo.create_budget(db, user.id, {"category": "Food", "amount": 200, "period": "monthly"})

    with pytest.raises(DuplicateError) as exc:
        repo.create_budget(db, user.id, {"category": "Food", "amount": 300, "period": "monthly"})
    assert exc.value.message == "Budget already exists for Food (monthly)"

    repo.create_budget(db, user.id, {"category": "Food", "amount": 50, "period": "weekly"})
    repo.create_budget(db, other_user.id, {"category": "Food", "amount": 200, "period": "monthly"})
    assert len(repo.list_budgets(db, user.id)) == 2


def test_create_budget_defaults(db, user):
    budget = repo.create_budget(db, user.id, {"category": " Food ", "amount": 200, "period": "monthly"})

    assert budget.category == "Food"
    assert budget.alert_threshold == 0.8
    assert budget.status == "active"
    assert [n.type for n in budget.notifications] == ["created"]

    with pytest.raises(ValidationError):
        repo.create_budget(db, user.id, {"category": "Rent", "amount": 10, "period": "quarterly"})
    with pytest.raises(ValidationError):
        repo.create_budget(db, user.id, {"category": "Rent", "amount": 10})


def test_update_budget_history_and_clash(db, user):
    food = repo.create_budget(db, user.id, {"category": "Food", "amount": 200, "period": "monthly"})
    repo.create_budget(db, user.id, {"category": "Rent", "amount": 900, "period": "monthly"})

    updated = repo.update_budget(db, user.id, food.id, {"amount": 250, "status": "paused"})
    assert updated.amount == 250
    assert updated.edits[0].previous_values == {"amount": 200.0, "status": "active"}
    assert [n.type for n in updated.notifications] == ["created", "updated"]
    assert food.id not in [b.id for b in repo.list_budgets(db, user.id, status="active")]

    with pytest.raises(DuplicateError):
        repo.update_budget(db, user.id, food.id, {"category": "Rent"})


def test_acknowledge_notifications(db, user):
    budget = repo.create_budget(db, user.id, {"category": "Food", "amount": 200, "period": "monthly"})
    repo.update_budget(db, user.id, budget.id, {"amount": 210})

    assert repo.acknowledge_notifications(db, user.id, budget.id) == 2
    assert repo.acknowledge_notifications(db, user.id, budget.id) == 0


def test_budget_transactions_filters_category_and_kind(db, user):
    budget = repo.create_budget(db, user.id, {"category": "Food", "amount": 200, "period": "monthly"})
    repo.create_transaction(db, user.id, _txn_data())
    repo.create_transaction(db, user.id, _txn_data(kind="income"))
    repo.create_transaction(db, user.id, _txn_data(category="Rent"))
    repo.create_transaction(db, user.id, _txn_data(occurred_at=datetime(2024, 4, 1)))

    assert len(repo.budget_transactions(db, user.id, budget)) == 2
    assert len(repo.budget_transactions(db, user.id, budget, since=datetime(2024, 5, 1))) == 1


def test_goal_milestone_above_target_rejected(db, user):
    with pytest.raises(ValidationError):
        repo.create_goal(
            db, user.id,
            _goal_data(target_amount=1000, milestones=[{"amount": 1200, "date": datetime(2025, 1, 1)}]),
            now=NOW,
        )


def test_goal_duplicate_identity(db, user):
    repo.create_goal(db, user.id, _goal_data(), now=NOW)

    with pytest.raises(DuplicateError):
        repo.create_goal(db, user.id, _goal_data(), now=NOW)
    repo.create_goal(db, user.id, _goal_data(target_amount=2500), now=NOW)


def test_goal_amount_operations_reach_milestones(db, user):
    goal = repo.create_goal(
        db, user.id,
        _goal_data(milestones=[{"amount": 500, "date": datetime(2024, 9, 1)}]),
        now=NOW,
    )

    goal = repo.update_goal_amount(db, user.id, goal.id, 600, GoalAmountOperation.ADD)
    assert goal.current_amount == 600
    assert goal.milestones[0].is_completed
    assert len(goal.notifications) == 1

    goal = repo.update_goal_amount(db, user.id, goal.id, 1000, GoalAmountOperation.SUBTRACT)
    assert goal.current_amount == 0

    goal = repo.update_goal_amount(db, user.id, goal.id, 2000, GoalAmountOperation.SET)
    assert goal.is_completed
    assert goal.notifications[-1].message == "Goal 'Vacation' completed"

    with pytest.raises(ValidationError):
        repo.update_goal_amount(db, user.id, goal.id, -5, GoalAmountOperation.ADD)


def test_update_and_toggle_goal(db, user):
    goal = repo.create_goal(db, user.id, _goal_data(), now=NOW)

    goal = repo.update_goal(db, user.id, goal.id, {"name": "Trip", "target_amount": 3000}, now=NOW)
    assert goal.name == "Trip"
    assert goal.target_amount == 3000

    with pytest.raises(ValidationError):
        repo.update_goal(db, user.id, goal.id, {"deadline": datetime(2024, 1, 1)}, now=NOW)

    assert repo.toggle_goal_completion(db, user.id, goal.id).is_completed
    assert not repo.toggle_goal_completion(db, user.id, goal.id).is_completed


def test_delete_goal_unlinks_transactions(db, user):
    goal = repo.create_goal(db, user.id, _goal_data(), now=NOW)
    txn = repo.create_transaction(db, user.id, _txn_data(goal_id=goal.id))

    repo.delete_goal(db, user.id, goal.id)
    db.refresh(txn)
    assert txn.goal_id is None
    assert repo.list_goals(db, user.id) == []


def test_category_prediction_learns_after_repeated_saves(db, user):
    assert repo.predict_category(db, user.id, "Morning coffee") == "Food"
    assert repo.predict_category(db, user.id, "Gift shop") == "Other"

    for _ in range(3):
        repo.save_prediction(db, user.id, "Gift shop", "Gifts")
    assert repo.predict_category(db, user.id, "gift SHOP") == "Gifts"

    with pytest.raises(ValidationError):
        repo.predict_category(db, user.id, "   ")


def test_update_transaction_null_keeps_required_and_clears_optional(db, user):
    goal = repo.create_goal(db, user.id, _goal_data(), now=NOW)
    txn = repo.create_transaction(db, user.id, _txn_data(tags=["market"], tax=1.5, goal_id=goal.id))

    txn = repo.update_transaction(
        db, user.id, txn.id, {"tags": None, "tax": None, "is_recurring": None, "goal_id": None}
    )
    assert txn.tags == ["market"]
    assert txn.tax == 1.5
    assert txn.is_recurring is False
    assert txn.goal_id is None
    assert txn.edits[0].changes == {"goal_id": {"from": goal.id, "to": None}}


@pytest.mark.parametrize("amount", [float("inf"), float("nan")])
def test_non_finite_transaction_amount_is_rejected(db, user, amount):
    with pytest.raises(ValidationError):
        repo.create_transaction(db, user.id, _txn_data(amount=amount))
    with pytest.raises(ValidationError):
        repo.create_transaction(db, user.id, _txn_data(tax=amount))
    assert repo.list_transactions(db, user.id) == []


def test_non_finite_goal_amounts_are_rejected(db, user):
    with pytest.raises(ValidationError):
        repo.create_goal(db, user.id, _goal_data(target_amount=float("nan")), now=NOW)

    goal = repo.create_goal(db, user.id, _goal_data(), now=NOW)
    with pytest.raises(ValidationError):
        repo.update_goal_amount(db, user.id, goal.id, float("nan"), GoalAmountOperation.SET)
    with pytest.raises(ValidationError):
        repo.update_goal(db, user.id, goal.id, {"current_amount": float("inf")}, now=NOW)

    db.refresh(goal)
    assert goal.current_amount == 0


def test_commit_maps_only_unique_violations_to_duplicates(db, user):
    db.add(Budget(owner_id=user.id, category="Food", amount=None, period="monthly"))

    with pytest.raises(ValidationError) as exc:
        repo._commit(db, "Budget already exists")
    assert not isinstance(exc.value, DuplicateError)
    assert exc.value.message == "Invalid data"
    assert repo.list_budgets(db, user.id) == []
