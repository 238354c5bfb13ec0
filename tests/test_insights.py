from datetime import datetime

import pytest

from insights import category_totals, compute_highlights, daily_spending, monthly_totals, recommendations

NOW = datetime(2024, 5, 15, 12, 0)


def _txn(amount, category="Food", kind="expense", when=datetime(2024, 5, 10)):
    return {"category": category, "kind": kind, "amount": amount, "occurred_at": when}


TRANSACTIONS = [
    _txn(3000, "Salary", "income", datetime(2024, 4, 1)),
    _txn(3000, "Salary", "income", datetime(2024, 5, 1)),
    _txn(120, "Food", when=datetime(2024, 4, 20)),
    _txn(90, "Food", when=datetime(2024, 5, 3)),
    _txn(95, "Food", when=datetime(2024, 5, 3, 18, 0)),
    _txn(900, "Rent", when=datetime(2024, 5, 1)),
]


def test_category_totals_are_signed():
    totals = category_totals(TRANSACTIONS)

    assert totals == {"Salary": 6000.0, "Food": -305.0, "Rent": -900.0}
    assert category_totals([]) == {}


def test_monthly_totals():
    assert monthly_totals(TRANSACTIONS, "expense") == [
        {"month": "2024-04", "amount": 120.0},
        {"month": "2024-05", "amount": 1085.0},
    ]
    assert monthly_totals(TRANSACTIONS, "income")[-1] == {"month": "2024-05", "amount": 3000.0}
    assert monthly_totals([], "income") == []


def test_highlights_cover_latest_month():
    highlights = compute_highlights(TRANSACTIONS)

    assert highlights["month"] == "2024-05"
    assert highlights["income"] == 3000
    assert highlights["spend"] == 1085
    assert highlights["net"] == 1915
    assert highlights["top_category"] == "Rent"
    assert compute_highlights([]) == {}


def test_daily_spending_groups_by_day():
    assert daily_spending(TRANSACTIONS, "Food", datetime(2024, 5, 1), NOW) == [
        {"date": "2024-05-03", "amount": 185.0},
    ]


def test_recommendations_flag_over_and_near_budgets():
    budgets = [
        {"id": 1, "category": "Rent", "amount": 800, "period": "monthly", "alert_threshold": 0.8},
        {"id": 2, "category": "Food", "amount": 200, "period": "monthly", "alert_threshold": 0.8},
        {"id": 3, "category": "Fun", "amount": 100, "period": "monthly", "alert_threshold": 0.8},
    ]
    result = {r["category"]: r for r in recommendations(budgets, TRANSACTIONS, NOW)}

    assert set(result) == {"Rent", "Food"}
    assert result["Rent"]["type"] == "over_budget"
    assert result["Rent"]["savings"] == 100
    assert result["Rent"]["priority"] == "high"
    assert result["Food"]["type"] == "high_spending"
    assert result["Food"]["savings"] == pytest.approx(18.5)
