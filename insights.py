import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from budgets import compute_progress, transactions_frame

HIGH_SPENDING_RATIO = 0.9


def category_totals(transactions) -> Dict[str, float]:
    """Net amount per category: income counts up, expenses count down."""
    df = transactions_frame(transactions)
    if df.empty:
        return {}
    signed = df["Amount"].where(df["Kind"] == "income", -df["Amount"])
    return {cat: float(total) for cat, total in signed.groupby(df["Category"]).sum().items()}


def monthly_totals(transactions, kind: str) -> List[dict]:
    """``[{"month": "YYYY-MM", "amount": ...}]`` for one kind, oldest month first."""
    df = transactions_frame(transactions)
    df = df[df["Kind"] == kind]
    if df.empty:
        return []
    by_month = df.groupby(df["OccurredAt"].dt.to_period("M").astype(str))["Amount"].sum().sort_index()
    return [{"month": month, "amount": float(amount)} for month, amount in by_month.items()]


def compute_highlights(transactions):
    """Summarize the latest month of data for quick highlights."""

    df = transactions_frame(transactions)
    if df.empty:
        return {}

    df = df.assign(Month=df["OccurredAt"].dt.to_period("M").astype(str))
    latest_month = df["Month"].max()
    month_df = df[df["Month"] == latest_month]

    income = month_df[month_df["Kind"] == "income"]["Amount"].sum()
    expense_rows = month_df[month_df["Kind"] == "expense"]
    expenses = expense_rows["Amount"].sum()

    top_category = None
    top_category_spend = 0
    if not expense_rows.empty:
        by_cat = expense_rows.groupby("Category")["Amount"].sum().sort_values(ascending=False)
        top_category = by_cat.index[0]
        top_category_spend = by_cat.iloc[0]

    return {
        "month": latest_month,
        "income": float(income),
        "spend": float(expenses),
        "net": float(income - expenses),
        "savings_rate": float((income - expenses) / income * 100) if income > 0 else 0.0,
        "top_category": top_category,
        "top_category_spend": float(top_category_spend),
        "avg_ticket": float(expense_rows["Amount"].mean()) if not expense_rows.empty else 0.0,
    }


def recommendations(budgets: Iterable, transactions, now: Optional[datetime] = None) -> List[dict]:
    """
    Savings suggestions for budgets that are over, or close to, their cap
    in the current period.
    """
    df = transactions_frame(transactions)
    suggestions = []
    for budget in budgets or []:
        result = compute_progress(budget, df, now)
        if result.is_over_budget:
            excess = result.spent - result.budget_amount
            suggestions.append({
                "type": "over_budget",
                "category": result.category,
                "message": (
                    f"You're over budget on {result.category}! "
                    f"Consider reducing spending by {math.ceil(excess / result.spent * 100)}%."
                ),
                "savings": float(excess),
                "priority": "high",
            })
        elif result.progress > HIGH_SPENDING_RATIO:
            suggestions.append({
                "type": "high_spending",
                "category": result.category,
                "message": (
                    f"You've used {round(result.progress * 100)}% of your {result.category} budget. "
                    "Reduce spending by 10% to stay within budget."
                ),
                "savings": float(result.spent * 0.1),
                "priority": "medium",
            })
    return suggestions


def daily_spending(transactions, category: str, start: datetime, end: datetime) -> List[dict]:
    """Per-day expense totals for one category between ``start`` and ``end``."""
    df = transactions_frame(transactions)
    mask = (
        (df["Kind"] == "expense")
        & (df["Category"] == category)
        & (df["OccurredAt"] >= pd.Timestamp(start))
        & (df["OccurredAt"] <= pd.Timestamp(end))
    )
    df = df[mask]
    if df.empty:
        return []
    by_day = df.groupby(df["OccurredAt"].dt.strftime("%Y-%m-%d"))["Amount"].sum().sort_index()
    return [{"date": day, "amount": float(amount)} for day, amount in by_day.items()]
