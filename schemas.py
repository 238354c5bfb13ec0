"""Request and response models for the HTTP API."""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from goals import GoalAmountOperation
from settings import DEFAULT_CURRENCY


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Stored timestamps are naive UTC; offsets on the wire are folded in.
Timestamp = Annotated[datetime, AfterValidator(_to_naive_utc)]


class RequestModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    message: str
    details: List[str] = []


# --- Users ---

class RegisterRequest(RequestModel):
    name: str
    email: str
    password: str
    preferred_currency: str = DEFAULT_CURRENCY


class LoginRequest(RequestModel):
    email: str
    password: str


class UserOut(ORMModel):
    id: int
    name: str
    email: str
    preferred_currency: str
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    token: str
    user: UserOut


# --- Transactions ---

class TransactionCreate(RequestModel):
    kind: str = Field(..., description="income or expense")
    category: str
    amount: float
    currency: Optional[str] = None
    occurred_at: Timestamp
    description: Optional[str] = ""
    tags: List[str] = []
    tax: float = 0.0
    goal_id: Optional[int] = None
    is_recurring: bool = False
    recurrence_frequency: Optional[str] = None
    recurrence_end_date: Optional[Timestamp] = None
    recurrence_count: Optional[int] = None


class TransactionUpdate(RequestModel):
    kind: Optional[str] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    occurred_at: Optional[Timestamp] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    tax: Optional[float] = None
    goal_id: Optional[int] = None
    is_recurring: Optional[bool] = None
    recurrence_frequency: Optional[str] = None
    recurrence_end_date: Optional[Timestamp] = None
    recurrence_count: Optional[int] = None


class TransactionOut(ORMModel):
    id: int
    kind: str
    category: str
    amount: float
    currency: str
    occurred_at: datetime
    description: Optional[str] = ""
    tags: List[str] = []
    tax: float = 0.0
    goal_id: Optional[int] = None
    is_recurring: bool = False
    recurrence_frequency: Optional[str] = None
    recurrence_end_date: Optional[datetime] = None
    recurrence_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    original_amount: Optional[float] = None
    original_currency: Optional[str] = None


class EditOut(ORMModel):
    id: int
    edited_at: datetime
    changes: Dict[str, Any]
    previous_values: Dict[str, Any]


# --- Budgets ---

class BudgetCreate(RequestModel):
    category: str
    amount: float
    period: str
    alert_threshold: Optional[float] = None
    description: Optional[str] = ""
    status: Optional[str] = None


class BudgetUpdate(RequestModel):
    category: Optional[str] = None
    amount: Optional[float] = None
    period: Optional[str] = None
    alert_threshold: Optional[float] = None
    description: Optional[str] = None
    status: Optional[str] = None


class BudgetProgressOut(ORMModel):
    budget_id: Optional[int] = None
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


class BudgetOut(ORMModel):
    id: int
    category: str
    amount: float
    period: str
    alert_threshold: float
    description: Optional[str] = ""
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    progress: Optional[BudgetProgressOut] = None


class BudgetSummaryOut(ORMModel):
    total_budgets: int
    total_budget_amount: float
    total_spent: float
    total_remaining: float
    overall_progress: int
    alert_count: int
    over_budget_count: int
    health_score: float


class BudgetAlertOut(ORMModel):
    budget_id: Optional[int] = None
    category: str
    budget_amount: float
    spent: float
    progress: int
    alert_threshold: int
    is_over_budget: bool
    message: str
    severity: str


class NotificationOut(ORMModel):
    id: int
    created_at: Optional[datetime] = None
    type: str
    message: str
    acknowledged: bool


class DailySpend(BaseModel):
    date: str
    amount: float


class BudgetAnalyticsOut(BaseModel):
    budget: BudgetOut
    daily_spending: List[DailySpend]
    history: List[EditOut]
    notifications: List[NotificationOut]


class BudgetSpendingOut(BaseModel):
    progress: BudgetProgressOut
    transactions: List[TransactionOut]


class AcknowledgeResponse(BaseModel):
    acknowledged: int


# --- Goals ---

class MilestoneIn(RequestModel):
    amount: float
    date: Timestamp
    is_completed: bool = False


class MilestoneOut(ORMModel):
    id: int
    amount: float
    date: datetime
    is_completed: bool


class GoalCreate(RequestModel):
    name: str = Field(..., max_length=100)
    target_amount: float
    deadline: Timestamp
    currency: Optional[str] = None
    milestones: List[MilestoneIn] = []


class GoalUpdate(RequestModel):
    name: Optional[str] = Field(None, max_length=100)
    target_amount: Optional[float] = None
    current_amount: Optional[float] = None
    deadline: Optional[Timestamp] = None
    currency: Optional[str] = None
    milestones: Optional[List[MilestoneIn]] = None
    is_completed: Optional[bool] = None


class GoalAmountRequest(RequestModel):
    amount: float = Field(..., ge=0)
    operation: GoalAmountOperation = GoalAmountOperation.ADD


class GoalProgressOut(ORMModel):
    progress_percentage: float
    remaining: float
    days_remaining: int
    months_remaining: int
    required_monthly: float
    milestones_completed: int
    milestones_total: int


class GoalOut(ORMModel):
    id: int
    name: str
    target_amount: float
    current_amount: float
    deadline: datetime
    currency: str
    is_completed: bool
    created_at: Optional[datetime] = None
    milestones: List[MilestoneOut] = []
    progress: Optional[GoalProgressOut] = None


# --- Recurring series ---

class RecurringSeriesOut(ORMModel):
    id: int
    template_id: int
    frequency: str
    anchor_at: datetime
    end_at: Optional[datetime] = None
    max_count: Optional[int] = None
    occurrences: int
    next_run_at: Optional[datetime] = None
    state: str
    last_error: Optional[str] = None


# --- Predictions and insights ---

class PredictRequest(RequestModel):
    description: str


class PredictResponse(BaseModel):
    category: str


class SavePredictionRequest(RequestModel):
    description: str
    category: str


class PredictionOut(ORMModel):
    description: str
    category: str
    frequency: int


class RecommendationOut(BaseModel):
    type: str
    category: str
    message: str
    savings: float
    priority: str


class MonthlyTotal(BaseModel):
    month: str
    amount: float


class InsightsOut(BaseModel):
    highlights: Dict[str, Any]
    category_totals: Dict[str, float]
    monthly_income: List[MonthlyTotal]
    monthly_expenses: List[MonthlyTotal]
