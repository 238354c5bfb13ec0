"""FastAPI server exposing the finance tracker over a JSON API."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

import repositories as repo
import scheduler
from auth import authenticate, create_token, decode_token, get_user, register_user
from budgets import (
    aggregate_across_budgets,
    budget_alerts,
    compute_progress,
    period_window,
    transactions_frame,
    validate_budget_fields,
)
from currency import ExchangeRateAPI, convert_transactions
from database import User, get_db, init_db
from errors import AuthenticationError, FinanceError, NotFoundError
from goals import goal_progress
from insights import category_totals, compute_highlights, daily_spending, monthly_totals, recommendations
from schemas import (
    AcknowledgeResponse,
    BudgetAlertOut,
    BudgetAnalyticsOut,
    BudgetCreate,
    BudgetOut,
    BudgetProgressOut,
    BudgetSpendingOut,
    BudgetSummaryOut,
    BudgetUpdate,
    EditOut,
    GoalAmountRequest,
    GoalCreate,
    GoalOut,
    GoalProgressOut,
    GoalUpdate,
    InsightsOut,
    LoginRequest,
    NotificationOut,
    PredictionOut,
    PredictRequest,
    PredictResponse,
    RecommendationOut,
    RecurringSeriesOut,
    RegisterRequest,
    SavePredictionRequest,
    TokenResponse,
    TransactionCreate,
    TransactionOut,
    TransactionUpdate,
    UserOut,
)
from settings import CORS_ORIGINS, configure_logging, utc_now

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Personal Finance Tracker API", version="0.2.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FinanceError)
async def finance_error_handler(_request: Request, exc: FinanceError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "details": exc.details})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError):
    details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=400, content={"message": "Invalid request", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error", "details": []})


# --- Dependencies ---

bearer = HTTPBearer(auto_error=False)
_exchange_api: Optional[ExchangeRateAPI] = None


def get_now() -> datetime:
    return utc_now()


def get_exchange_api() -> Optional[ExchangeRateAPI]:
    global _exchange_api
    if _exchange_api is None:
        _exchange_api = ExchangeRateAPI()
    return _exchange_api


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise AuthenticationError("No token, authorization denied")
    user_id = decode_token(credentials.credentials)
    try:
        return get_user(db, user_id)
    except NotFoundError as exc:
        raise AuthenticationError("Token is not valid") from exc


def _budget_out(budget, transactions, now: datetime) -> BudgetOut:
    out = BudgetOut.model_validate(budget)
    out.progress = BudgetProgressOut.model_validate(compute_progress(budget, transactions, now))
    return out


def _goal_out(goal, now: datetime) -> GoalOut:
    out = GoalOut.model_validate(goal)
    out.progress = GoalProgressOut.model_validate(goal_progress(goal, now))
    return out


# --- Auth ---

@app.post("/api/auth/register", response_model=TokenResponse, status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    user = register_user(db, req.name, req.email, req.password, req.preferred_currency)
    return TokenResponse(token=create_token(user.id), user=UserOut.model_validate(user))


@app.post("/api/auth/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, req.email, req.password)
    return TokenResponse(token=create_token(user.id), user=UserOut.model_validate(user))


@app.get("/api/users/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


# --- Transactions ---

@app.get("/api/transactions", response_model=List[TransactionOut])
def list_transactions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    api: Optional[ExchangeRateAPI] = Depends(get_exchange_api),
):
    rows = [TransactionOut.model_validate(t).model_dump() for t in repo.list_transactions(db, user.id)]
    return convert_transactions(rows, user.preferred_currency, api)


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(req: TransactionCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    txn = repo.create_transaction(db, user.id, req.model_dump())
    if txn.is_recurring:
        try:
            scheduler.start_series(db, txn)
        except FinanceError as exc:
            # The template is kept even when its series cannot be scheduled.
            logger.warning("Could not schedule recurring transaction %s: %s", txn.id, exc.message)
    return txn


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    req: TransactionUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return repo.update_transaction(db, user.id, transaction_id, req.model_dump(exclude_unset=True))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(transaction_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repo.delete_transaction(db, user.id, transaction_id)
    return {"message": "Transaction deleted successfully"}


@app.get("/api/transactions/{transaction_id}/history", response_model=List[EditOut])
def transaction_history(transaction_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return repo.get_transaction(db, user.id, transaction_id).edits


# --- Budgets ---

@app.get("/api/budgets/summary", response_model=BudgetSummaryOut)
def budget_summary(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budgets = repo.list_budgets(db, user.id, status="active")
    return aggregate_across_budgets(budgets, repo.list_transactions(db, user.id), now)


@app.get("/api/budgets/alerts", response_model=List[BudgetAlertOut])
def list_budget_alerts(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budgets = repo.list_budgets(db, user.id, status="active")
    return budget_alerts(budgets, repo.list_transactions(db, user.id), now)


@app.get("/api/budgets", response_model=List[BudgetOut])
def list_budgets(
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    df = transactions_frame(repo.list_transactions(db, user.id))
    return [_budget_out(b, df, now) for b in repo.list_budgets(db, user.id, status)]


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    req: BudgetCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budget = repo.create_budget(db, user.id, req.model_dump())
    return _budget_out(budget, repo.list_transactions(db, user.id), now)


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    req: BudgetUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budget = repo.update_budget(db, user.id, budget_id, req.model_dump(exclude_unset=True))
    return _budget_out(budget, repo.list_transactions(db, user.id), now)


@app.delete("/api/budgets/{budget_id}")
def delete_budget(budget_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repo.delete_budget(db, user.id, budget_id)
    return {"message": "Budget deleted successfully"}


@app.get("/api/budgets/{budget_id}/analytics", response_model=BudgetAnalyticsOut)
def budget_analytics(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budget = repo.get_budget(db, user.id, budget_id)
    transactions = repo.budget_transactions(db, user.id, budget)
    out = _budget_out(budget, transactions, now)
    return BudgetAnalyticsOut(
        budget=out,
        daily_spending=daily_spending(
            transactions, budget.category, out.progress.window_start, out.progress.window_end
        ),
        history=[EditOut.model_validate(e) for e in budget.edits],
        notifications=[NotificationOut.model_validate(n) for n in budget.notifications],
    )


@app.get("/api/budgets/{budget_id}/spending", response_model=BudgetSpendingOut)
def budget_spending(
    budget_id: int,
    period: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budget = repo.get_budget(db, user.id, budget_id)
    validate_budget_fields(period=period)
    window = {
        "id": budget.id,
        "category": budget.category,
        "amount": budget.amount,
        "period": period or budget.period,
        "alert_threshold": budget.alert_threshold,
    }
    start, end = period_window(window["period"], now)
    in_window = [
        t for t in repo.budget_transactions(db, user.id, budget, since=start)
        if t.occurred_at <= end
    ]
    progress = compute_progress(window, in_window, now)
    return BudgetSpendingOut(
        progress=BudgetProgressOut.model_validate(progress),
        transactions=[TransactionOut.model_validate(t) for t in in_window],
    )


@app.post("/api/budgets/{budget_id}/notifications/acknowledge", response_model=AcknowledgeResponse)
def acknowledge_budget_notifications(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return AcknowledgeResponse(acknowledged=repo.acknowledge_notifications(db, user.id, budget_id))


# --- Goals ---

@app.get("/api/goals", response_model=List[GoalOut])
def list_goals(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return [_goal_out(g, now) for g in repo.list_goals(db, user.id)]


@app.post("/api/goals", response_model=GoalOut, status_code=201)
def create_goal(
    req: GoalCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return _goal_out(repo.create_goal(db, user.id, req.model_dump(), now=now), now)


@app.put("/api/goals/{goal_id}", response_model=GoalOut)
def update_goal(
    goal_id: int,
    req: GoalUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    goal = repo.update_goal(db, user.id, goal_id, req.model_dump(exclude_unset=True), now=now)
    return _goal_out(goal, now)


@app.patch("/api/goals/{goal_id}/amount", response_model=GoalOut)
def update_goal_amount(
    goal_id: int,
    req: GoalAmountRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return _goal_out(repo.update_goal_amount(db, user.id, goal_id, req.amount, req.operation), now)


@app.patch("/api/goals/{goal_id}/toggle", response_model=GoalOut)
def toggle_goal(
    goal_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    return _goal_out(repo.toggle_goal_completion(db, user.id, goal_id), now)


@app.delete("/api/goals/{goal_id}")
def delete_goal(goal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repo.delete_goal(db, user.id, goal_id)
    return {"message": "Goal deleted successfully"}


# --- Recurring series ---

@app.get("/api/recurring", response_model=List[RecurringSeriesOut])
def list_recurring(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return scheduler.list_series(db, user.id)


@app.delete("/api/recurring/{job_id}", response_model=RecurringSeriesOut)
def cancel_recurring(job_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return scheduler.cancel_series(db, job_id, user.id)


# --- Predictions and insights ---

@app.post("/api/predict-category", response_model=PredictResponse)
def predict_category(req: PredictRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return PredictResponse(category=repo.predict_category(db, user.id, req.description))


@app.post("/api/save-prediction", response_model=PredictionOut)
def save_prediction(
    req: SavePredictionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return repo.save_prediction(db, user.id, req.description, req.category)


@app.get("/api/recommendations", response_model=List[RecommendationOut])
def list_recommendations(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    budgets = repo.list_budgets(db, user.id, status="active")
    return recommendations(budgets, repo.list_transactions(db, user.id), now)


@app.get("/api/insights", response_model=InsightsOut)
def insights(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    df = transactions_frame(repo.list_transactions(db, user.id))
    return InsightsOut(
        highlights=compute_highlights(df),
        category_totals=category_totals(df),
        monthly_income=monthly_totals(df, "income"),
        monthly_expenses=monthly_totals(df, "expense"),
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api:app", host="0.0.0.0", port=8000, reload=True)
