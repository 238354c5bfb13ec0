from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from settings import DATABASE_URL, DEFAULT_ALERT_THRESHOLD, DEFAULT_CURRENCY, utc_now


def make_engine(url: str):
    """Build an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# --- Models ---

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)  # bcrypt hash, never plain text
    preferred_currency = Column(String(3), default=DEFAULT_CURRENCY)
    created_at = Column(DateTime, default=utc_now)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    kind = Column(String, nullable=False)  # 'income' or 'expense'
    category = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default=DEFAULT_CURRENCY)
    occurred_at = Column(DateTime, nullable=False, index=True)
    description = Column(String, default="")
    tags = Column(JSON, default=list)
    tax = Column(Float, default=0.0)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)

    # Recurrence metadata (only meaningful on templates)
    is_recurring = Column(Boolean, default=False)
    recurrence_frequency = Column(String, nullable=True)
    recurrence_end_date = Column(DateTime, nullable=True)
    recurrence_count = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    edits = relationship(
        "TransactionEdit",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionEdit.id",
    )


class TransactionEdit(Base):
    """Append-only edit log owned by a transaction."""

    __tablename__ = "transaction_edits"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    edited_at = Column(DateTime, default=utc_now)
    changes = Column(JSON, default=dict)
    previous_values = Column(JSON, default=dict)

    transaction = relationship("Transaction", back_populates="edits")


class Budget(Base):
    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("owner_id", "category", "period", name="uq_budgets_owner_category_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    category = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    period = Column(String, nullable=False)  # daily / weekly / monthly / yearly
    alert_threshold = Column(Float, default=DEFAULT_ALERT_THRESHOLD)
    description = Column(String, default="")
    status = Column(String, default="active")  # active / paused / archived
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    edits = relationship(
        "BudgetEdit",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetEdit.id",
    )
    notifications = relationship(
        "BudgetNotification",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetNotification.id",
    )


class BudgetEdit(Base):
    __tablename__ = "budget_edits"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False)
    edited_at = Column(DateTime, default=utc_now)
    changes = Column(JSON, default=dict)
    previous_values = Column(JSON, default=dict)

    budget = relationship("Budget", back_populates="edits")


class BudgetNotification(Base):
    __tablename__ = "budget_notifications"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utc_now)
    type = Column(String, nullable=False)  # threshold / overspend / created / updated
    message = Column(String, default="")
    acknowledged = Column(Boolean, default=False)

    budget = relationship("Budget", back_populates="notifications")


class Goal(Base):
    __tablename__ = "goals"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", "target_amount", "deadline", name="uq_goals_identity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String(100), nullable=False)
    target_amount = Column(Float, nullable=False)
    current_amount = Column(Float, default=0.0)
    deadline = Column(DateTime, nullable=False)
    currency = Column(String(3), default=DEFAULT_CURRENCY)
    is_completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utc_now)

    milestones = relationship(
        "Milestone",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="Milestone.position",
    )
    notifications = relationship(
        "GoalNotification",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="GoalNotification.id",
    )


class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, default=0)
    amount = Column(Float, nullable=False)
    date = Column(DateTime, nullable=False)
    is_completed = Column(Boolean, default=False)

    goal = relationship("Goal", back_populates="milestones")


class GoalNotification(Base):
    __tablename__ = "goal_notifications"

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utc_now)
    message = Column(String, default="")

    goal = relationship("Goal", back_populates="notifications")


class CategoryPrediction(Base):
    __tablename__ = "category_predictions"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    description = Column(String, nullable=False)  # stored lowercased
    category = Column(String, nullable=False)
    frequency = Column(Integer, default=1)


class RecurringJob(Base):
    """Job table for recurring series; the scheduler is its only writer."""

    __tablename__ = "recurring_jobs"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    template_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    frequency = Column(String, nullable=False)
    anchor_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=True)
    max_count = Column(Integer, nullable=True)
    occurrences = Column(Integer, default=0)
    next_run_at = Column(DateTime, nullable=True, index=True)
    state = Column(String, default="scheduled", index=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    template = relationship("Transaction")

# --- Init DB ---
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
