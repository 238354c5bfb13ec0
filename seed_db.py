import logging
from datetime import timedelta

from auth import register_user
from database import SessionLocal, User, init_db
from repositories import create_budget, create_goal
from settings import configure_logging, utc_now

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo123"


def seed_users():
    init_db()
    db = SessionLocal()
    try:
        # Check if users exist
        if db.query(User).first():
            logger.info("Users already exist. Skipping seed.")
            return

        demo = register_user(db, "Demo User", DEMO_EMAIL, DEMO_PASSWORD)
        create_budget(db, demo.id, {"category": "Food", "amount": 400, "period": "monthly"})
        create_budget(db, demo.id, {"category": "Transportation", "amount": 60, "period": "weekly"})
        create_goal(db, demo.id, {
            "name": "Emergency fund",
            "target_amount": 5000,
            "deadline": utc_now() + timedelta(days=365),
            "milestones": [{"amount": 2500, "date": utc_now() + timedelta(days=180)}],
        })
        logger.info("Database initialized with demo user %s", DEMO_EMAIL)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    seed_users()
