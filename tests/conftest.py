import os
import time
from datetime import datetime

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import api
from auth import create_token, register_user
from database import get_db, init_db, make_engine

# Wednesday; the weekly window opens on Sunday 2024-05-12.
NOW = datetime(2024, 5, 15, 12, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db():
    engine = make_engine("sqlite://")
    init_db(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def user(db):
    return register_user(db, "Alex", "alex@example.com", "secret1")


@pytest.fixture
def other_user(db):
    return register_user(db, "Sam", "sam@example.com", "secret2")


@pytest.fixture
def client(db):
    api.app.dependency_overrides[get_db] = lambda: db
    api.app.dependency_overrides[api.get_now] = lambda: NOW
    api.app.dependency_overrides[api.get_exchange_api] = lambda: None
    try:
        yield TestClient(api.app)
    finally:
        api.app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_token(user.id)}"}


@pytest.fixture
def far_west_tz(monkeypatch):
    """Run with a local clock twelve hours behind UTC."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    monkeypatch.setenv("TZ", "Etc/GMT+12")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
