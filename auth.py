"""User registration, password checks and bearer tokens."""

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy.orm import Session

from database import User
from errors import AuthenticationError, DuplicateError, NotFoundError, ValidationError
from settings import (
    DEFAULT_CURRENCY,
    JWT_ALGORITHM,
    JWT_SECRET,
    MIN_PASSWORD_LENGTH,
    TOKEN_TTL_HOURS,
    normalize_currency,
)

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def register_user(db: Session, name: str, email: str, password: str,
                  preferred_currency: str = DEFAULT_CURRENCY) -> User:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise ValidationError("Please provide name, email, and password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if db.query(User).filter(User.email == email).first():
        raise DuplicateError("User already exists with this email")
    try:
        preferred_currency = normalize_currency(preferred_currency or DEFAULT_CURRENCY)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        preferred_currency=preferred_currency,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    if not email or not password:
        raise ValidationError("Please provide email and password")
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    return user


def create_token(user_id: int, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "user": {"id": user_id},
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_TTL_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> int:
    """Return the user id carried by ``token``."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Token is not valid") from exc

    try:
        return int(payload["user"]["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError("Token is not valid") from exc


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user
