"""Registration, login and password reset."""
import logging
import secrets
from datetime import timedelta
from typing import Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.security import (
    create_access_token,
    dummy_verify,
    hash_password,
    hash_reset_token,
    verify_password,
)
from app.billing.timeutils import now_utc
from app.errors import DuplicateEmail, Forbidden, InvalidCredentials, InvalidOrExpiredToken
from app.models.user import Role, User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_by_email(db: Session, email: str):
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def register(db: Session, email: str, password: str, name: str, notifier=None) -> Tuple[User, str]:
    email = normalize_email(email)
    if find_by_email(db, email) is not None:
        raise DuplicateEmail("User already exists", details={"email": email})

    user = User(
        email=email,
        name=name.strip(),
        hashed_password=hash_password(password),
        role=Role.USER.value,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEmail("User already exists", details={"email": email})
    db.refresh(user)
    logger.info(f"Registered user {user.id}")

    if notifier is not None:
        notifier.send_welcome(user)
    return user, create_access_token(user.id, user.role)


def login(db: Session, email: str, password: str) -> Tuple[User, str]:
    user = find_by_email(db, email)
    if user is None:
        dummy_verify()
        raise InvalidCredentials("Invalid credentials")
    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials("Invalid credentials")
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user, create_access_token(user.id, user.role)


def issue_reset_token(db: Session, user: User, expires_minutes: int) -> str:
    """Store only the digest; the raw token goes out by mail and nowhere else."""
    token = secrets.token_hex(20)
    user.reset_password_token = hash_reset_token(token)
    user.reset_password_expires_at = now_utc() + timedelta(minutes=expires_minutes)
    db.commit()
    return token


def forgot_password(db: Session, email: str, notifier, client_url: str, expires_minutes: int) -> None:
    user = find_by_email(db, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return
    token = issue_reset_token(db, user, expires_minutes)
    reset_url = f"{client_url.rstrip('/')}/resetpassword/{token}"
    if not notifier.send_password_reset(user, reset_url, expires_minutes):
        logger.warning(f"Password reset email for user {user.id} was not delivered")


def reset_password(db: Session, token: str, new_password: str) -> Tuple[User, str]:
    digest = hash_reset_token(token)
    user = db.execute(
        select(User).where(User.reset_password_token == digest)
    ).scalar_one_or_none()

    expires_at = user.reset_password_expires_at if user else None
    if expires_at is not None and expires_at.tzinfo is None:
        # SQLite drops tzinfo; stored values are UTC
        expires_at = expires_at.replace(tzinfo=now_utc().tzinfo)
    if user is None or expires_at is None or expires_at <= now_utc():
        raise InvalidOrExpiredToken("Invalid or expired token")

    user.hashed_password = hash_password(new_password)
    user.reset_password_token = None
    user.reset_password_expires_at = None
    db.commit()
    logger.info(f"Password reset for user {user.id}")
    return user, create_access_token(user.id, user.role)
