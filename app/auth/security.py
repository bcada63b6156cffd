import hashlib
from dataclasses import dataclass
from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.errors import Forbidden, Unauthorized
from app.models.user import Role, User
from app.services.container import Services, get_services

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(password: str):
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str):
    return pwd_context.verify(plain_password, hashed_password)

def dummy_verify():
    """Spend the same time as a real check so unknown emails are not distinguishable."""
    pwd_context.dummy_verify()

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

# auto_error=False so a missing header is reported as Unauthorized by us, not by FastAPI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role


def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    """Create JWT with issued at timestamp"""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    to_encode = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "iat": now,  # Add issued at timestamp
        "nbf": now   # Not before timestamp
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def decode_access_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = int(payload.get("sub"))
        role = Role(payload.get("role"))
    except JWTError:
        raise Forbidden("Invalid or expired token")
    except (TypeError, ValueError):
        raise Forbidden("Invalid token payload")
    return Principal(user_id=user_id, role=role)

def authenticate(token: Optional[str], token_store=None) -> Principal:
    if not token:
        raise Unauthorized("Not authorized to access this route")
    if token_store is not None and token_store.is_token_blacklisted(token):
        raise Forbidden("Token has been invalidated")
    return decode_access_token(token)

def has_role(role, *allowed) -> bool:
    """Admins pass every gate; everyone else must hold one of ``allowed``."""
    role = Role(role)
    return role == Role.ADMIN or role in {Role(r) for r in allowed}


def get_current_user(
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
    services: Services = Depends(get_services),
) -> User:
    """Get current authenticated user from JWT token with blacklist check"""
    principal = authenticate(token, services.token_store)

    # Load user
    user = db.get(User, principal.user_id)
    if not user:
        raise Forbidden("User no longer exists")
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user

def require_role(*roles):
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_role(current_user.role, *roles):
            raise Forbidden(f"User role {current_user.role} is not authorized to access this route")
        return current_user
    return checker

require_admin = require_role(Role.ADMIN)
