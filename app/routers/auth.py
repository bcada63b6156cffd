from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import service as auth_service
from app.auth.security import get_current_user, oauth2_scheme
from app.config import settings
from app.database import get_db
from app.models.schemas import ForgotPassword, ResetPassword, Token, UserCreate, UserLogin, UserOut
from app.models.user import User
from app.rate_limit import AUTH_RATE_LIMIT, limiter
from app.services.container import Services, get_services

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/register", response_model=Token, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
def register(
    request: Request,
    payload: UserCreate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    user, token = auth_service.register(
        db, payload.email, payload.password, payload.name, notifier=services.notifier
    )
    return {"access_token": token, "user": user}


@router.post("/login", response_model=Token)
@limiter.limit(AUTH_RATE_LIMIT)
def login(request: Request, payload: UserLogin, db: Session = Depends(get_db)):
    user, token = auth_service.login(db, payload.email, payload.password)
    return {"access_token": token, "user": user}


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    """Current user with subscription summary"""
    return current_user


@router.get("/logout")
def logout(
    current_user: User = Depends(get_current_user),
    token: Optional[str] = Depends(oauth2_scheme),
    services: Services = Depends(get_services),
):
    """Logout user and blacklist current token"""
    if not services.token_store.blacklist_token(token, settings.access_token_expire_minutes):
        return {
            "ok": True,
            "message": "Logged out (client-side only)",
            "warning": "Server-side token invalidation unavailable",
        }
    return {"ok": True, "message": "Successfully logged out", "user_id": current_user.id}


@router.post("/forgotpassword")
@limiter.limit(AUTH_RATE_LIMIT)
def forgot_password(
    request: Request,
    payload: ForgotPassword,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    auth_service.forgot_password(
        db,
        payload.email,
        notifier=services.notifier,
        client_url=settings.client_url,
        expires_minutes=settings.reset_token_expire_minutes,
    )
    return {"ok": True, "message": "If that email is registered, a reset link has been sent"}


@router.put("/resetpassword/{token}", response_model=Token)
@limiter.limit(AUTH_RATE_LIMIT)
def reset_password(request: Request, token: str, payload: ResetPassword, db: Session = Depends(get_db)):
    user, access_token = auth_service.reset_password(db, token, payload.password)
    return {"access_token": access_token, "user": user}
