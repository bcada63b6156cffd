import re
from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List, Dict, Any


def _check_password_strength(password: str) -> str:
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one number")
    return password


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_password_strength(v)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "alice@example.com",
                "name": "Alice",
                "password": "Passw0rd",
            }
        }

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class ForgotPassword(BaseModel):
    email: EmailStr

class ResetPassword(BaseModel):
    password: str

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_password_strength(v)

class SubscriptionOut(BaseModel):
    plan_id: str
    images_limit: int
    images_generated: int
    images_remaining: int
    active: bool
    payment_ref: Optional[str]
    started_at: Optional[datetime]

    class Config:
        from_attributes = True

class UserOut(BaseModel):
    id: int
    email: str
    name: str
    role: str
    is_active: bool
    created_at: datetime
    subscription: Optional[SubscriptionOut] = None

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut

class CreateSession(BaseModel):
    plan_id: str

class AdminAddSubscription(BaseModel):
    user_id: int
    plan_id: str
    additional_images: int = Field(0, ge=0)

class Pagination(BaseModel):
    page: int
    limit: int
    total_pages: int
    total: int

class ImageJobOut(BaseModel):
    id: int
    user_id: int
    name: str
    prompt: Optional[str]
    source_url: str
    result_url: Optional[str]
    status: str
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True

class ImageJobPage(BaseModel):
    count: int
    pagination: Pagination
    data: List[ImageJobOut]

class SubscriptionAdminOut(SubscriptionOut):
    user_id: int

class SubscriptionPage(BaseModel):
    count: int
    pagination: Pagination
    data: List[SubscriptionAdminOut]

class DeleteResult(BaseModel):
    message: str
    warnings: List[str] = []

class TicketCreate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)

class TicketReply(BaseModel):
    message: str = Field(..., min_length=1)

class MessageOut(BaseModel):
    id: int
    sender: str
    body: str
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True

class TicketOut(BaseModel):
    id: int
    user_id: int
    subject: str
    status: str
    created_at: datetime
    updated_at: datetime
    messages: List[MessageOut] = []

    class Config:
        from_attributes = True

class WebhookAck(BaseModel):
    received: bool = True
    status: str
    details: Optional[Dict[str, Any]] = None
