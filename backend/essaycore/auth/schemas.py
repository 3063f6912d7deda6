"""Request/response schemas for identity endpoints."""
import string
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..models import UserRole


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: Optional[str] = None
    role: UserRole = UserRole.student

    @field_validator('password')
    @classmethod
    def password_complexity(cls, v: str) -> str:
        if not any(char.isdigit() for char in v):
            raise ValueError('Password must contain at least one number')
        if not any(char.isupper() for char in v):
            raise ValueError('Password must contain at least one uppercase letter')
        if not any(char.islower() for char in v):
            raise ValueError('Password must contain at least one lowercase letter')
        if not any(char in string.punctuation for char in v):
            raise ValueError('Password must contain at least one special character')
        return v

    @field_validator('role')
    @classmethod
    def no_self_service_admin(cls, v: UserRole) -> UserRole:
        if v == UserRole.admin:
            raise ValueError('Admin accounts cannot be self-registered')
        return v


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    role: UserRole
    email_verified: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires: datetime


class GoogleSignIn(BaseModel):
    token: str


class VerificationRequest(BaseModel):
    email: EmailStr


class VerificationConfirm(BaseModel):
    identifier: str
    token: str
