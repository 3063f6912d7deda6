"""Request/response schemas for class endpoints."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..auth.schemas import UserResponse


class ClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ClassResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    teacher_id: str

    model_config = ConfigDict(from_attributes=True)


class EnrollRequest(BaseModel):
    # Defaults to the acting user
    user_id: Optional[str] = None


class EnrollmentResponse(BaseModel):
    id: str
    user_id: str
    class_id: str
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RosterEntry(EnrollmentResponse):
    user: UserResponse
