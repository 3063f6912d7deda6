"""Request/response schemas for essay endpoints."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..models import FeedbackStatus


class EssayCreate(BaseModel):
    title: str
    content: str
    prompt: str
    image_url: Optional[str] = None
    class_id: Optional[str] = None


class EssayUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    prompt: Optional[str] = None
    image_url: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: str
    essay_id: str
    content_score: int
    language_score: int
    organization_score: int
    total_score: int
    feedback: str

    model_config = ConfigDict(from_attributes=True)


class EssayResponse(BaseModel):
    id: str
    title: str
    content: str
    prompt: str
    image_url: Optional[str]
    author_id: str
    class_id: Optional[str]
    feedback_status: FeedbackStatus
    created_at: datetime
    feedback: Optional[FeedbackResponse] = None

    model_config = ConfigDict(from_attributes=True)


class FeedbackItemResponse(BaseModel):
    type: str
    segment: str
    suggestion: str
    number: int


class DetailedFeedbackResponse(BaseModel):
    essay_id: str
    scores: Dict[str, int]
    items: List[FeedbackItemResponse]
    highlighted_content: str
