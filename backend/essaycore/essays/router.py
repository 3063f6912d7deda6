"""Essay and feedback endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ..auth.service import get_current_user
from ..models import User
from .schemas import DetailedFeedbackResponse, EssayCreate, EssayResponse, EssayUpdate, FeedbackResponse
from .service import EssayService, get_essay_service

router = APIRouter(prefix="/essays", tags=["Essays"])
teacher_router = APIRouter(prefix="/teacher", tags=["Teacher"])


@router.post("", response_model=EssayResponse, status_code=status.HTTP_201_CREATED)
def submit_essay(
    payload: EssayCreate,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    """Submit an essay authored by the current user."""
    return service.submit_essay(
        current_user.id,
        payload.title,
        payload.content,
        payload.prompt,
        image_url=payload.image_url,
        class_id=payload.class_id,
    )


@router.get("", response_model=List[EssayResponse])
def list_my_essays(
    limit: int = Query(5, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    """The current user's most recent essays."""
    return service.list_essays_for_author(current_user.id, limit=limit)


@router.get("/{essay_id}", response_model=EssayResponse)
def get_essay(
    essay_id: str,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    return service.get_essay_with_feedback(essay_id, actor=current_user)


@router.put("/{essay_id}", response_model=EssayResponse)
def update_essay(
    essay_id: str,
    payload: EssayUpdate,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    service.update_essay(essay_id, actor=current_user, **payload.model_dump(exclude_none=True))
    return service.get_essay_with_feedback(essay_id, actor=current_user)


@router.delete("/{essay_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_essay(
    essay_id: str,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    service.delete_essay(essay_id, actor=current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{essay_id}/feedback", response_model=FeedbackResponse)
def request_feedback(
    essay_id: str,
    rescore: bool = False,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    """Score the essay; pass rescore=true to replace existing feedback."""
    return service.request_feedback(essay_id, rescore=rescore, actor=current_user)


def _detailed_response(feedback) -> DetailedFeedbackResponse:
    return DetailedFeedbackResponse(
        essay_id=feedback.essay_id,
        scores=feedback.scores,
        items=feedback.details["items"],
        highlighted_content=feedback.details["highlighted_content"],
    )


@router.get("/{essay_id}/detailed-feedback", response_model=DetailedFeedbackResponse)
def get_detailed_feedback(
    essay_id: str,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    """Segment-level feedback; generated on first request and stored."""
    return _detailed_response(service.request_detailed_feedback(essay_id, actor=current_user))


@router.post("/{essay_id}/detailed-feedback", response_model=DetailedFeedbackResponse)
def regenerate_detailed_feedback(
    essay_id: str,
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    return _detailed_response(
        service.request_detailed_feedback(essay_id, regenerate=True, actor=current_user)
    )


@teacher_router.get("/essays", response_model=List[EssayResponse])
def list_essays_for_teacher(
    student_id: Optional[str] = None,
    status: Optional[str] = None,
    class_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: EssayService = Depends(get_essay_service),
):
    """Essay overview for the teacher dashboard."""
    return service.list_essays_for_teacher(
        current_user, student_id=student_id, status=status, class_id=class_id, limit=limit
    )
