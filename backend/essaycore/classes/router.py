"""Class and enrollment endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from ..auth.service import get_current_user
from ..models import User
from .schemas import ClassCreate, ClassResponse, EnrollRequest, EnrollmentResponse, RosterEntry
from .service import ClassroomService, get_classroom_service

router = APIRouter(prefix="/classes", tags=["Classes"])


@router.post("", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
def create_class(
    payload: ClassCreate,
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    """Create a class taught by the current user."""
    return service.create_class(current_user.id, payload.name, payload.description)


@router.get("", response_model=List[ClassResponse])
def list_my_classes(
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    """Classes the current user teaches or attends."""
    return service.list_classes_for(current_user.id)


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_class(
    class_id: str,
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    service.delete_class(class_id, actor=current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{class_id}/students", response_model=List[RosterEntry])
def list_roster(
    class_id: str,
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    return service.list_roster_for(class_id)


@router.post("/{class_id}/students", response_model=EnrollmentResponse)
def enroll(
    class_id: str,
    payload: Optional[EnrollRequest] = None,
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    """Enroll a user (the caller by default); repeating the call is harmless."""
    user_id = payload.user_id if payload and payload.user_id else current_user.id
    return service.enroll(user_id, class_id, actor=current_user)


@router.delete("/{class_id}/students/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def unenroll(
    class_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: ClassroomService = Depends(get_classroom_service),
):
    service.unenroll(user_id, class_id, actor=current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
