"""Classroom membership package."""
from .service import ClassroomService, get_classroom_service
from .router import router as classes_router

__all__ = ['ClassroomService', 'get_classroom_service', 'classes_router']
