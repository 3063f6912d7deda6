"""Essay submission and feedback package."""
from .service import EssayService, get_essay_service, get_scorer
from .router import router as essays_router, teacher_router

__all__ = ['EssayService', 'get_essay_service', 'get_scorer', 'essays_router', 'teacher_router']
