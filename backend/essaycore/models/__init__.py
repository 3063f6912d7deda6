"""SQLAlchemy models for the essay feedback platform."""

from .enums import UserRole, FeedbackStatus
from .user import User, Account, UserSession, VerificationToken
from .classroom import Classroom, Student
from .essay import Essay, Feedback

__all__ = [
    "UserRole",
    "FeedbackStatus",
    "User",
    "Account",
    "UserSession",
    "VerificationToken",
    "Classroom",
    "Student",
    "Essay",
    "Feedback",
]
