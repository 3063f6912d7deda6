"""Shared enums for models and services."""
import enum

class UserRole(enum.Enum):
    student = "STUDENT"
    teacher = "TEACHER"
    admin = "ADMIN"


class FeedbackStatus(enum.Enum):
    """Where an essay sits in the scoring lifecycle."""
    submitted = "submitted"
    feedback_pending = "feedback_pending"
    feedback_ready = "feedback_ready"


def enum_values(enum_class):
    """Store enum values ("STUDENT") rather than member names in the database."""
    return [member.value for member in enum_class]
