"""Essay and Feedback models."""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Integer, JSON, Enum as SQLEnum, event
from sqlalchemy.orm import relationship

from ..database import Base
from ..scoring import compute_total_score
from ..utils import new_id, utcnow
from .enums import FeedbackStatus, enum_values


class Essay(Base):
    """Essay submitted by a user, optionally inside a class."""
    __tablename__ = "essays"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    prompt = Column(Text, nullable=False)
    image_url = Column(String(500))
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    class_id = Column(String(36), ForeignKey("classes.id", ondelete="SET NULL"), nullable=True, index=True)
    feedback_status = Column(
        SQLEnum(FeedbackStatus, values_callable=enum_values), nullable=False, default=FeedbackStatus.submitted
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    author = relationship("User", back_populates="essays")
    classroom = relationship("Classroom", back_populates="essays")
    feedback = relationship("Feedback", back_populates="essay", uselist=False, passive_deletes=True)

    def __repr__(self):
        return f"<Essay(id={self.id}, title='{self.title}')>"

    @property
    def has_feedback(self):
        return self.feedback is not None

    @property
    def is_graded(self):
        return self.feedback_status == FeedbackStatus.feedback_ready


class Feedback(Base):
    """Scored assessment of one essay."""
    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True, default=new_id)
    essay_id = Column(String(36), ForeignKey("essays.id", ondelete="CASCADE"), unique=True, nullable=False)
    content_score = Column(Integer, nullable=False)
    language_score = Column(Integer, nullable=False)
    organization_score = Column(Integer, nullable=False)
    total_score = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    essay = relationship("Essay", back_populates="feedback")

    def __repr__(self):
        return f"<Feedback(essay_id={self.essay_id}, total_score={self.total_score})>"

    @property
    def scores(self):
        return {
            "content": self.content_score,
            "language": self.language_score,
            "organization": self.organization_score,
            "total": self.total_score,
        }


@event.listens_for(Feedback, "before_insert")
@event.listens_for(Feedback, "before_update")
def _derive_total_score(mapper, connection, target):
    """Keep total_score in step with its components on every ORM write."""
    target.total_score = compute_total_score(
        target.content_score, target.language_score, target.organization_score
    )
