"""Class and Student (enrollment) models."""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils import new_id, utcnow


class Classroom(Base):
    """A class owned by a teacher."""
    __tablename__ = "classes"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    teacher_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    teacher = relationship("User", back_populates="taught_classes")
    students = relationship("Student", back_populates="classroom", passive_deletes=True)
    essays = relationship("Essay", back_populates="classroom", passive_deletes=True)

    def __repr__(self):
        return f"<Classroom(id={self.id}, name='{self.name}')>"

    @property
    def student_count(self):
        """Get count of students enrolled in this class."""
        return len(self.students)


class Student(Base):
    """Enrollment of a user in a class."""
    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("user_id", "class_id", name="uq_student_user_class"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="enrollments")
    classroom = relationship("Classroom", back_populates="students")

    def __repr__(self):
        return f"<Student(user_id={self.user_id}, class_id={self.class_id})>"
