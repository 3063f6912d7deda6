"""Classroom membership: classes owned by teachers and student enrollments."""
import logging
from typing import List, Optional

from fastapi import Depends
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..access import assert_role
from ..database import commit_or_raise, get_db, rollback_and_wrap
from ..errors import CascadeFailure, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ..models import Classroom, Essay, Student, User, UserRole

logger = logging.getLogger(__name__)


class ClassroomService:
    def __init__(self, db: Session):
        self.db = db

    def _get_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_class(self, class_id: str) -> Classroom:
        classroom = self.db.get(Classroom, class_id)
        if classroom is None:
            raise NotFoundError("Class", class_id)
        return classroom

    def _check_manager(self, actor: Optional[User], classroom: Classroom) -> None:
        if actor is None or actor.role == UserRole.admin or actor.id == classroom.teacher_id:
            return
        raise PermissionDeniedError(
            f"Only the class teacher can manage class {classroom.id}", entity="Class", key=classroom.id
        )

    def create_class(self, teacher_id: str, name: str, description: Optional[str] = None) -> Classroom:
        """Create a class owned by a TEACHER user."""
        teacher = self._get_user(teacher_id)
        assert_role(teacher, UserRole.teacher)
        if not name or not name.strip():
            raise ValidationError("Class name is required", entity="Class", field="name")

        classroom = Classroom(name=name.strip(), description=description, teacher_id=teacher_id)
        self.db.add(classroom)
        commit_or_raise(self.db, "Class")
        self.db.refresh(classroom)
        logger.info(f"Teacher {teacher_id} created class {classroom.id}")
        return classroom

    def _find_enrollment(self, user_id: str, class_id: str) -> Optional[Student]:
        return self.db.scalars(
            select(Student).where(Student.user_id == user_id, Student.class_id == class_id)
        ).first()

    def enroll(self, user_id: str, class_id: str, actor: Optional[User] = None) -> Student:
        """Enroll a user in a class; enrolling twice returns the existing row."""
        self._get_user(user_id)
        classroom = self.get_class(class_id)
        if actor is not None and actor.id != user_id:
            self._check_manager(actor, classroom)

        existing = self._find_enrollment(user_id, class_id)
        if existing is not None:
            return existing

        enrollment = Student(user_id=user_id, class_id=class_id)
        self.db.add(enrollment)
        try:
            self.db.commit()
        except IntegrityError as e:
            # A concurrent enroll committed first; hand back its row
            self.db.rollback()
            existing = self._find_enrollment(user_id, class_id)
            if existing is None:
                raise ConflictError(
                    "Could not enroll user", entity="Student", key=f"{user_id}:{class_id}"
                ) from e
            logger.info(f"Concurrent enrollment of {user_id} in {class_id} resolved to existing row")
            return existing
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Student", f"{user_id}:{class_id}") from e
        self.db.refresh(enrollment)
        logger.info(f"Enrolled user {user_id} in class {class_id}")
        return enrollment

    def unenroll(self, user_id: str, class_id: str, actor: Optional[User] = None) -> None:
        """Remove an enrollment; missing enrollments are ignored."""
        if actor is not None and actor.id != user_id:
            classroom = self.db.get(Classroom, class_id)
            if classroom is None:
                return
            self._check_manager(actor, classroom)
        try:
            self.db.execute(
                delete(Student).where(Student.user_id == user_id, Student.class_id == class_id)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Student", f"{user_id}:{class_id}") from e

    def delete_class(self, class_id: str, actor: Optional[User] = None) -> None:
        """Delete a class, its enrollments, and detach (not delete) its essays."""
        classroom = self.get_class(class_id)
        self._check_manager(actor, classroom)
        try:
            self.db.execute(delete(Student).where(Student.class_id == class_id))
            self.db.execute(update(Essay).where(Essay.class_id == class_id).values(class_id=None))
            self.db.execute(delete(Classroom).where(Classroom.id == class_id))
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cascade delete of class {class_id} failed: {e}")
            self.db.rollback()
            raise CascadeFailure(f"Could not delete class {class_id}", entity="Class", key=class_id) from e
        logger.info(f"Deleted class {class_id}")

    def list_roster_for(self, class_id: str) -> List[Student]:
        self.get_class(class_id)
        return list(self.db.scalars(
            select(Student)
            .options(selectinload(Student.user))
            .where(Student.class_id == class_id)
            .order_by(Student.joined_at)
        ))

    def list_classes_for(self, user_id: str) -> List[Classroom]:
        """Classes the user teaches or is enrolled in."""
        self._get_user(user_id)
        enrolled = select(Student.class_id).where(Student.user_id == user_id)
        return list(self.db.scalars(
            select(Classroom)
            .where((Classroom.teacher_id == user_id) | Classroom.id.in_(enrolled))
            .order_by(Classroom.name)
        ))


def get_classroom_service(db: Session = Depends(get_db)) -> ClassroomService:
    """Dependency to get an instance of ClassroomService."""
    return ClassroomService(db)
