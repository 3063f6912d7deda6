"""Essay submission and the feedback engine."""
import logging
from typing import Dict, List, Optional

from fastapi import Depends
from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..access import require_owner_or_staff
from ..database import commit_or_raise, get_db, rollback_and_wrap
from ..errors import (
    CascadeFailure, ConflictError, NotFoundError, PermissionDeniedError, ScoringFailure, ValidationError,
)
from ..models import Classroom, Essay, Feedback, FeedbackStatus, User, UserRole
from ..scoring import ScoreResult, Scorer, build_details, build_scorer, compute_total_score, validate_scores
from ..utils import new_id, utcnow

logger = logging.getLogger(__name__)

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE
UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}

ESSAY_STATUS_FILTERS = ("graded", "ungraded")


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field.capitalize()} is required", entity="Essay", field=field)
    return value


class EssayService:
    def __init__(self, db: Session, scorer: Optional[Scorer] = None):
        self.db = db
        self.scorer = scorer

    def get_essay(self, essay_id: str) -> Essay:
        essay = self.db.get(Essay, essay_id)
        if essay is None:
            raise NotFoundError("Essay", essay_id)
        return essay

    def submit_essay(
        self,
        author_id: str,
        title: str,
        content: str,
        prompt: str,
        image_url: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> Essay:
        """Store a new essay. It starts without feedback."""
        _require_text(title, "title")
        _require_text(content, "content")
        _require_text(prompt, "prompt")
        if self.db.get(User, author_id) is None:
            raise NotFoundError("User", author_id)
        if class_id is not None and self.db.get(Classroom, class_id) is None:
            raise NotFoundError("Class", class_id)

        essay = Essay(
            title=title.strip(),
            content=content,
            prompt=prompt,
            image_url=image_url,
            author_id=author_id,
            class_id=class_id,
            feedback_status=FeedbackStatus.submitted,
        )
        self.db.add(essay)
        commit_or_raise(self.db, "Essay")
        self.db.refresh(essay)
        logger.info(f"User {author_id} submitted essay {essay.id}")
        return essay

    def update_essay(self, essay_id: str, actor: Optional[User] = None, **fields) -> Essay:
        """Edit title, content, prompt or image_url. Feedback is left as is."""
        essay = self.get_essay(essay_id)
        if actor is not None and actor.id != essay.author_id and actor.role != UserRole.admin:
            raise PermissionDeniedError(f"Only the author can edit essay {essay_id}", entity="Essay", key=essay_id)

        editable = {"title", "content", "prompt", "image_url"}
        unknown = set(fields) - editable
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}", entity="Essay")
        for name, value in fields.items():
            if value is None:
                continue
            if name != "image_url":
                _require_text(value, name)
            setattr(essay, name, value.strip() if name == "title" else value)
        commit_or_raise(self.db, "Essay", essay_id)
        self.db.refresh(essay)
        return essay

    def get_essay_with_feedback(self, essay_id: str, actor: Optional[User] = None) -> Essay:
        essay = self.db.scalars(
            select(Essay).options(selectinload(Essay.feedback)).where(Essay.id == essay_id)
        ).first()
        if essay is None:
            raise NotFoundError("Essay", essay_id)
        require_owner_or_staff(actor, essay.author_id, "Essay", essay_id)
        return essay

    def list_essays_for_author(self, author_id: str, limit: int = 5) -> List[Essay]:
        """Most recent essays by an author, newest first."""
        return list(self.db.scalars(
            select(Essay)
            .options(selectinload(Essay.feedback))
            .where(Essay.author_id == author_id)
            .order_by(Essay.created_at.desc())
            .limit(limit)
        ))

    def list_essays_for_teacher(
        self,
        actor: User,
        student_id: Optional[str] = None,
        status: Optional[str] = None,
        class_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Essay]:
        """Essay overview for teachers, optionally filtered by author, class and grading state."""
        if actor.role not in (UserRole.teacher, UserRole.admin):
            raise PermissionDeniedError("Only teachers can list all essays", entity="Essay")
        if status is not None and status not in ESSAY_STATUS_FILTERS:
            raise ValidationError(f"Unknown status filter: {status}", entity="Essay", field="status")

        query = select(Essay).options(selectinload(Essay.feedback), selectinload(Essay.author))
        if student_id:
            query = query.where(Essay.author_id == student_id)
        if class_id:
            query = query.where(Essay.class_id == class_id)
        if status == "graded":
            query = query.where(Essay.feedback.has())
        elif status == "ungraded":
            query = query.where(~Essay.feedback.has())
        return list(self.db.scalars(query.order_by(Essay.created_at.desc()).limit(limit)))

    def delete_essay(self, essay_id: str, actor: Optional[User] = None) -> None:
        """Delete an essay and its feedback in one transaction."""
        essay = self.get_essay(essay_id)
        require_owner_or_staff(actor, essay.author_id, "Essay", essay_id)
        try:
            self.db.execute(delete(Feedback).where(Feedback.essay_id == essay_id))
            self.db.execute(delete(Essay).where(Essay.id == essay_id))
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cascade delete of essay {essay_id} failed: {e}")
            self.db.rollback()
            raise CascadeFailure(f"Could not delete essay {essay_id}", entity="Essay", key=essay_id) from e
        logger.info(f"Deleted essay {essay_id}")

    # Feedback

    def _feedback_exists(self, essay_id: str) -> bool:
        return self.db.scalar(select(Feedback.id).where(Feedback.essay_id == essay_id)) is not None

    def _set_status(self, essay_id: str, status: FeedbackStatus) -> None:
        try:
            self.db.execute(update(Essay).where(Essay.id == essay_id).values(feedback_status=status))
            self.db.commit()
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Essay", essay_id) from e

    def _restore_status(self, essay_id: str) -> None:
        """Put an essay back to the state its stored feedback implies."""
        status = FeedbackStatus.feedback_ready if self._feedback_exists(essay_id) else FeedbackStatus.submitted
        self._set_status(essay_id, status)

    def _run_scorer(self, essay_id: str, call):
        """Invoke the scoring collaborator; any failure restores the essay and raises ScoringFailure."""
        try:
            return call()
        except ScoringFailure:
            logger.error(f"Scoring failed for essay {essay_id}")
            self._restore_status(essay_id)
            raise
        except Exception as e:
            logger.error(f"Scoring collaborator raised for essay {essay_id}: {e}")
            self._restore_status(essay_id)
            raise ScoringFailure("Scoring collaborator failed", entity="Feedback", key=essay_id) from e

    def request_feedback(self, essay_id: str, rescore: bool = False, actor: Optional[User] = None) -> Feedback:
        """Score an essay and store the result as its single Feedback row.

        Without ``rescore`` an essay that already has feedback is a conflict.
        The scorer is called exactly once; a failed call leaves the essay
        retryable and raises ScoringFailure.
        """
        if self.scorer is None:
            raise ScoringFailure("No scoring collaborator configured", entity="Feedback")
        essay = self.get_essay(essay_id)
        require_owner_or_staff(actor, essay.author_id, "Essay", essay_id)
        if not rescore and self._feedback_exists(essay_id):
            raise ConflictError(
                "Essay already has feedback", entity="Feedback", key=essay_id, field="essay_id"
            )

        content, prompt = essay.content, essay.prompt
        self._set_status(essay_id, FeedbackStatus.feedback_pending)
        result = self._run_scorer(essay_id, lambda: validate_scores(self.scorer.score(content, prompt)))
        feedback = self._store_feedback(essay_id, result)
        logger.info(f"Stored feedback for essay {essay_id} (total {feedback.total_score})")
        return feedback

    def request_detailed_feedback(
        self, essay_id: str, regenerate: bool = False, actor: Optional[User] = None
    ) -> Feedback:
        """Attach segment-level comments and highlighted content to an essay's feedback.

        Stored details are returned as they are unless ``regenerate`` is set.
        An essay without feedback is scored first and both are written by the
        same upsert; existing scores are kept.
        """
        if self.scorer is None:
            raise ScoringFailure("No scoring collaborator configured", entity="Feedback")
        essay = self.get_essay(essay_id)
        require_owner_or_staff(actor, essay.author_id, "Essay", essay_id)
        feedback = self.db.scalars(select(Feedback).where(Feedback.essay_id == essay_id)).first()
        if feedback is not None and feedback.details and not regenerate:
            return feedback

        content, prompt = essay.content, essay.prompt
        result = None
        if feedback is not None:
            result = ScoreResult(
                content_score=feedback.content_score,
                language_score=feedback.language_score,
                organization_score=feedback.organization_score,
                feedback=feedback.feedback,
            )
        self._set_status(essay_id, FeedbackStatus.feedback_pending)
        if result is None:
            result = self._run_scorer(essay_id, lambda: validate_scores(self.scorer.score(content, prompt)))
        items = self._run_scorer(essay_id, lambda: self.scorer.detail(content, prompt))
        if not items:
            self._restore_status(essay_id)
            raise ScoringFailure("Scoring returned no feedback items", entity="Feedback", key=essay_id)

        feedback = self._store_feedback(essay_id, result, build_details(content, items))
        logger.info(f"Stored {len(items)} detailed feedback items for essay {essay_id}")
        return feedback

    def _store_feedback(self, essay_id: str, result: ScoreResult, details: Optional[Dict] = None) -> Feedback:
        """Upsert the feedback row and mark the essay ready in one transaction."""
        try:
            self._upsert_feedback(essay_id, result, details)
            self.db.execute(
                update(Essay).where(Essay.id == essay_id).values(feedback_status=FeedbackStatus.feedback_ready)
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if self.db.get(Essay, essay_id) is None:
                raise NotFoundError("Essay", essay_id, message="Essay was deleted while scoring") from e
            self._restore_status(essay_id)
            raise ConflictError("Could not store feedback", entity="Feedback", key=essay_id) from e
        except SQLAlchemyError as e:
            error = rollback_and_wrap(self.db, e, "Feedback", essay_id)
            self._restore_status(essay_id)
            raise error from e

        return self.db.scalars(select(Feedback).where(Feedback.essay_id == essay_id)).one()

    def _feedback_values(self, result: ScoreResult, details: Optional[Dict] = None) -> Dict:
        values = {
            "content_score": result.content_score,
            "language_score": result.language_score,
            "organization_score": result.organization_score,
            "total_score": compute_total_score(
                result.content_score, result.language_score, result.organization_score
            ),
            "feedback": result.feedback,
            "updated_at": utcnow(),
        }
        # A plain rescore keeps whatever details are already stored
        if details is not None:
            values["details"] = details
        return values

    def _upsert_feedback(self, essay_id: str, result: ScoreResult, details: Optional[Dict] = None) -> None:
        """Insert the essay's feedback or overwrite the existing row atomically."""
        values = self._feedback_values(result, details)
        dialect = self.db.get_bind().dialect.name
        insert_factory = UPSERT_INSERTS.get(dialect)
        if insert_factory is not None:
            stmt = insert_factory(Feedback).values(id=new_id(), essay_id=essay_id, **values)
            stmt = stmt.on_conflict_do_update(index_elements=["essay_id"], set_=values)
            self.db.execute(stmt)
            return

        # No native upsert: insert, and on the unique violation retry as an update
        try:
            with self.db.begin_nested():
                self.db.execute(insert(Feedback).values(id=new_id(), essay_id=essay_id, **values))
        except IntegrityError:
            self.db.execute(update(Feedback).where(Feedback.essay_id == essay_id).values(**values))


def get_scorer() -> Scorer:
    """Dependency returning the configured scoring collaborator."""
    return build_scorer()


def get_essay_service(
    db: Session = Depends(get_db),
    scorer: Scorer = Depends(get_scorer),
) -> EssayService:
    """Dependency to get an instance of EssayService."""
    return EssayService(db, scorer)
