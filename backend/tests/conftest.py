"""Test configuration and fixtures."""

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from essaycore.database import create_tables, drop_tables
from essaycore.scoring import ScoreResult, number_items


# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite:///:memory:"


class StubScorer:
    """Scoring collaborator double returning queued results."""

    def __init__(self, *results):
        self.results = list(results) or [(70, 80, 90, "Solid argument, work on transitions.")]
        self.calls = []
        self.items = None
        self.detail_calls = []

    def score(self, content, prompt):
        self.calls.append((content, prompt))
        outcome = self.results[min(len(self.calls), len(self.results)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        content_score, language_score, organization_score, text = outcome
        return ScoreResult(
            content_score=content_score,
            language_score=language_score,
            organization_score=organization_score,
            feedback=text,
        )

    def detail(self, content, prompt):
        self.detail_calls.append((content, prompt))
        if isinstance(self.items, Exception):
            raise self.items
        if self.items is not None:
            return self.items
        return number_items([
            {"type": "Grammar", "segment": content[:20], "suggestion": "Check the verb tense here."},
        ])


def failing_commit(*args, **kwargs):
    """Stand-in for Session.commit simulating a storage outage."""
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def count_rows(session, model, *criteria):
    """Count rows of ``model`` matching ``criteria``."""
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return session.scalar(query)


@pytest.fixture
def engine():
    """Create a fresh test database engine per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    drop_tables(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def stub_scorer():
    return StubScorer()


@pytest.fixture
def identity(db_session):
    from essaycore.auth.service import IdentityService
    return IdentityService(db_session)


@pytest.fixture
def classrooms(db_session):
    from essaycore.classes.service import ClassroomService
    return ClassroomService(db_session)


@pytest.fixture
def essays(db_session, stub_scorer):
    from essaycore.essays.service import EssayService
    return EssayService(db_session, stub_scorer)


@pytest.fixture
def teacher(identity):
    """Create a sample teacher."""
    from essaycore.models import UserRole
    return identity.create_user("teacher@example.com", name="Test Teacher", role=UserRole.teacher)


@pytest.fixture
def student(identity):
    """Create a sample student."""
    return identity.create_user("student@example.com", name="Test Student")


@pytest.fixture
def classroom(classrooms, teacher):
    """Create a sample class taught by the sample teacher."""
    return classrooms.create_class(teacher.id, "English 101", "Argumentative writing")


@pytest.fixture
def essay(essays, student):
    """Create a sample essay without feedback."""
    return essays.submit_essay(
        student.id,
        "Should homework be banned?",
        "Homework gives students a chance to practise. " * 20,
        "Discuss whether homework should be banned in secondary schools.",
    )


@pytest.fixture
def client(session_factory, stub_scorer):
    """FastAPI test client bound to the test database and stub scorer."""
    from fastapi.testclient import TestClient
    from essaycore.main import app
    from essaycore.database import get_db
    from essaycore.essays.service import get_scorer

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scorer] = lambda: stub_scorer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
