"""
Test configuration and fixtures for task tree tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Member header helpers
- Task factory that builds trees directly in the database
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep the app from touching a real database or starting the reminder loop
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DUE_CHECK_INTERVAL_SECONDS", "0")

from database import Base, get_db
from main import app
import models
from errors import StoreError
from task_store import TaskStore
from time_utils import utc_now

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def store(test_db: Session) -> TaskStore:
    return TaskStore(test_db)


class FlakyStore(TaskStore):
    """
    TaskStore that fails reads or writes for chosen task ids, behaving like a
    real write failure (session rolled back, StoreError raised).
    """

    def __init__(self, db: Session, fail_get: tuple = (), fail_put: tuple = ()):
        super().__init__(db)
        self.fail_get = set(fail_get)
        self.fail_put = set(fail_put)

    def get(self, task_id: str) -> models.Task:
        if task_id in self.fail_get:
            raise StoreError(f"Simulated read failure for task {task_id}", task_id=task_id)
        return super().get(task_id)

    def put(self, task: models.Task) -> models.Task:
        if task.id in self.fail_put:
            self.db.rollback()
            raise StoreError(f"Simulated write failure for task {task.id}", task_id=task.id)
        return super().put(task)


@pytest.fixture(scope="function")
def flaky_store(test_db: Session):
    """Build a FlakyStore on the test session: ``flaky_store(fail_put=[task_id])``."""
    def _build(fail_get=(), fail_put=()) -> FlakyStore:
        return FlakyStore(test_db, fail_get=tuple(fail_get), fail_put=tuple(fail_put))

    return _build


def member_headers(member_id: str) -> Dict[str, str]:
    """Headers identifying the acting member."""
    return {"X-Member-Id": member_id}


@pytest.fixture
def u1_headers() -> Dict[str, str]:
    return member_headers("u1")


@pytest.fixture
def u2_headers() -> Dict[str, str]:
    return member_headers("u2")


@pytest.fixture
def make_task(test_db: Session):
    """
    Factory that inserts a task directly, linking it under ``parent`` when
    given. Membership lists are taken verbatim so tests can build any shape,
    including inconsistent ones.
    """
    def _make(
        name: str,
        owner: str = "u1",
        parent: Optional[models.Task] = None,
        members: Optional[List[str]] = None,
        unfinished: Optional[List[str]] = None,
        due_in: timedelta = timedelta(days=1),
        **kwargs,
    ) -> models.Task:
        members = list(members) if members is not None else [owner]
        task = models.Task(
            id=models.new_id(),
            owner=owner,
            name=name,
            due_at=utc_now() + due_in,
            parent=parent.id if parent is not None else None,
            children=[],
            members=members,
            unfinished_members=list(unfinished) if unfinished is not None else list(members),
            **kwargs,
        )
        test_db.add(task)
        test_db.commit()
        if parent is not None:
            parent.children = list(parent.children or []) + [task.id]
            test_db.commit()
        test_db.refresh(task)
        logger.debug(f"Created test task {name} ({task.id})")
        return task

    return _make


@pytest.fixture
def tree(make_task) -> Dict[str, models.Task]:
    """
    A small tree used across tests:

        A (u1, u2)
        ├── B (u1, u2)
        │   └── D (u2)
        └── C (u1)
    """
    a = make_task("A", members=["u1", "u2"])
    b = make_task("B", parent=a, members=["u1", "u2"])
    c = make_task("C", parent=a, members=["u1"])
    d = make_task("D", parent=b, owner="u2", members=["u2"])
    return {"A": a, "B": b, "C": c, "D": d}
