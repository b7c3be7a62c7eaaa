"""
Test fixtures for beatgen tests.

Provides an in-memory database, a credential pool bound to it and sample
work templates.
"""

import pytest
from datetime import timedelta
from typing import Generator, List
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

import beatgen.models  # noqa: F401  (registers tables on SQLModel.metadata)
from beatgen.core.typing import utc_now
from beatgen.models.work_template import WorkTemplate
from beatgen.services.credential_pool import CredentialPool


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def pool(test_engine) -> CredentialPool:
    return CredentialPool(test_engine)


@pytest.fixture
def sample_templates(test_session: Session) -> List[WorkTemplate]:
    """Three active templates, never used."""
    templates = [
        WorkTemplate(id=1, category_name="lofi"),
        WorkTemplate(id=2, category_name="synthwave"),
        WorkTemplate(id=3, category_name="ambient"),
    ]
    for t in templates:
        test_session.add(t)
    test_session.commit()
    return templates


@pytest.fixture
def recently_used_templates(test_session: Session) -> List[WorkTemplate]:
    """Two active templates used within the last hour and one inactive template."""
    now = utc_now()
    templates = [
        WorkTemplate(id=1, category_name="lofi", last_used_at=now - timedelta(minutes=30)),
        WorkTemplate(id=2, category_name="synthwave", last_used_at=now - timedelta(minutes=10)),
        WorkTemplate(id=3, category_name="retired", is_active=False),
    ]
    for t in templates:
        test_session.add(t)
    test_session.commit()
    return templates
