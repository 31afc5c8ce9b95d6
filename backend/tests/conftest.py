"""
Test configuration and shared fixtures for the Clinic Ledger test suite.

By default tests run against an in-memory SQLite database built from the
model metadata. Point TEST_DATABASE_URL at PostgreSQL to run the same suite
against the Alembic migrations (including the audit log trigger).
"""

from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from alembic.config import Config
from alembic import command

from auth.scope import ActorContext, TenantScope, resolve_scope
from core.database import Base, get_db
# Import all models to ensure they're registered with SQLAlchemy before any relationships are resolved
from models import Organization
from tests.utils import IS_SQLITE, TEST_DATABASE_URL


ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


@pytest.fixture(scope="session")
def db_engine():
    """
    Create a database engine for the test session.

    SQLite uses a single shared in-memory connection (StaticPool) so every
    session sees the same database.
    """
    if IS_SQLITE:
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL, poolclass=NullPool, echo=False)

    yield engine

    engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def setup_test_database(db_engine):
    """
    Setup test database schema.

    PostgreSQL runs all Alembic migrations from scratch (base → head) so the
    migration itself is under test; SQLite uses the model metadata.
    """
    if IS_SQLITE:
        Base.metadata.create_all(bind=db_engine)
    else:
        alembic_cfg = Config(str(ALEMBIC_INI))
        alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
        with db_engine.connect() as conn:
            conn.execute(text("DROP TABLE IF EXISTS alembic_version CASCADE"))
            conn.commit()
        Base.metadata.drop_all(bind=db_engine)
        command.upgrade(alembic_cfg, "head")

    yield

    Base.metadata.drop_all(bind=db_engine)


def _clear_tables(db_engine) -> None:
    with db_engine.begin() as conn:
        if IS_SQLITE:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
        else:
            # TRUNCATE does not fire the row-level audit_logs trigger
            table_names = ", ".join(table.name for table in Base.metadata.sorted_tables)
            conn.execute(text(f"TRUNCATE {table_names} RESTART IDENTITY CASCADE"))


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Provide a database session for a test.

    Services commit for real (audit entries are written after the financial
    commit), so isolation comes from emptying every table afterwards instead
    of rolling back a wrapping transaction.
    """
    TestingSession = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    session = TestingSession()

    yield session

    session.rollback()
    session.close()
    _clear_tables(db_engine)


@pytest.fixture
def organization(db_session: Session) -> Organization:
    organization = Organization(name="North Clinic", is_active=True)
    db_session.add(organization)
    db_session.commit()
    return organization


@pytest.fixture
def other_organization(db_session: Session) -> Organization:
    organization = Organization(name="South Clinic", is_active=True)
    db_session.add(organization)
    db_session.commit()
    return organization


@pytest.fixture
def actor(organization: Organization) -> ActorContext:
    return ActorContext(user_id=10, role="admin", organization_id=organization.id, ip_address="10.0.0.1")


@pytest.fixture
def scope(actor: ActorContext) -> TenantScope:
    return resolve_scope(actor)


@pytest.fixture
def other_actor(other_organization: Organization) -> ActorContext:
    return ActorContext(user_id=20, role="admin", organization_id=other_organization.id)


@pytest.fixture
def other_scope(other_actor: ActorContext) -> TenantScope:
    return resolve_scope(other_actor)


@pytest.fixture
def super_admin() -> ActorContext:
    return ActorContext(user_id=1, role="super_admin", organization_id=None, is_super_admin=True)


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """API client whose requests share the test's database session."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db_session
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)
