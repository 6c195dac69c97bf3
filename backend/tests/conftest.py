"""
Pytest configuration and fixtures for the Disruption Hub test suite.

Every test gets a fresh in-memory SQLite database; the API tests share it
with the app through a get_db override.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SMTP_USER"] = ""

import pytest
from datetime import datetime
from unittest.mock import MagicMock
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from disruption_hub.database import Base
from disruption_hub.models.db_models import (
    UserDB, CollaboratorDB, AlertDB, Role, AccountStatus, CollaboratorStatus,
)
from disruption_hub.services.auth import Identity, hash_password


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across threads (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a fresh database session for each test"""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(db_session):
    def _make(
        email=None,
        password=None,
        role=Role.USER,
        is_premium=False,
        status=AccountStatus.ACTIVE,
        first_name=None,
        last_name=None,
    ) -> UserDB:
        user = UserDB(
            id=str(uuid4()),
            email=email or f"user-{uuid4().hex[:8]}@hotel.test",
            password_hash=hash_password(password) if password else None,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_premium=is_premium,
            status=status,
            followed_alerts=[],
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_collaborator(db_session):
    def _make(
        user: UserDB,
        email=None,
        password=None,
        role=Role.VIEWER,
        status=CollaboratorStatus.ACTIVE,
        name=None,
    ) -> CollaboratorDB:
        collaborator = CollaboratorDB(
            id=str(uuid4()),
            user_id=user.id,
            email=email or f"team-{uuid4().hex[:8]}@hotel.test",
            name=name,
            role=role,
            status=status,
            password_hash=hash_password(password) if password else None,
            created_at=datetime.utcnow(),
        )
        db_session.add(collaborator)
        db_session.commit()
        return collaborator
    return _make


@pytest.fixture
def make_alert(db_session):
    def _make(title="Metro strike", city="Lisbon", description="Public transport strike") -> AlertDB:
        alert = AlertDB(
            id=str(uuid4()),
            title=title,
            summary=f"{title} summary",
            description=description,
            city=city,
            number_of_follows=0,
            followed_by=[],
            flagged_by=[],
        )
        db_session.add(alert)
        db_session.commit()
        return alert
    return _make


@pytest.fixture
def identity_for():
    """Build an Identity directly from rows (what TokenAuthority.resolve would return)."""
    def _identity(user: UserDB, collaborator: CollaboratorDB = None) -> Identity:
        return Identity(
            user_id=user.id,
            email=user.email,
            role=user.role,
            is_premium=bool(user.is_premium),
            status=user.status,
            collaborator_email=collaborator.email if collaborator else None,
            collaborator_role=collaborator.role if collaborator else None,
            collaborator_name=collaborator.name if collaborator else None,
        )
    return _identity


@pytest.fixture
def mail_transport():
    """Mail transport that delivers to everyone."""
    transport = MagicMock()
    transport.send.return_value = True
    return transport
