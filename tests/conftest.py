"""
Shared fixtures: a throwaway SQLite database per test, a controllable clock
and a TestClient wired to both.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db import Base, get_db
from logic.clock import get_clock
from main import app
from models.beta_code import BetaInvitationCode
from models.guest_session import GuestAccessCode
from models.user import User


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'habitat.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return FrozenClock(now)


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email, role="user"):
        user = User(email=email, name=email.split("@")[0], role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_beta_code(db):
    def _make(code, organization="Escola Verde", expires_at=None):
        invitation = BetaInvitationCode(code=code, organization=organization, expires_at=expires_at)
        db.add(invitation)
        db.commit()
        db.refresh(invitation)
        return invitation

    return _make


@pytest.fixture
def make_guest_code(db):
    def _make(code, duration_hours=1, max_uses=None, access_tier="premium", is_active=True):
        access_code = GuestAccessCode(
            code=code,
            campaign_name="Beach Cleanup",
            duration_hours=duration_hours,
            max_uses=max_uses,
            access_tier=access_tier,
            is_active=is_active,
        )
        db.add(access_code)
        db.commit()
        db.refresh(access_code)
        return access_code

    return _make
