import os

# Must be set before config/db are imported
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("PUSHER_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_TABLES", "true")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.rate_limit import default_rate_limiter
from db import Base, get_db
from models import Group, GroupMember, User
from routers.dependencies import get_broadcaster, get_current_user
from utils.pusher_client import LocalBroadcaster


TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="session")
def test_engine():
    """In-memory SQLite shared across connections of one test session."""
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create all tables before each test and drop them after"""
    Base.metadata.create_all(bind=test_engine)
    TestingSessionLocal = sessionmaker(bind=test_engine, autoflush=False)
    db = TestingSessionLocal()

    try:
        db.add_all(
            [
                User(account_id=1001, email="alice@example.com", username="alice", display_name="Alice"),
                User(account_id=1002, email="bob@example.com", username="bob", display_name="Bob"),
                User(account_id=1003, email="carol@example.com", username="carol", display_name="Carol"),
            ]
        )
        db.commit()
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    default_rate_limiter.reset()
    yield
    default_rate_limiter.reset()


@pytest.fixture
def alice(test_db):
    return test_db.query(User).filter(User.username == "alice").one()


@pytest.fixture
def bob(test_db):
    return test_db.query(User).filter(User.username == "bob").one()


@pytest.fixture
def carol(test_db):
    return test_db.query(User).filter(User.username == "carol").one()


@pytest.fixture
def group(test_db, alice, bob):
    """Group 1 with alice and bob as members (carol is not a member)."""
    group = Group(id=1, name="Sunday Circle", created_by=alice.account_id)
    test_db.add(group)
    test_db.add_all(
        [
            GroupMember(group_id=1, user_id=alice.account_id, role="owner"),
            GroupMember(group_id=1, user_id=bob.account_id),
        ]
    )
    test_db.commit()
    return group


@pytest.fixture
def broadcaster():
    return LocalBroadcaster()


@pytest.fixture
def client_for(test_db, broadcaster):
    """Build a TestClient acting as ``user`` against the given routers."""

    def _make(user, *routers, broadcaster_override=None):
        app = FastAPI()
        for router in routers:
            app.include_router(router)

        def override_get_db():
            yield test_db

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_broadcaster] = lambda: broadcaster_override or broadcaster
        return TestClient(app)

    return _make
