"""
Shared fixtures: an in-memory database per test, seeded users and a group,
and a TestClient wired to both.
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from splitledger.api.dependencies import get_cache
from splitledger.core.security import create_access_token
from splitledger.db.base import Base
from splitledger.db.session import get_db
from splitledger.main import app
from splitledger.models import Group, GroupMember, User
from splitledger.services.cache_service import InMemoryCache


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def cache():
    return InMemoryCache()


def _user(db, first_name, email):
    user = User(email=email, first_name=first_name, last_name="Tester")
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def users(db):
    """alice, bob and carol share a group; dave belongs to none."""
    seeded = {
        "alice": _user(db, "Alice", "alice@example.com"),
        "bob": _user(db, "Bob", "bob@example.com"),
        "carol": _user(db, "Carol", "carol@example.com"),
        "dave": _user(db, "Dave", "dave@example.com"),
    }
    db.commit()
    return seeded


def _make_group(db, name, members):
    group = Group(name=name, description=f"{name} group")
    db.add(group)
    db.flush()
    joined = datetime(2024, 1, 1, 12, 0, 0)
    for offset, user in enumerate(members):
        db.add(GroupMember(
            group_id=group.id,
            user_id=user.id,
            role="admin" if offset == 0 else "member",
            joined_at=joined + timedelta(minutes=offset),
        ))
    db.commit()
    return group


@pytest.fixture
def group(db, users):
    return _make_group(db, "Trip", [users["alice"], users["bob"], users["carol"]])


@pytest.fixture
def make_group(db):
    """Create an extra group with the given members in join order."""
    return lambda name, members: _make_group(db, name, members)


@pytest.fixture
def client(db, cache):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"user_id": user.id})
        return {"Authorization": f"Bearer {token}"}
    return _headers
