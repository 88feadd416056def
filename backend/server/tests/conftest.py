"""Pytest configuration for the LockDesk server tests."""

import os
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("REDIS_HOST", "localhost")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from lockdesk.auth import Principal
from lockdesk.db import Base, get_db, make_engine
from lockdesk.dispatcher import DispatchGuard
from lockdesk.main import app
from lockdesk.models import Device, Profile
from lockdesk.notify import get_notifier

ADMIN_TOKEN = os.environ["ADMIN_TOKEN"]
OWNER_TOKEN = "owner-token-u1"
AGENT_TOKEN = "agent-token-d1"
GOOD_KEY = "1234 5678 9012 3456 7890"


class RecordingNotifier:
    def __init__(self):
        self.published = []

    def publish(self, device_id, cmd_id):
        self.published.append((device_id, cmd_id))
        return True


class TickClock:
    """Hands out strictly increasing timestamps, one second apart."""

    def __init__(self, start=datetime(2025, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture()
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def owner(db) -> Principal:
    db.add(Profile(id="U1", email="u1@example.com", token=OWNER_TOKEN,
                   device_info={"name": "Phone", "brand": "Acme", "modelName": "A1"}))
    db.commit()
    return Principal(id="U1", email="u1@example.com")


@pytest.fixture()
def device(db, owner) -> Device:
    dev = Device(id="D1", owner_id=owner.id, name="Laptop", brand="Acme", model_name="Book",
                 os_name="Linux", os_version="6.1", token=AGENT_TOKEN, blocked=False)
    db.add(dev); db.commit(); db.refresh(dev)
    return dev


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def guard():
    return DispatchGuard()


@pytest.fixture()
def clock():
    return TickClock()


@pytest.fixture()
def client(session_factory, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
