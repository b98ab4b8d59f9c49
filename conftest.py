"""Shared pytest fixtures: an in-memory database and a fake FCM client."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import database
from fcm_client import ConfigurationError
from schemas import DeliveryResult


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class FakeFCMClient:
    """Records sends; tokens listed in `failures` fail, tokens in `raises` raise."""

    def __init__(self):
        self.failures: dict[str, str] = {}
        self.rejected: set[str] = set()
        self.raises: dict[str, Exception] = {}
        self.configured = True
        self.calls: list[dict] = []

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError("FCM credentials not configured")

    async def send(self, token, title, body, data=None, image_url=None):
        self.calls.append({"token": token, "title": title, "body": body, "data": data})
        if token in self.raises:
            raise self.raises[token]
        if token in self.failures:
            return DeliveryResult(
                success=False,
                error=self.failures[token],
                token_rejected=token in self.rejected,
            )
        return DeliveryResult(success=True, message_id=f"projects/test/messages/{len(self.calls)}")


@pytest.fixture
def fake_client():
    return FakeFCMClient()


@pytest.fixture
def make_profile(db):
    def _make(profile_id="profile-1", tokens=(), notifications_enabled=True):
        profile = database.Profile(id=profile_id, name=profile_id, notifications_enabled=notifications_enabled)
        db.add(profile)
        for token in tokens:
            db.add(database.DeviceToken(token=token, profile_id=profile_id, active=True))
        db.commit()
        return profile

    return _make


@pytest.fixture
def make_medication(db):
    def _make(profile_id="profile-1", name="Metformina", times=("08:00",), frequency=None, **kwargs):
        medication = database.Medication(
            profile_id=profile_id,
            name=name,
            times=list(times) if times is not None else None,
            frequency=frequency,
            **kwargs
        )
        db.add(medication)
        db.commit()
        db.refresh(medication)
        return medication

    return _make


@pytest.fixture
def make_routine(db):
    def _make(profile_id="profile-1", name="Caminhada", time="08:00", weekdays=None, **kwargs):
        routine = database.Routine(profile_id=profile_id, name=name, time=time, weekdays=weekdays, **kwargs)
        db.add(routine)
        db.commit()
        db.refresh(routine)
        return routine

    return _make
