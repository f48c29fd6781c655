"""Shared fixtures: in-memory database, fake clock and seeded clinic data."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cupos import models  # noqa: F401  (registra las tablas en Base.metadata)
from cupos.database import Base
from cupos.services.config_provider import StaticConfigProvider
from cupos.services.waitlist import WaitlistEngine

from tests.factories import FakeClock, seed_clinic


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    mock = MagicMock(return_value={"ok": True, "id": "SM0001"})
    return mock


@pytest.fixture
def config():
    return StaticConfigProvider()


@pytest.fixture
def engine(session_factory, config, sender, clock):
    return WaitlistEngine(session_factory, config, sender=sender, clock=clock, grace_minutes=30)


@pytest.fixture
def clinic(db):
    """Two specialties, three professionals and a handful of patients."""
    return seed_clinic(db)

