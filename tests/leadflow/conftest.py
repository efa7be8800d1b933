"""Shared fixtures: a throwaway SQLite database per test and seeded tenants."""

import os
import sys

import pytest

# Ensure src/ is on sys.path so imports work without an install
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from leadflow.models import Base, create_session_factory, create_test_engine
from leadflow.store import PipelineStore

from fakes import FakeDiscoveryProvider, FakeNotifier, FakeOutbound, RecordingSleep


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh SQLite file with every table created."""
    engine = create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return PipelineStore(session_factory)


@pytest.fixture
async def company(store):
    """A tenant with a sending identity and autopilot off."""
    return await store.create_company(
        name="Acme Studio",
        website="https://acme.test",
        description="Booking software for acting coaches",
        target_audience="Acting coaches and drama teachers",
        sending_emails=["founder@acme.test"],
        default_sequence_length=2,
        calendar_link="https://cal.test/acme",
        autopilot_enabled=False,
    )


@pytest.fixture
async def autopilot_company(store):
    """A tenant with autopilot on and a fit threshold of 7."""
    return await store.create_company(
        name="Beacon Labs",
        website="https://beacon.test",
        description="Podcast guest booking",
        target_audience="Podcast hosts",
        sending_emails=["hello@beacon.test"],
        autopilot_enabled=True,
        autopilot_min_fit_score=7,
    )


@pytest.fixture
def outbound():
    return FakeOutbound()


@pytest.fixture
def provider():
    return FakeDiscoveryProvider()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def sleep():
    return RecordingSleep()
