from datetime import datetime, timedelta, timezone
import uuid

import pytest
from sqlalchemy.pool import NullPool

from draftsync.cache.local_cache import LocalDraftCache
from draftsync.core.db import build_session_factory, create_all
from draftsync.db.repositories.draft_repository import DraftRepository
from draftsync.domains.session.retry import WriteRetry


class FrozenClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def session_factory(tmp_path):
    factory = build_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'drafts.db'}", poolclass=NullPool)
    await create_all(factory)
    yield factory
    await factory.kw["bind"].dispose()


@pytest.fixture
def store(session_factory):
    return DraftRepository(session_factory)


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache(tmp_path, clock):
    return LocalDraftCache(tmp_path / "cache", ttl_seconds=300, schema_version=1, clock=clock)


@pytest.fixture
def sleep_calls():
    return []


@pytest.fixture
def retry(sleep_calls):
    async def fake_sleep(delay):
        sleep_calls.append(delay)

    return WriteRetry(max_attempts=3, base_delay_ms=100, timeout_seconds=5, sleep=fake_sleep)
