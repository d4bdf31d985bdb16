"""Shared fixtures.

Modules such as ``app.main`` and ``app.core.celery_app`` read settings at
import time, so required variables get harmless defaults before any app
import happens.
"""

import os

os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_USER", "testuser")
os.environ.setdefault("POSTGRES_PASSWORD", "testpass")
os.environ.setdefault("POSTGRES_DB", "testdb")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PROVIDER_SECRET_KEY", "sk_test_secret")

from collections.abc import AsyncIterator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from support import (  # noqa: E402
    FakePaystack,
    RecordingPublisher,
    RecordingSleep,
    build_container,
    make_engine,
    make_settings,
)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def provider() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def retry_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def container(tmp_path, settings, provider, publisher, retry_sleep) -> AsyncIterator:
    engine = await make_engine(str(tmp_path / "ledger.db"))
    services = build_container(settings, engine, provider, publisher=publisher, sleep=retry_sleep)
    yield services
    await services.aclose()
