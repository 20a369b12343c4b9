import sys
import pathlib
import warnings
from contextlib import asynccontextmanager
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

try:
    from sqlalchemy.exc import SAWarning
    warnings.filterwarnings('ignore', category=SAWarning)
except ImportError:
    pass

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

from todo_scheduler.config import Settings
from todo_scheduler.db import TaskStore
from todo_scheduler.main import create_app, get_now

# Saturday; every API test runs with this as "now".
FIXED_NOW = datetime(2024, 6, 1, 9, 30)
TEST_PASSWORD = 'let-me-in'


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'scheduler_test.db'}",
        password='',
        secret_key='test-secret-key-for-unit-tests',
        web_dir=str(tmp_path / 'no-web'),
    )
    values.update(overrides)
    return Settings(**values)


@asynccontextmanager
async def app_client(settings: Settings, now: datetime = FIXED_NOW):
    """Yield (client, app) for a fresh app over its own SQLite file.

    ASGITransport does not run lifespan events, so the store is initialised
    and disposed here.
    """
    store = TaskStore(settings.database_url)
    await store.init()
    app = create_app(settings, store)
    app.dependency_overrides[get_now] = lambda: now
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac, app
    finally:
        await store.dispose()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def store(settings):
    s = TaskStore(settings.database_url)
    await s.init()
    yield s
    await s.dispose()


@pytest_asyncio.fixture
async def client(settings):
    """Client for an app with authentication disabled."""
    async with app_client(settings) as (ac, _app):
        yield ac


@pytest_asyncio.fixture
async def auth_app(tmp_path):
    """(client, app) for an app that requires sign-in; the client is not
    signed in yet."""
    async with app_client(make_settings(tmp_path, password=TEST_PASSWORD)) as pair:
        yield pair
