import asyncio

import pytest

from zenux_api.config import get_settings
from zenux_api.db.engine import create_engine, create_session_factory, init_db
from zenux_api.services import observability
from zenux_api.services.chat_store import ChatStore


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    """Isolate every test from the developer's .env and cached settings."""
    monkeypatch.setenv("ZENUX_CHAT_API_URL", "http://upstream.test/v1/chat/completions")
    monkeypatch.setenv("ZENUX_API_KEY", "upstream-key")
    monkeypatch.delenv("REQUIRE_AUTH", raising=False)
    get_settings.cache_clear()
    observability.reset()
    yield
    get_settings.cache_clear()
    observability.reset()


@pytest.fixture
def store(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'zenux.db'}")
    asyncio.run(init_db(engine))
    yield ChatStore(create_session_factory(engine))
    asyncio.run(engine.dispose())
