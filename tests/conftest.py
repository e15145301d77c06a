# ABOUTME: Shared test fixtures for feed-tune.
# ABOUTME: Provides a file-backed async SQLite database, settings, and the faked outbound HTTP stack.

from collections.abc import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_tune.config import Settings
from feed_tune.db.models import Base
from feed_tune.db.session import build_engine
from feed_tune.services.fetcher import SourceFetcher
from feed_tune.services.ingestion import IngestionService
from feed_tune.services.youtube import YouTubeClient
from helpers import Clock, Upstream, mock_client


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, youtube_api_key="test-key", cron_secret="cron-secret")


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
async def http_client(upstream) -> AsyncGenerator[httpx.AsyncClient]:
    async with mock_client(upstream) as client:
        yield client


@pytest.fixture
def fetcher(http_client, settings) -> SourceFetcher:
    return SourceFetcher(http_client, settings)


@pytest.fixture
def youtube(fetcher, settings) -> YouTubeClient:
    return YouTubeClient(fetcher, settings)


@pytest.fixture
def service(session_factory, fetcher, youtube, settings, clock) -> IngestionService:
    return IngestionService(session_factory, fetcher, youtube, settings, now=clock)
