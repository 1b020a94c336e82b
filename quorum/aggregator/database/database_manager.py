from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from quorum.aggregator.database.models import metadata
from quorum.aggregator.utils.config import DatabaseSettings
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """
    Async engine for the aggregator's own tables.

    The schema is small and owned by this process, so it is created on first use
    instead of through migrations. Every statement runs inside ``transaction()``.
    """

    def __init__(self, url: Optional[str] = None, *, url_env: str = "DB_URL") -> None:
        url = url or os.environ.get(url_env)
        if not url:
            raise RuntimeError(f"Database URL not provided and not found in env var {url_env}")
        self._url = make_url(url)
        self._engine: AsyncEngine = create_async_engine(self._url, pool_pre_ping=True)
        self._schema_ready = False

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "DatabaseManager":
        return cls(settings.URL)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def safe_url(self) -> str:
        return self._url.render_as_string(hide_password=True)

    async def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        self._schema_ready = True
        logger.info(f"Aggregator tables ready on {self.safe_url}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside a transaction, committed on exit and rolled back on error."""
        await self.ensure_schema()
        async with self._engine.begin() as conn:
            yield conn

    async def close(self) -> None:
        await self._engine.dispose()
