"""Async engine and session factory.

Production runs on Postgres through asyncpg; tests and local runs may use
SQLite through aiosqlite, which needs none of the SSL handling below.
"""

import ssl
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from offboard.config import get_settings
from offboard.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()

# libpq query params asyncpg rejects
LIBPQ_ONLY_PARAMS = ("sslmode", "channel_binding", "options")

PLAINTEXT_HOSTS = frozenset({"localhost", "127.0.0.1", "db"})


def normalize_database_url(url: str) -> tuple[str, dict[str, Any]]:
    """Return an asyncpg-safe URL and the connect_args it needs.

    Remote Postgres hosts get a default SSL context; local hosts and SQLite
    connect in plaintext.
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    query = {k: v for k, v in parse_qs(parsed.query).items() if k not in LIBPQ_ONLY_PARAMS}
    url = parsed._replace(query=urlencode(query, doseq=True)).geturl()

    if (parsed.hostname or "") in PLAINTEXT_HOSTS:
        return url, {}
    return url, {"ssl": ssl.create_default_context()}


database_url, connect_args = normalize_database_url(settings.database_url)

engine = create_async_engine(
    database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_recycle=280,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the handler returns normally."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.bind(error=str(e)).warning("request_transaction_rolled_back")
            raise
