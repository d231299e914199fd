"""Database configuration."""

import os

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import DeclarativeBase

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+asyncpg://localhost/recipegen")
_SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


# Async engine for creating tables at API startup
async_engine = create_async_engine(DATABASE_URL, echo=_SQL_ECHO)


# Sync engine for batch jobs (hash store) and migrations
sync_engine = create_engine(
    DATABASE_URL.replace("+asyncpg", ""),
    echo=_SQL_ECHO,
)
