import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from duka.core.config import settings


def async_database_url(url: str) -> str:
    """sqlite:///xxx.db -> sqlite+aiosqlite:///xxx.db"""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


# 收银、回调、定时任务可能同时写库，SQLite 等锁最多 30 秒
engine = create_async_engine(
    async_database_url(settings.SQLITE_DATABASE_URI),
    echo=os.getenv("SQL_DEBUG", "false").lower() == "true",
    connect_args={"timeout": 30},
)

SessionLocal = sessionmaker(
    autoflush=False,
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
