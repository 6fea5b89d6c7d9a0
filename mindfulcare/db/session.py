# mindfulcare/db/session.py

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mindfulcare.core.config import Settings, settings


def make_engine(cfg: Settings) -> AsyncEngine:
    """One async engine per process. SQLite (local/dev) gets no pool tuning."""
    url = cfg.async_db_uri
    if url.startswith("sqlite"):
        return create_async_engine(url, connect_args={"check_same_thread": False})
    return create_async_engine(
        url,
        pool_pre_ping=True,  # reconnect after the database drops idle connections
        pool_size=5,
        max_overflow=10,
        pool_recycle=1800,
    )


engine = make_engine(settings)

# Request-scoped sessions; objects stay readable after commit so the
# booking flow can keep using an appointment across its best-effort steps
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):
    pass


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, closed afterwards."""
    async with AsyncSessionLocal() as session:
        yield session
