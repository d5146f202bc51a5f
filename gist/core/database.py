from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from gist.config import settings


class Base(DeclarativeBase):
    pass


def _ensure_sqlite_dir(url: str) -> None:
    # "sqlite+aiosqlite:///./data/gist.db" -> ./data
    path = url.split(":///", 1)[-1]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def create_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create the async engine with SQLite pragmas applied to every connection."""
    url = url or settings.DATABASE_URL
    is_sqlite = url.startswith("sqlite")

    engine_kwargs: dict = {"echo": settings.DEBUG if echo is None else echo}
    if is_sqlite:
        # SQLite doesn't support pool_size/max_overflow with StaticPool
        from sqlalchemy.pool import StaticPool

        _ensure_sqlite_dir(url)
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_recycle"] = 3600

    new_engine = create_async_engine(url, **engine_kwargs)

    if is_sqlite:

        @event.listens_for(new_engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return new_engine


engine = create_engine()

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables that do not exist yet."""
    import gist.models  # noqa: F401  (register mappers)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
