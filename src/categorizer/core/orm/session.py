"""SQLAlchemy engine factory and pre-configured session.

* ``create_categorizer_engine`` -- engine from a URL with SQLite tweaks
  (WAL, foreign keys, cross-thread use) and pool knobs for server databases.
* ``CategorizerSession``        -- ``Session`` with ``expire_on_commit=False``.
* ``session_factory``           -- ``sessionmaker`` producing the above.

Tags:
    orm, sqlalchemy, session, engine
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_categorizer_engine(
    url: str = "sqlite:///categorizer.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql+psycopg://…``, etc.)
    echo:
        If ``True``, log all SQL.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    """
    if url.startswith("sqlite"):
        # Gateway work runs in worker threads via asyncio.to_thread
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if _is_memory_sqlite(url):
            kwargs.setdefault("poolclass", StaticPool)

        engine = create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            if not _is_memory_sqlite(url):
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class CategorizerSession(Session):
    """Session with ``expire_on_commit=False``.

    Rows returned from a gateway call are read after the session closes,
    so attributes must stay loaded.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def session_factory(engine: Engine) -> sessionmaker[CategorizerSession]:
    """Return a ``sessionmaker`` bound to *engine*."""
    return sessionmaker(bind=engine, class_=CategorizerSession)
