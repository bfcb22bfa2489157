"""
Database layer — SQLAlchemy 2.0 engine, sessions and unit-of-work scope.

Provides:
    • Engine and session factory owned by an explicit ``Database`` object
    • ``session_scope()`` — one transaction per unit of work
      (commit on success, rollback on any exception)
    • SQLite single-writer handling (in-process serialisation + SAVEPOINT
      support for pysqlite)
    • Base model for ORM entities

Usage:
    from guardian_backend.app.core.database import Database

    db = Database(settings.DATABASE_URL)
    db.create_all()
    with db.session_scope() as session:
        session.add(row)

The dispatch core is synchronous: FastAPI runs the plain ``def`` endpoints
in its worker threadpool, so every unit of work runs on a worker thread.

    ┌──────────────┐   session_scope()   ┌────────────┐
    │ worker thread│ ──────────────────▶ │  Session   │──▶ BEGIN … COMMIT
    └──────────────┘   (RLock on SQLite) └────────────┘
"""

from __future__ import annotations

import contextlib
import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_sqlite_memory(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Hand transaction control to SQLAlchemy so nested SAVEPOINTs work.

    pysqlite otherwise issues its own BEGIN lazily and breaks
    ``Session.begin_nested()``.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Engine + session factory for one database URL."""

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
    ):
        self.url = url
        self.is_sqlite = _is_sqlite(url)

        if self.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            if _is_sqlite_memory(url):
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, echo=echo, **kwargs)
            _enable_sqlite_savepoints(self.engine)
            # SQLite allows a single writer; units of work take turns.
            self._guard = threading.RLock()
        else:
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
            )
            self._guard = None

        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )

    def _serialised(self):
        return self._guard if self._guard is not None else contextlib.nullcontext()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Yield a session bound to one transaction."""
        with self._serialised():
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ── Lifecycle ──

    def create_all(self) -> None:
        """Create all tables (dev/test only — use migrations in production)."""
        # Importing the table module registers the mappings on Base.metadata
        from guardian_backend.app.storage import tables  # noqa: F401

        with self._serialised():
            Base.metadata.create_all(self.engine)
        logger.info("Database tables initialised")

    def ping(self) -> None:
        """Round-trip a trivial query; raises on failure."""
        with self._serialised():
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))

    def dispose(self) -> None:
        """Dispose engine connections."""
        self.engine.dispose()
        logger.info("Database connections closed")

    @property
    def display_url(self) -> str:
        """URL with credentials stripped, for logs and health output."""
        return self.url.split("@")[-1]
