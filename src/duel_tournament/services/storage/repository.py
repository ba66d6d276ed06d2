"""Base class running SQLModel session work off the event loop."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import structlog
from sqlmodel import Session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

T = TypeVar("T")

# DuckDB allows one open connection per database file at a time in-process
_database_locks: dict[str, threading.Lock] = {}
_database_locks_guard = threading.Lock()


def database_lock(engine: Engine) -> threading.Lock:
    """Lock shared by every repository working on the same database."""
    key = engine.url.render_as_string(hide_password=False)
    with _database_locks_guard:
        return _database_locks.setdefault(key, threading.Lock())


class AsyncRepository:
    """Wrap sync SQLModel session work for async callers.

    Each call gets its own Session and therefore its own transaction. Calls
    on the same database are serialized on the worker threads, so
    concurrent callers never hold two connections to one file. Work that
    writes must commit before returning; on an exception the session is
    rolled back, so a failing operation leaves no partial rows behind.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = database_lock(engine)

    async def _run_session(self, fn: Callable[[Session], T]) -> T:
        """Run ``fn`` inside a fresh Session on a worker thread."""

        def _run() -> T:
            with self._lock, Session(self._engine) as session:
                try:
                    return fn(session)
                except Exception:
                    session.rollback()
                    logger.warning(
                        "session_rolled_back",
                        repository=type(self).__name__,
                        operation=getattr(fn, "__name__", "session_work"),
                    )
                    raise

        return await asyncio.to_thread(_run)
