"""Engine creation and schema setup."""

from __future__ import annotations

from pathlib import Path

import structlog
from sqlalchemy import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel, create_engine

# Imported for table registration on SQLModel.metadata.
from duel_tournament.models import lobby as _lobby  # noqa: F401
from duel_tournament.models import tournament as _tournament  # noqa: F401

logger = structlog.get_logger()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine and make sure every table exists.

    Args:
        database_url: SQLAlchemy URL, e.g. ``duckdb:///data/tournament.duckdb``.

    Returns:
        Ready-to-use engine.
    """
    if database_url.startswith("duckdb:///") and ":memory:" not in database_url:
        db_path = Path(database_url.removeprefix("duckdb:///"))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    # Use NullPool to avoid connection pooling issues on Windows
    engine = create_engine(database_url, poolclass=NullPool)
    SQLModel.metadata.create_all(engine)
    logger.info("db_init", url=database_url)
    return engine
