"""
Warehouse database engine.

The warehouse is optional: without a DATABASE_URL the rest of the
application keeps working and every warehouse call degrades to a no-op.
"""

from typing import Any

import structlog
from sqlalchemy import Engine, create_engine, event

from gorgias_warehouse.schema import Base

logger = structlog.get_logger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Map bare postgres URLs onto the psycopg 3 driver."""
    if database_url.startswith("postgres://"):
        return "postgresql+psycopg://" + database_url[len("postgres://"):]
    if database_url.startswith("postgresql://"):
        return "postgresql+psycopg://" + database_url[len("postgresql://"):]
    return database_url


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_warehouse_engine(database_url: str | None, **engine_kwargs: Any) -> Engine | None:
    """
    Create the warehouse engine, or None when no database is configured.
    """
    if not database_url:
        logger.warning("No DATABASE_URL configured, warehouse disabled")
        return None

    url = normalize_database_url(database_url)
    engine = create_engine(url, pool_pre_ping=True, **engine_kwargs)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    logger.info("Warehouse engine created", dialect=engine.dialect.name)
    return engine


def init_schema(engine: Engine | None) -> None:
    """Create any missing warehouse tables."""
    if engine is None:
        return
    Base.metadata.create_all(engine)
