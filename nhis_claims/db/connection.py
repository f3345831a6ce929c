"""
Database connection management for the NHIS claims core.

Provides the engine factory and the transaction boundary every mutator runs
inside.
"""

from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from nhis_claims.config.models import DatabaseConfig
from nhis_claims.domain.errors import ClaimsCoreError, InternalError

logger = structlog.get_logger()


def get_connection_string(config: DatabaseConfig) -> str:
    """
    Build the SQLAlchemy connection string.

    Args:
        config: Database configuration

    Returns:
        Connection string (PostgreSQL via psycopg3 unless a url is configured)
    """
    return config.connection_string


def create_engine_from_config(config: DatabaseConfig) -> Engine:
    """
    Create SQLAlchemy engine from configuration.

    SQLite connections are switched to explicit BEGIN IMMEDIATE transactions
    so that each unit of work holds the write lock from its first statement
    and runs serialized against other writers.

    Args:
        config: Database configuration

    Returns:
        SQLAlchemy Engine instance
    """
    connection_string = get_connection_string(config)
    kwargs: dict = {"echo": config.echo}

    if config.is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs["pool_size"] = config.pool_size
        kwargs["pool_pre_ping"] = True
        kwargs["connect_args"] = {"application_name": "nhis_claims_core"}
        if config.isolation_level:
            kwargs["isolation_level"] = config.isolation_level

    engine = create_engine(connection_string, **kwargs)

    if config.is_sqlite:
        _enable_sqlite_immediate_transactions(engine)

    return engine


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Take over transaction control from pysqlite and begin IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def transaction(engine: Engine, operation: str) -> Iterator[Connection]:
    """
    Run one unit of work as a single atomic commit.

    Domain errors raised inside the block roll the transaction back and
    propagate unchanged. Unexpected data-store failures are logged and
    surfaced as InternalError.

    Args:
        engine: SQLAlchemy engine
        operation: Operation name for logging

    Yields:
        Connection bound to the open transaction
    """
    try:
        with engine.begin() as conn:
            yield conn
    except ClaimsCoreError:
        raise
    except SQLAlchemyError as e:
        logger.error(
            "data_store_failure",
            operation=operation,
            error_type=type(e).__name__,
            error=str(e),
            exc_info=True,
        )
        raise InternalError(f"Data store failure during {operation}") from e
