"""
Database initialization for the NHIS claims core.

Creates all required tables.
"""

import structlog
from sqlalchemy.engine import Engine

from nhis_claims.config import load_config
from nhis_claims.db.connection import create_engine_from_config
from nhis_claims.db.schema import TABLE_CREATE_ORDER, metadata

logger = structlog.get_logger()


def create_tables(engine: Engine) -> None:
    """Create any missing tables in dependency order."""
    for table_name in TABLE_CREATE_ORDER:
        logger.info("creating_table", table=table_name)
    metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """Drop all tables in reverse dependency order."""
    for table_name in reversed(TABLE_CREATE_ORDER):
        logger.warning("dropping_table", table=table_name)
    metadata.drop_all(engine)


def init_database(
    config_path: str | None = None,
    drop_existing: bool = False,
) -> Engine:
    """
    Initialize the database with all required tables.

    Args:
        config_path: Path to configuration file
        drop_existing: If True, drop all tables before creating

    Returns:
        The engine used, so callers can keep working with it
    """
    logger.info("loading_configuration")
    config = load_config(config_path)

    logger.info(
        "connecting_to_database",
        url=config.database.connection_string.split("@")[-1],
    )
    engine = create_engine_from_config(config.database)

    if drop_existing:
        logger.warning("dropping_existing_tables")
        drop_tables(engine)

    create_tables(engine)

    logger.info("database_initialized_successfully")
    return engine
