"""
Database module for the NHIS claims core.

Provides:
- Table definitions (SQLAlchemy Core)
- Connection management and the atomic transaction boundary
- Database initialization
"""

from nhis_claims.db.connection import (
    create_engine_from_config,
    get_connection_string,
    transaction,
)
from nhis_claims.db.schema import metadata

__all__ = [
    "create_engine_from_config",
    "get_connection_string",
    "transaction",
    "metadata",
]
