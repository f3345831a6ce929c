"""
Configuration validation for the NHIS claims core.

Provides additional validation beyond Pydantic model validation.
"""

import structlog
from sqlalchemy import create_engine, text

from nhis_claims.config.models import CoreConfig

logger = structlog.get_logger()


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""

    pass


def validate_config(config: CoreConfig) -> list[str]:
    """
    Validate configuration.

    Performs cross-field checks that the Pydantic models cannot express.

    Args:
        config: CoreConfig to validate

    Returns:
        List of warning messages (non-fatal issues)

    Raises:
        ConfigurationError: If configuration has fatal issues
    """
    warnings: list[str] = []
    errors: list[str] = []

    finance = config.finance
    if finance.default_admin_fee_percentage > finance.max_admin_fee_percentage:
        errors.append(
            f"default_admin_fee_percentage ({finance.default_admin_fee_percentage}) exceeds "
            f"max_admin_fee_percentage ({finance.max_admin_fee_percentage})"
        )

    if finance.currency_places != 2:
        warnings.append(
            f"currency_places is {finance.currency_places}; most currencies use 2 minor-unit places."
        )

    db = config.database
    if db.is_sqlite:
        if ":memory:" in db.connection_string or db.connection_string.rstrip("/") == "sqlite:":
            warnings.append("In-memory SQLite loses all records on exit. Use a file or PostgreSQL.")
        if db.isolation_level not in (None, "SERIALIZABLE"):
            warnings.append("SQLite always runs serializable; isolation_level is ignored.")
    elif not db.password:
        warnings.append("Database password is empty.")

    if db.isolation_level == "AUTOCOMMIT":
        errors.append("AUTOCOMMIT isolation breaks atomic status changes; use a transactional level.")

    for warning in warnings:
        logger.warning("config_validation_warning", message=warning)

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return warnings


def validate_database_connection(config: CoreConfig) -> bool:
    """
    Test database connection using configuration.

    Args:
        config: CoreConfig with database settings

    Returns:
        True if connection successful

    Raises:
        ConfigurationError: If connection fails
    """
    try:
        engine = create_engine(config.database.connection_string)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        return True
    except Exception as e:
        raise ConfigurationError(f"Database connection failed: {e}") from e
