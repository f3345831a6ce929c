"""
Pydantic configuration models for the NHIS claims core.

These models define the structure and validation for service configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: Optional[str] = Field(
        default=None,
        description=(
            "Full SQLAlchemy URL (e.g. sqlite:///claims.db). "
            "When set, host/port/database/username/password are ignored."
        ),
    )
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    database: str = Field(default="nhis_claims", description="Database name")
    username: str = Field(default="nhis", description="Database username")
    password: str = Field(default="", description="Database password")
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size (ignored for SQLite)",
    )
    isolation_level: Optional[str] = Field(
        default=None,
        description="Transaction isolation level passed to the engine, e.g. SERIALIZABLE",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")

    @field_validator("isolation_level")
    @classmethod
    def known_isolation_level(cls, v: Optional[str]) -> Optional[str]:
        """Restrict isolation levels to those SQLAlchemy understands."""
        if v is None:
            return v
        allowed = {"SERIALIZABLE", "REPEATABLE READ", "READ COMMITTED", "READ UNCOMMITTED", "AUTOCOMMIT"}
        value = v.upper().replace("_", " ")
        if value not in allowed:
            raise ValueError(f"Unknown isolation level: {v}")
        return value

    @property
    def connection_string(self) -> str:
        """Build the SQLAlchemy connection string."""
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg://{self.username}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.startswith("sqlite")


class FinanceConfig(BaseModel):
    """Money handling and reconciliation settings."""

    currency_code: str = Field(default="NGN", min_length=3, max_length=3, description="ISO 4217 code")
    currency_places: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Minor-unit precision used when rounding fees (banker's rounding)",
    )
    default_admin_fee_percentage: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Admin fee applied when a reimbursement request does not specify one",
    )
    max_admin_fee_percentage: Decimal = Field(
        default=Decimal("20"),
        ge=0,
        le=100,
        description="Upper bound accepted for admin fee percentages",
    )
    bulk_reference_width: int = Field(
        default=3,
        ge=1,
        le=6,
        description="Zero-padded width of the sequence suffix on bulk reimbursement references",
    )


class LoggingConfig(BaseModel):
    """Logging output settings."""

    level: str = Field(default="INFO", description="Log level")
    json_output: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        """Ensure the level is one the logging module knows."""
        value = v.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return value


class CoreConfig(BaseSettings):
    """
    Root configuration.

    Values can be loaded from YAML files and overridden via environment
    variables prefixed with NHIS_CLAIMS_ (nested with a double underscore,
    e.g. NHIS_CLAIMS_DATABASE__URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="NHIS_CLAIMS_",
        env_nested_delimiter="__",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    finance: FinanceConfig = Field(default_factory=FinanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
