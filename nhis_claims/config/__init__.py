"""
Configuration module for the NHIS claims core.

This module provides:
- Pydantic configuration models
- YAML configuration loading
- Configuration validation
"""

from nhis_claims.config.models import (
    CoreConfig,
    DatabaseConfig,
    FinanceConfig,
    LoggingConfig,
)
from nhis_claims.config.loader import load_config
from nhis_claims.config.validation import ConfigurationError, validate_config

__all__ = [
    "CoreConfig",
    "DatabaseConfig",
    "FinanceConfig",
    "LoggingConfig",
    "load_config",
    "ConfigurationError",
    "validate_config",
]
