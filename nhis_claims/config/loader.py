"""
YAML configuration loader for the NHIS claims core.

A configuration file is a mapping of section name (``database``,
``finance``, ``logging``) to that section's settings. String values may
reference the environment as ${VAR} or ${VAR:-default}.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from nhis_claims.config.models import CoreConfig
from nhis_claims.config.validation import ConfigurationError


DEFAULT_CONFIG_PATHS = [
    Path("config/nhis_claims.yaml"),
    Path("nhis_claims.yaml"),
    Path.home() / ".nhis_claims" / "config.yaml",
]

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")

Sections = dict[str, dict[str, Any]]


def _expand_env(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return _ENV_REFERENCE.sub(
        lambda m: os.environ.get(m["name"], m["default"] or ""),
        value,
    )


def read_sections(path: Path) -> Sections:
    """
    Read a configuration file into its sections, expanding env references.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If the file is not a mapping of sections
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping of sections")

    sections: Sections = {}
    for name, settings in raw.items():
        if settings is None:
            continue
        if not isinstance(settings, dict):
            raise ConfigurationError(f"Section '{name}' in {path} must be a mapping")
        sections[name] = {key: _expand_env(value) for key, value in settings.items()}
    return sections


def merge_sections(base: Sections, overrides: Sections) -> Sections:
    """Overlay override settings onto a copy of base, section by section."""
    merged = {name: dict(settings) for name, settings in base.items()}
    for name, settings in overrides.items():
        merged.setdefault(name, {}).update(settings)
    return merged


def load_config(
    config_path: str | Path | None = None,
    override_values: Sections | None = None,
) -> CoreConfig:
    """
    Load configuration from a YAML file.

    When no default file exists the default configuration is returned.
    An explicit path that does not exist is an error.

    Args:
        config_path: Path to configuration YAML file. If None, the default
                    locations are searched.
        override_values: Per-section settings applied on top of the file

    Returns:
        Validated CoreConfig object

    Raises:
        FileNotFoundError: If an explicit configuration file is not found
        ConfigurationError: If the file is not a mapping of sections
        pydantic.ValidationError: If configuration is invalid
    """
    sections: Sections = {}

    if config_path is not None:
        sections = read_sections(Path(config_path))
    else:
        found = next((p for p in DEFAULT_CONFIG_PATHS if p.exists()), None)
        if found is not None:
            sections = read_sections(found)

    if override_values:
        sections = merge_sections(sections, override_values)

    return CoreConfig(**sections)
