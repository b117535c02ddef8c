"""Project configuration loaded from .envpolicy.yml."""

import logging
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from envpolicy.security import (
    SecurityError,
    validate_document_depth,
    validate_file_size,
    validate_safe_path,
    ALLOWED_CONFIG_EXTENSIONS,
)

log = logging.getLogger("envpolicy.config")

CONFIG_FILENAMES = (".envpolicy.yml", ".envpolicy.yaml")
DEFAULT_RULES_DIR = ".envpolicy"


class ConfigError(Exception):
    """Exception raised when the project configuration is invalid."""

    pass


class ProjectConfig(BaseModel):
    """Settings a repository can pin for every envpolicy run.

    Example .envpolicy.yml:
        rules_dir: policies
        format: azure
        strict: true
        categories: [reproducibility, security]
        exclude:
          - "legacy/**"
    """

    model_config = ConfigDict(extra="forbid")

    rules_dir: Optional[str] = Field(
        None,
        description="Directory containing policy rules, relative to the config file",
        min_length=1,
    )

    builtin: bool = Field(
        False,
        description="Evaluate the built-in governance policies instead of a rules directory",
    )

    format: Optional[Literal["terminal", "github", "azure", "json"]] = Field(
        None,
        description="Default output format",
    )

    strict: bool = Field(
        False,
        description="Treat warnings as errors",
    )

    categories: List[str] = Field(
        default_factory=list,
        description="Only evaluate rules in these categories",
    )

    exclude: List[str] = Field(
        default_factory=list,
        description="Glob patterns (relative to the scan root) to skip during discovery",
    )

    log_level: Optional[str] = Field(
        None,
        description="Log level name (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Optional[str]) -> Optional[str]:
        """Ensure log_level names a standard logging level."""
        if v is None:
            return v
        if not isinstance(logging.getLevelName(v.upper()), int):
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()


def find_config_file(root: Path) -> Optional[Path]:
    """Return the first config file present in root, if any."""
    for filename in CONFIG_FILENAMES:
        candidate = root / filename
        if candidate.is_file():
            return candidate
    return None


def load_config(config_path: Path, _allow_absolute: bool = False) -> ProjectConfig:
    """Load and validate a project configuration file.

    An empty file yields the default configuration. A relative rules_dir is
    resolved against the directory holding the config file.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or fails validation
    """
    try:
        path = validate_safe_path(
            str(config_path),
            must_exist=True,
            allowed_extensions=ALLOWED_CONFIG_EXTENSIONS,
            allow_absolute=_allow_absolute,
        )
        validate_file_size(path)
    except (SecurityError, ValueError) as e:
        raise ConfigError(f"Security validation failed: {e}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8-sig")) or {}
        validate_document_depth(data)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")
    except SecurityError as e:
        raise ConfigError(f"Security validation failed: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Error reading {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    try:
        config = ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}")

    if config.rules_dir is not None and not Path(config.rules_dir).is_absolute():
        config.rules_dir = str(path.parent / config.rules_dir)

    log.debug("Loaded configuration from %s", path)
    return config
