"""Loaders for policy rules and governed configuration files."""

from envpolicy.loaders.repository import (
    RepositoryLoadError,
    discover_config_files,
    load_file,
    load_repository,
)
from envpolicy.loaders.resources import ConfigLoadError, get_nested_property
from envpolicy.loaders.rules import RuleLoadError, load_rules, load_single_rule

__all__ = [
    "ConfigLoadError",
    "RepositoryLoadError",
    "RuleLoadError",
    "discover_config_files",
    "get_nested_property",
    "load_file",
    "load_repository",
    "load_rules",
    "load_single_rule",
]
