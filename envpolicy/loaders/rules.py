"""Loader for policy rule files."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from envpolicy.models.rule import Rule
from envpolicy.security import (
    ALLOWED_RULE_EXTENSIONS,
    MAX_FILE_SIZE,
    SecurityError,
    validate_document_depth,
    validate_file_size,
    validate_safe_directory,
    validate_safe_path,
)

log = logging.getLogger("envpolicy.loaders.rules")


class RuleLoadError(Exception):
    """Exception raised when rule loading fails."""

    pass


def _parse_rule_file(rule_file: Path) -> Dict[str, Any]:
    """Read a JSON or YAML rule document.

    Raises:
        json.JSONDecodeError, yaml.YAMLError: On syntax errors
        ValueError: If the document is not a single rule object
    """
    text = rule_file.read_text(encoding="utf-8-sig")

    if rule_file.suffix.lower() == ".json":
        rule_data = json.loads(text)
    else:
        rule_data = yaml.safe_load(text)

    validate_document_depth(rule_data)

    if not isinstance(rule_data, dict):
        raise ValueError("rule file must contain a single rule object")

    return rule_data


def load_rules(rules_path: str, _allow_absolute: bool = False) -> List[Rule]:
    """Load and validate all rules from a directory.

    Recursively discovers all .json, .yml and .yaml files in the specified
    directory, parses them, and validates them against the Rule schema.

    Args:
        rules_path: Path to directory containing rule files
        _allow_absolute: Internal parameter for testing - allows absolute paths

    Returns:
        List of validated Rule objects, sorted by id

    Raises:
        RuleLoadError: If rules_path doesn't exist, isn't a directory,
                      any rule fails validation, or two rules share an id
    """
    try:
        path = validate_safe_directory(
            rules_path,
            must_exist=True,
            allow_absolute=_allow_absolute,
        )
    except (SecurityError, ValueError) as e:
        raise RuleLoadError(f"Security validation failed: {e}")

    rule_files = sorted(
        p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in ALLOWED_RULE_EXTENSIONS
    )

    if not rule_files:
        raise RuleLoadError(f"No rule files (*.json, *.yml, *.yaml) found in: {rules_path}")

    rules: List[Rule] = []
    errors: List[str] = []
    origins: Dict[str, Path] = {}

    for rule_file in rule_files:
        try:
            # Each rule file must stay inside the rules directory
            try:
                validate_safe_path(
                    str(rule_file),
                    base_dir=str(path),
                    must_exist=True,
                    allowed_extensions=ALLOWED_RULE_EXTENSIONS,
                    allow_absolute=_allow_absolute,
                )
                validate_file_size(rule_file, max_size=MAX_FILE_SIZE)
            except (SecurityError, ValueError) as e:
                errors.append(f"{rule_file}: Security validation failed - {e}")
                continue

            rule = Rule(**_parse_rule_file(rule_file))

            if rule.id in origins:
                errors.append(
                    f"{rule_file}: Duplicate rule id '{rule.id}' (already defined in {origins[rule.id]})"
                )
                continue

            origins[rule.id] = rule_file
            rules.append(rule)

        except json.JSONDecodeError as e:
            errors.append(f"{rule_file}: Invalid JSON - {e}")

        except yaml.YAMLError as e:
            errors.append(f"{rule_file}: Invalid YAML - {e}")

        except ValidationError as e:
            errors.append(f"{rule_file}: Validation failed - {e}")

        except Exception as e:
            errors.append(f"{rule_file}: Unexpected error - {e}")

    if errors:
        error_msg = "Failed to load one or more rules:\n" + "\n".join(errors)
        raise RuleLoadError(error_msg)

    rules.sort(key=lambda r: r.id)

    log.debug("Loaded %d rule(s) from %s", len(rules), path)
    return rules


def load_single_rule(rule_file_path: str, _allow_absolute: bool = False) -> Rule:
    """Load and validate a single rule file.

    Args:
        rule_file_path: Path to a single rule JSON or YAML file
        _allow_absolute: Internal parameter for testing - allows absolute paths

    Returns:
        Validated Rule object

    Raises:
        RuleLoadError: If file doesn't exist or validation fails
    """
    try:
        path = validate_safe_path(
            rule_file_path,
            must_exist=True,
            allowed_extensions=ALLOWED_RULE_EXTENSIONS,
            allow_absolute=_allow_absolute,
        )
        validate_file_size(path, max_size=MAX_FILE_SIZE)
    except (SecurityError, ValueError) as e:
        raise RuleLoadError(f"Security validation failed: {e}")

    try:
        return Rule(**_parse_rule_file(path))

    except json.JSONDecodeError as e:
        raise RuleLoadError(f"Invalid JSON in {rule_file_path}: {e}")

    except yaml.YAMLError as e:
        raise RuleLoadError(f"Invalid YAML in {rule_file_path}: {e}")

    except ValidationError as e:
        raise RuleLoadError(f"Rule validation failed for {rule_file_path}: {e}")

    except Exception as e:
        raise RuleLoadError(f"Error loading rule from {rule_file_path}: {e}")
