"""Normalized resource helpers shared by the configuration loaders."""

from pathlib import Path
from typing import Any, Dict, List, Optional

from envpolicy.security import (
    MAX_ARRAY_INDEX,
    SecurityError,
    validate_file_size,
    validate_property_path,
)


class ConfigLoadError(Exception):
    """Exception raised when a configuration file cannot be loaded."""

    pass


def make_resource(
    resource_type: str,
    name: str,
    values: Dict[str, Any],
    file: str,
    line: Optional[int] = None,
    address: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a normalized resource dictionary.

    File-level resources are addressed by their file path; resources parsed
    out of a file (dependencies, pipeline steps) by '<file>:<name>'.

    Returns:
        {
            "address": "envs/environment.yml:numpy",
            "type": "conda_dependency",
            "name": "numpy",
            "values": {...},
            "file": "envs/environment.yml",
            "line": 7
        }
    """
    return {
        "address": address if address is not None else f"{file}:{name}",
        "type": resource_type,
        "name": name,
        "values": values,
        "file": file,
        "line": line,
    }


def read_text(path: Path, error_cls: type = ConfigLoadError) -> str:
    """Read a configuration file after the size check.

    utf-8-sig strips the BOM that Windows editors like to add.
    """
    try:
        validate_file_size(path)
        return path.read_text(encoding="utf-8-sig")
    except (SecurityError, ValueError) as e:
        raise error_cls(f"Security validation failed for {path.name}: {e}")
    except UnicodeDecodeError as e:
        raise error_cls(f"{path.name} is not valid UTF-8 text: {e}")
    except OSError as e:
        raise error_cls(f"Error reading {path.name}: {e}")


def get_resources_by_type(
    resources: List[Dict[str, Any]], resource_type: str
) -> List[Dict[str, Any]]:
    """Filter resources by type."""
    return [r for r in resources if r["type"] == resource_type]


def get_nested_property(obj: Dict[str, Any], path: str) -> Any:
    """Get a nested property from an object using dot notation.

    Supports accessing nested dictionaries and list indices.
    Returns None if path doesn't exist.

    Args:
        obj: Dictionary to traverse
        path: Dot-notation path (e.g., 'inputs.versionSpec' or 'repositories.0.url')

    Returns:
        Value at the specified path, or None if not found

    Examples:
        >>> get_nested_property({"pool": {"vmImage": "ubuntu-22.04"}}, "pool.vmImage")
        'ubuntu-22.04'

        >>> get_nested_property({"channels": ["internal", "conda-forge"]}, "channels.0")
        'internal'
    """
    if not obj or not path:
        return None

    try:
        validate_property_path(path)
    except (ValueError, SecurityError):
        # Malformed paths read as missing rather than aborting the scan
        return None

    current: Any = obj

    for part in path.split("."):
        if current is None:
            return None

        if isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return None
            if index < 0 or index >= MAX_ARRAY_INDEX or index >= len(current):
                return None
            current = current[index]

        elif isinstance(current, dict):
            current = current.get(part)

        else:
            return None

    return current


def unique_name(name: str, seen: Dict[str, int]) -> str:
    """Disambiguate repeated names within one file (name, name#2, name#3)."""
    count = seen.get(name, 0) + 1
    seen[name] = count
    return name if count == 1 else f"{name}#{count}"


def is_insecure_url(url: Any) -> bool:
    """True for plain-http package sources."""
    return isinstance(url, str) and url.strip().lower().startswith("http://")
