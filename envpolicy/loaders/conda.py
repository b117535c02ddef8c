"""Loader for conda environment files, .condarc and conda lock files."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from envpolicy.loaders.pip import requirement_values
from envpolicy.loaders.resources import (
    ConfigLoadError,
    make_resource,
    read_text,
    unique_name,
)
from envpolicy.loaders.yamlsupport import line_of, load_yaml_document

log = logging.getLogger("envpolicy.loaders.conda")

# conda's documented defaults for keys a .condarc may leave out
CONDARC_DEFAULTS = {
    "auto_activate_base": True,
    "channel_priority": "flexible",
    "ssl_verify": True,
    "always_yes": False,
    "pip_interop_enabled": False,
}

EXPLICIT_MARKER = "@EXPLICIT"

# conda writes the marker after a short comment header
EXPLICIT_SCAN_BYTES = 64 * 1024

_SPEC_NAME = re.compile(r"^([A-Za-z0-9_.\-]+)\s*(.*)$")
_SPEC_OPERATOR = re.compile(r"^(==|>=|<=|!=|~=|=|>|<)?\s*(.*)$")
_RANGE_CHARS = set("*,|<>!~ ")
_PLATFORM_COMMENT = re.compile(r"^#\s*platform:\s*(\S+)", re.MULTILINE)


class CondaLoadError(ConfigLoadError):
    """Exception raised when a conda file cannot be loaded."""

    pass


def parse_conda_spec(spec: str) -> Dict[str, Any]:
    """Parse a conda match spec such as 'conda-forge::numpy=1.26.4=py311_0'.

    Handles the forms found in environment files:
        numpy                   -> unpinned
        numpy=1.26.4            -> pinned
        numpy==1.26.4           -> pinned
        numpy 1.26.4 py311_0    -> pinned (space separated)
        numpy=1.26.4=py311_0    -> pinned with build string
        numpy>=1.20 / numpy=1.* -> not pinned

    '=' is treated as a pin when its version carries no wildcard or range.
    """
    raw = spec.strip()
    channel = None
    remainder = raw

    if "::" in remainder:
        channel, remainder = remainder.split("::", 1)

    match = _SPEC_NAME.match(remainder.strip())
    if not match:
        return {
            "name": raw,
            "spec": raw,
            "channel": channel,
            "operator": None,
            "version": None,
            "build": None,
            "pinned": False,
        }

    name, rest = match.group(1), match.group(2).strip()
    operator: Optional[str] = None
    version: Optional[str] = None
    build: Optional[str] = None

    if rest:
        if rest[0].isdigit() and " " in rest:
            # Space separated form: "1.26.4 py311_0"
            parts = rest.split()
            operator, version = "==", parts[0]
            build = parts[1] if len(parts) > 1 else None
        else:
            op_match = _SPEC_OPERATOR.match(rest)
            operator = op_match.group(1)
            version = op_match.group(2).strip() or None
            if operator in ("=", "==") and version and "=" in version:
                version, build = version.split("=", 1)
            if operator is None and version:
                # Bare version after the name without an operator ("numpy 1.26.4")
                operator = "=="

    pinned = (
        operator in ("=", "==")
        and bool(version)
        and not any(c in _RANGE_CHARS for c in version)
    )

    return {
        "name": name,
        "spec": raw,
        "channel": channel,
        "operator": operator,
        "version": version,
        "build": build,
        "pinned": pinned,
    }


def load_environment_file(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load an environment.yml into resources.

    Produces a 'conda_environment' resource for the file, a 'conda_dependency'
    per conda package, and a 'pip_requirement' per entry in the pip section.

    Raises:
        CondaLoadError: If the file is not valid YAML or not a mapping
    """
    text = read_text(path, CondaLoadError)
    data, root = load_yaml_document(text, rel_path, CondaLoadError)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CondaLoadError(f"{rel_path} must contain a mapping at the top level")

    channels = data.get("channels") or []
    if not isinstance(channels, list):
        channels = [channels]
    channels = [str(c) for c in channels]

    dependencies = data.get("dependencies") or []
    if not isinstance(dependencies, list):
        raise CondaLoadError(f"'dependencies' in {rel_path} must be a list")

    resources: List[Dict[str, Any]] = []
    seen: Dict[str, int] = {}
    conda_deps: List[Dict[str, Any]] = []
    pip_deps: List[Dict[str, Any]] = []
    has_pip_section = False

    for index, entry in enumerate(dependencies):
        if isinstance(entry, (str, int, float)):
            values = parse_conda_spec(str(entry))
            values["parent"] = rel_path
            conda_deps.append(values)
            name = unique_name(values["name"], seen)
            resources.append(
                make_resource(
                    "conda_dependency",
                    name,
                    values,
                    rel_path,
                    line=line_of(root, ["dependencies", index]),
                )
            )

        elif isinstance(entry, dict) and "pip" in entry:
            has_pip_section = True
            pip_entries = entry.get("pip") or []
            if not isinstance(pip_entries, list):
                raise CondaLoadError(f"'pip' in {rel_path} must be a list of requirements")
            for pip_index, requirement in enumerate(pip_entries):
                values = requirement_values(str(requirement))
                if values is None:
                    log.warning(
                        "%s: skipping unparseable pip requirement %r", rel_path, requirement
                    )
                    continue
                values["parent"] = rel_path
                pip_deps.append(values)
                name = unique_name(values["name"], seen)
                resources.append(
                    make_resource(
                        "pip_requirement",
                        name,
                        values,
                        rel_path,
                        line=line_of(root, ["dependencies", index, "pip", pip_index]),
                    )
                )

        else:
            log.debug("%s: ignoring dependency entry %r", rel_path, entry)

    env_values = {
        "name": data.get("name"),
        "channels": channels,
        "channel_count": len(channels),
        "dependency_count": len(conda_deps),
        "unpinned_count": sum(1 for v in conda_deps if not v["pinned"]),
        "pip_dependency_count": len(pip_deps),
        "has_pip_section": has_pip_section,
        "pip_listed": any(v["name"] == "pip" for v in conda_deps),
        "has_prefix": "prefix" in data,
        "prefix": data.get("prefix"),
    }

    resources.insert(
        0,
        make_resource(
            "conda_environment",
            str(data.get("name") or path.name),
            env_values,
            rel_path,
            line=line_of(root, ["name"]),
            address=rel_path,
        ),
    )

    log.debug(
        "Loaded environment %s: %d conda and %d pip dependencies",
        rel_path,
        len(conda_deps),
        len(pip_deps),
    )
    return resources


def load_condarc(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load a .condarc into a single 'conda_config' resource.

    Keys the file leaves out take conda's defaults, so a missing
    auto_activate_base reads as True.

    Raises:
        CondaLoadError: If the file is not valid YAML or not a mapping
    """
    text = read_text(path, CondaLoadError)
    data, root = load_yaml_document(text, rel_path, CondaLoadError)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CondaLoadError(f"{rel_path} must contain a mapping at the top level")

    values: Dict[str, Any] = dict(CONDARC_DEFAULTS)
    values.update(data)

    # conda 25.x renamed the setting; honor either spelling
    if "auto_activate" in data and "auto_activate_base" not in data:
        values["auto_activate_base"] = data["auto_activate"]

    channels = values.get("channels") or []
    if not isinstance(channels, list):
        channels = [channels]
    values["channels"] = [str(c) for c in channels]
    values["default_channels"] = [str(c) for c in values.get("default_channels") or []]
    values["custom_channels"] = values.get("custom_channels") or {}
    values["defaults_channel_used"] = "defaults" in values["channels"]
    values["explicit_keys"] = sorted(str(k) for k in data.keys())

    return [
        make_resource(
            "conda_config",
            path.name,
            values,
            rel_path,
            line=line_of(root, ["auto_activate_base"]),
            address=rel_path,
        )
    ]


def load_conda_lock(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load a conda-lock.yml (unified lock file format).

    Raises:
        CondaLoadError: If the file is not valid YAML or lacks a package list
    """
    text = read_text(path, CondaLoadError)
    data, _ = load_yaml_document(text, rel_path, CondaLoadError)

    if not isinstance(data, dict):
        raise CondaLoadError(f"{rel_path} must contain a mapping at the top level")

    packages = data.get("package")
    if not isinstance(packages, list):
        raise CondaLoadError(f"{rel_path} is missing the 'package' list of a conda-lock file")

    metadata = data.get("metadata") or {}
    platforms = metadata.get("platforms") if isinstance(metadata, dict) else None

    values = {
        "format": "conda-lock",
        "package_count": len(packages),
        "platforms": list(platforms or []),
        "version": data.get("version"),
    }
    return [make_resource("conda_lockfile", path.name, values, rel_path, address=rel_path)]


def has_explicit_marker(path: Path, rel_path: str) -> bool:
    """Whether the first EXPLICIT_SCAN_BYTES of a file carry the @EXPLICIT marker."""
    try:
        with open(path, "rb") as fh:
            head = fh.read(EXPLICIT_SCAN_BYTES)
    except OSError as e:
        log.warning("Could not read %s to look for %s: %s", rel_path, EXPLICIT_MARKER, e)
        return False
    return EXPLICIT_MARKER.encode("ascii") in head


def load_explicit_lock(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load an @EXPLICIT spec file (conda list --explicit / conda-lock --kind explicit).

    Candidate .lock and .txt files without the marker belong to other tools
    (poetry.lock, Cargo.lock, notes.txt) and produce no resources. Only the
    head of a candidate is sniffed, so large or binary files from those tools
    never reach the size and encoding checks.
    """
    if not has_explicit_marker(path, rel_path):
        log.debug("%s has no %s marker, skipping", rel_path, EXPLICIT_MARKER)
        return []

    text = read_text(path, CondaLoadError)

    package_lines = [
        line
        for line in text.splitlines()
        if line.strip().startswith(("http://", "https://", "file://"))
    ]

    values = {
        "format": "explicit",
        "package_count": len(package_lines),
        "platforms": _PLATFORM_COMMENT.findall(text),
        "version": None,
    }
    return [make_resource("conda_lockfile", path.name, values, rel_path, address=rel_path)]
