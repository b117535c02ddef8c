"""Loader for pip requirement files and pip configuration (pip.conf / pip.ini)."""

import configparser
import logging
import re
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from packaging.requirements import InvalidRequirement, Requirement

from envpolicy.loaders.resources import (
    ConfigLoadError,
    is_insecure_url,
    make_resource,
    read_text,
    unique_name,
)

log = logging.getLogger("envpolicy.loaders.pip")

PIP_COMPILE_MARKERS = ("autogenerated by pip-compile", "uv pip compile")

_HASH_OPTION = re.compile(r"\s--hash[=\s]+(\S+)")
_COMMENT = re.compile(r"(^|\s+)#.*$")
_EGG_FRAGMENT = re.compile(r"#egg=([A-Za-z0-9_.\-]+)")
_VCS_COMMIT = re.compile(r"@[0-9a-fA-F]{40}\b")

_GLOBAL_OPTIONS = {
    "-i": "index_url",
    "--index-url": "index_url",
    "--extra-index-url": "extra_index_url",
    "--trusted-host": "trusted_host",
    "-r": "include",
    "--requirement": "include",
    "-c": "constraint",
    "--constraint": "constraint",
    "-e": "editable",
    "--editable": "editable",
}


class PipLoadError(ConfigLoadError):
    """Exception raised when a pip requirement or config file cannot be loaded."""

    pass


def requirement_values(
    requirement: str,
    hashes: Optional[List[str]] = None,
    editable: bool = False,
) -> Optional[Dict[str, Any]]:
    """Parse a PEP 508 requirement string into resource values.

    Returns None when the string is not a valid requirement.

    A requirement is pinned when it names exactly one version with == or ===
    (no wildcard), or when it is a direct reference locked by hash or commit.
    """
    hashes = list(hashes or [])

    try:
        req = Requirement(requirement)
    except InvalidRequirement:
        return None

    specs = list(req.specifier)
    operator = specs[0].operator if len(specs) == 1 else None
    version = specs[0].version if len(specs) == 1 else None

    if req.url:
        pinned = bool(hashes) or "sha256=" in req.url or bool(_VCS_COMMIT.search(req.url))
    else:
        pinned = (
            len(specs) == 1
            and specs[0].operator in ("==", "===")
            and "*" not in specs[0].version
        )

    return {
        "name": req.name,
        "specifier": str(req.specifier),
        "operator": operator,
        "version": version,
        "pinned": pinned,
        "hashes": hashes,
        "has_hash": bool(hashes),
        "extras": sorted(req.extras),
        "marker": str(req.marker) if req.marker else None,
        "url": req.url,
        "editable": editable,
    }


def _editable_values(target: str) -> Dict[str, Any]:
    """Values for '-e <path-or-vcs-url>' lines, which are not PEP 508."""
    egg = _EGG_FRAGMENT.search(target)
    if egg:
        name = egg.group(1)
    else:
        name = target.rstrip("/").split("/")[-1] or target
    return {
        "name": name,
        "specifier": "",
        "operator": None,
        "version": None,
        "pinned": bool(_VCS_COMMIT.search(target)),
        "hashes": [],
        "has_hash": False,
        "extras": [],
        "marker": None,
        "url": target,
        "editable": True,
    }


def _logical_lines(text: str) -> List[Tuple[int, str]]:
    """Join backslash continuations and strip comments.

    Returns (starting line number, content) for each non-blank logical line.
    """
    lines: List[Tuple[int, str]] = []
    buffer = ""
    start = 0

    for number, raw in enumerate(text.splitlines(), start=1):
        if not buffer:
            start = number
        stripped = _COMMENT.sub("", raw).rstrip()
        if stripped.endswith("\\"):
            buffer += stripped[:-1] + " "
            continue
        buffer += stripped
        if buffer.strip():
            lines.append((start, buffer.strip()))
        buffer = ""

    if buffer.strip():
        lines.append((start, buffer.strip()))

    return lines


def _split_option(line: str) -> Tuple[str, str]:
    """Split '--opt value' / '--opt=value' / '-ivalue' into (option, value)."""
    if line.startswith("--"):
        head, sep, tail = line.partition("=")
        if sep and " " not in head:
            return head, tail.strip()
        parts = line.split(None, 1)
        return parts[0], parts[1].strip() if len(parts) > 1 else ""

    # Short options allow the value to be glued on: -rbase.txt
    option = line[:2]
    return option, line[2:].strip()


def parse_requirements_text(text: str) -> Dict[str, Any]:
    """Parse requirements.txt content.

    Returns a dict with 'requirements' (list of (line, values)) and the
    file-level settings found in option lines.
    """
    parsed: Dict[str, Any] = {
        "requirements": [],
        "index_url": None,
        "extra_index_urls": [],
        "trusted_hosts": [],
        "includes": [],
        "constraints": [],
        "options": [],
        "invalid_lines": [],
        "compiled": any(marker in text for marker in PIP_COMPILE_MARKERS),
    }

    for number, line in _logical_lines(text):
        if line.startswith("-"):
            option, value = _split_option(line)
            kind = _GLOBAL_OPTIONS.get(option)

            if kind == "index_url":
                parsed["index_url"] = value
            elif kind == "extra_index_url":
                parsed["extra_index_urls"].append(value)
            elif kind == "trusted_host":
                parsed["trusted_hosts"].append(value)
            elif kind == "include":
                parsed["includes"].append(value)
            elif kind == "constraint":
                parsed["constraints"].append(value)
            elif kind == "editable":
                try:
                    target = shlex.split(value)[0] if value else value
                except ValueError as e:
                    log.debug("Unparseable editable on line %d: %s (%s)", number, line, e)
                    parsed["invalid_lines"].append(number)
                    continue
                parsed["requirements"].append((number, _editable_values(target)))
            else:
                parsed["options"].append(line)
            continue

        hashes = _HASH_OPTION.findall(" " + line)
        requirement = _HASH_OPTION.sub("", " " + line).strip()
        values = requirement_values(requirement, hashes=hashes)

        if values is None:
            log.debug("Unparseable requirement on line %d: %s", number, line)
            parsed["invalid_lines"].append(number)
            continue

        parsed["requirements"].append((number, values))

    return parsed


def load_requirements_file(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load a requirements.txt (lock) or requirements.in (pip-tools input) file.

    Produces one file-level resource ('requirements_file' or
    'pip_requirements_input') plus one 'pip_requirement' per requirement.

    Raises:
        PipLoadError: If the file cannot be read
    """
    text = read_text(path, PipLoadError)
    parsed = parse_requirements_text(text)

    is_input = path.suffix.lower() == ".in"
    file_type = "pip_requirements_input" if is_input else "requirements_file"

    resources: List[Dict[str, Any]] = []
    seen: Dict[str, int] = {}

    for line, values in parsed["requirements"]:
        values["parent"] = rel_path
        name = unique_name(values["name"], seen)
        resources.append(make_resource("pip_requirement", name, values, rel_path, line=line))

    requirements = [values for _, values in parsed["requirements"]]
    hashed_count = sum(1 for v in requirements if v["has_hash"])
    indexes = [parsed["index_url"]] + parsed["extra_index_urls"]

    file_values = {
        "kind": "input" if is_input else "lock",
        "requirement_count": len(requirements),
        "unpinned_count": sum(1 for v in requirements if not v["pinned"]),
        "hashed_count": hashed_count,
        "all_hashed": hashed_count == len(requirements),
        "index_url": parsed["index_url"],
        "extra_index_urls": parsed["extra_index_urls"],
        "trusted_hosts": parsed["trusted_hosts"],
        "insecure_index_count": sum(1 for url in indexes if is_insecure_url(url)),
        "includes": parsed["includes"],
        "constraints": parsed["constraints"],
        "options": parsed["options"],
        "invalid_lines": parsed["invalid_lines"],
        "compiled": parsed["compiled"],
    }

    resources.insert(
        0, make_resource(file_type, path.name, file_values, rel_path, address=rel_path)
    )

    log.debug("Loaded %d requirement(s) from %s", len(requirements), rel_path)
    return resources


def _split_multi(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return value.split()


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return None


def load_pip_config(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load pip.conf / pip.ini into a single 'pip_config' resource.

    [install] overrides [global], matching pip's own precedence for the
    install command.

    Raises:
        PipLoadError: If the file is not valid INI
    """
    text = read_text(path, PipLoadError)

    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(text, source=rel_path)
    except configparser.Error as e:
        raise PipLoadError(f"Invalid pip configuration in {rel_path}: {e}")

    sections: Dict[str, Dict[str, str]] = {}
    for section in parser.sections():
        sections[section] = {
            key.replace("_", "-"): value for key, value in parser.items(section)
        }

    merged: Dict[str, str] = {}
    for section in ("global", "install"):
        merged.update(sections.get(section, {}))

    index_url = merged.get("index-url")
    extra_index_urls = _split_multi(merged.get("extra-index-url"))
    trusted_hosts = _split_multi(merged.get("trusted-host"))
    indexes = [index_url] + extra_index_urls

    values = {
        "index_url": index_url,
        "extra_index_urls": extra_index_urls,
        "trusted_hosts": trusted_hosts,
        "trusted_host_count": len(trusted_hosts),
        "insecure_index_count": sum(1 for url in indexes if is_insecure_url(url)),
        "require_virtualenv": _parse_bool(merged.get("require-virtualenv")),
        "timeout": merged.get("timeout"),
        "sections": sections,
    }

    return [make_resource("pip_config", path.name, values, rel_path, address=rel_path)]
