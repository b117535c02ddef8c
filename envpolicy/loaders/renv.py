"""Loader for renv lock files and .Rprofile."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from envpolicy.loaders.resources import (
    ConfigLoadError,
    is_insecure_url,
    make_resource,
    read_text,
)
from envpolicy.security import SecurityError, validate_document_depth

log = logging.getLogger("envpolicy.loaders.renv")

# Package sources that resolve through a versioned repository snapshot
REPOSITORY_SOURCES = ("Repository", "Bioconductor")

_RENV_ACTIVATE = re.compile(r"""source\(\s*["']renv/activate\.R["']\s*\)""")
_REPOS_VECTOR = re.compile(r"repos\s*=\s*c\(([^)]*)\)")
_REPOS_SCALAR = re.compile(r"""repos\s*=\s*["']([^"']+)["']""")
_NAMED_URL = re.compile(r"""["']?([A-Za-z][\w.]*)["']?\s*=\s*["']([^"']+)["']""")
_INDEXED_ASSIGN = re.compile(
    r"""\w+\[\s*["']([\w.]+)["']\s*\]\s*(?:<-|=)\s*["']([^"']+)["']"""
)
_OPTIONS_CALL = re.compile(r"\boptions\s*\(")
_ARG_NAME = re.compile(r"""^\s*["'`]?([A-Za-z.][\w.]*)["'`]?\s*=(?!=)""")


class RenvLoadError(ConfigLoadError):
    """Exception raised when an renv lock file or .Rprofile cannot be loaded."""

    pass


def _find_line(text: str, needle: str) -> Optional[int]:
    index = text.find(needle)
    if index < 0:
        return None
    return text.count("\n", 0, index) + 1


def load_renv_lock(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load renv.lock into an 'renv_lockfile' resource plus one 'renv_package' per package.

    Raises:
        RenvLoadError: If the file is not valid JSON or lacks the R section
    """
    text = read_text(path, RenvLoadError)

    try:
        data = json.loads(text)
        validate_document_depth(data)
    except json.JSONDecodeError as e:
        raise RenvLoadError(f"Invalid JSON in {rel_path}: {e}")
    except SecurityError as e:
        raise RenvLoadError(f"Security validation failed for {rel_path}: {e}")

    if not isinstance(data, dict):
        raise RenvLoadError(f"{rel_path} must contain a JSON object")

    r_section = data.get("R")
    if not isinstance(r_section, dict):
        raise RenvLoadError(f"{rel_path} is missing the 'R' section of an renv lockfile")

    repositories = []
    for repo in r_section.get("Repositories") or []:
        if isinstance(repo, dict):
            repositories.append({"name": repo.get("Name"), "url": repo.get("URL")})
    repository_urls = [r["url"] for r in repositories if r["url"]]

    packages = data.get("Packages") or {}
    if not isinstance(packages, dict):
        raise RenvLoadError(f"'Packages' in {rel_path} must be an object")

    resources: List[Dict[str, Any]] = []

    for key, record in sorted(packages.items()):
        if not isinstance(record, dict):
            log.debug("%s: ignoring malformed package entry %r", rel_path, key)
            continue

        name = record.get("Package") or key
        source = record.get("Source")
        version = record.get("Version")
        remote_sha = record.get("RemoteSha")

        if source in REPOSITORY_SOURCES:
            pinned = bool(version)
        else:
            pinned = bool(version) and bool(remote_sha)

        values = {
            "name": name,
            "version": version,
            "source": source,
            "repository": record.get("Repository"),
            "has_hash": bool(record.get("Hash")),
            "remote_type": record.get("RemoteType"),
            "remote_sha": remote_sha,
            "pinned": pinned,
            "parent": rel_path,
        }
        resources.append(
            make_resource(
                "renv_package",
                name,
                values,
                rel_path,
                line=_find_line(text, f'"{key}": {{'),
            )
        )

    renv_record = packages.get("renv") if isinstance(packages.get("renv"), dict) else {}

    lock_values = {
        "r_version": r_section.get("Version"),
        "repositories": repositories,
        "repository_urls": repository_urls,
        "insecure_repository_count": sum(1 for url in repository_urls if is_insecure_url(url)),
        "package_count": len(resources),
        "renv_version": renv_record.get("Version"),
    }

    resources.insert(
        0,
        make_resource(
            "renv_lockfile",
            path.name,
            lock_values,
            rel_path,
            line=_find_line(text, '"R"'),
            address=rel_path,
        ),
    )

    log.debug("Loaded %d R package(s) from %s", len(resources) - 1, rel_path)
    return resources


def strip_r_comments(text: str) -> str:
    """Remove '#' comments from R source, leaving '#' inside strings alone."""
    cleaned = []
    for line in text.splitlines():
        quote = None
        cut = len(line)
        for i, char in enumerate(line):
            if quote:
                if char == "\\":
                    continue
                if char == quote and (i == 0 or line[i - 1] != "\\"):
                    quote = None
            elif char in ("'", '"'):
                quote = char
            elif char == "#":
                cut = i
                break
        cleaned.append(line[:cut])
    return "\n".join(cleaned)


def _call_arguments(text: str, start: int) -> str:
    """Text between the parenthesis opened just before start and its match."""
    depth = 1
    quote = None
    for i in range(start, len(text)):
        char = text[i]
        if quote:
            if char == quote and text[i - 1] != "\\":
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[start:i]
    return text[start:]


def _split_top_level(arguments: str) -> List[str]:
    parts = []
    depth = 0
    quote = None
    current = []
    for char in arguments:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    if "".join(current).strip():
        parts.append("".join(current))
    return parts


def parse_rprofile(text: str) -> Dict[str, Any]:
    """Extract the repository and renv settings from .Rprofile source.

    Recognizes:
        source("renv/activate.R")
        options(repos = c(CRAN = "https://..."))
        options(repos = "https://...")
        r["CRAN"] <- "https://..."; options(repos = r)
    """
    code = strip_r_comments(text)

    repos: Dict[str, str] = {}
    for vector in _REPOS_VECTOR.finditer(code):
        for name, url in _NAMED_URL.findall(vector.group(1)):
            repos[name] = url
    for scalar in _REPOS_SCALAR.finditer(code):
        repos.setdefault("CRAN", scalar.group(1))
    for name, url in _INDEXED_ASSIGN.findall(code):
        repos[name] = url

    options: List[str] = []
    for call in _OPTIONS_CALL.finditer(code):
        for argument in _split_top_level(_call_arguments(code, call.end())):
            match = _ARG_NAME.match(argument)
            if match and match.group(1) not in options:
                options.append(match.group(1))

    repo_urls = list(repos.values())
    return {
        "activates_renv": bool(_RENV_ACTIVATE.search(code)),
        "repos": repos,
        "repo_urls": repo_urls,
        "insecure_repo_count": sum(1 for url in repo_urls if is_insecure_url(url)),
        "options": options,
    }


def load_rprofile(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load a project .Rprofile into a single 'rprofile' resource."""
    text = read_text(path, RenvLoadError)
    values = parse_rprofile(text)
    return [make_resource("rprofile", path.name, values, rel_path, address=rel_path)]
