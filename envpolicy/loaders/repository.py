"""Discovery and loading of every governed configuration file in a repository."""

import fnmatch
import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from envpolicy.loaders.conda import (
    load_conda_lock,
    load_condarc,
    load_environment_file,
    load_explicit_lock,
)
from envpolicy.loaders.dockerfile import load_dockerfile
from envpolicy.loaders.pip import load_pip_config, load_requirements_file
from envpolicy.loaders.pipeline import load_pipeline
from envpolicy.loaders.renv import load_renv_lock, load_rprofile
from envpolicy.loaders.resources import ConfigLoadError
from envpolicy.security import SecurityError, validate_safe_directory

log = logging.getLogger("envpolicy.loaders.repository")

LoaderFn = Callable[[Path, str], List[Dict[str, Any]]]

SKIPPED_DIRECTORIES = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    ".tox",
    ".nox",
    "node_modules",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    "site-packages",
}

# Relative directory prefixes that hold installed packages rather than config
SKIPPED_PREFIXES = ("renv/library", "renv/staging")

PIPELINE_DIRECTORIES = (".azure-pipelines", ".azuredevops")

_ENVIRONMENT_FILE = re.compile(r"^environment([-_.][\w.-]+)?\.ya?ml$", re.IGNORECASE)
_REQUIREMENTS_FILE = re.compile(r"^(.+[-_.])?requirements([-_.][\w.-]+)?\.(txt|in)$", re.IGNORECASE)
_PIPELINE_FILE = re.compile(r"^(.+[-_.])?azure-pipelines?([-_.][\w.-]+)?\.ya?ml$", re.IGNORECASE)
_CONDA_LOCK_FILE = re.compile(r"^(.+\.)?conda-lock\.ya?ml$", re.IGNORECASE)
_DOCKERFILE = re.compile(r"^(dockerfile([-_.][\w.-]+)?|[\w.-]+\.dockerfile)$", re.IGNORECASE)


class RepositoryLoadError(Exception):
    """Exception raised when one or more repository files fail to load."""

    pass


def classify_file(rel_path: str) -> Optional[str]:
    """Return the loader name for a repository-relative path, or None.

    Loader names: environment, condarc, conda_lock, explicit_lock,
    requirements, pip_config, renv_lock, rprofile, pipeline, dockerfile.
    Any other .lock or .txt file is an explicit_lock candidate; the loader
    decides from its content whether it is a conda spec file.
    """
    pure = PurePosixPath(rel_path)
    name = pure.name
    lowered = name.lower()
    parent = pure.parent.as_posix()

    if _CONDA_LOCK_FILE.match(name):
        return "conda_lock"
    if _ENVIRONMENT_FILE.match(name):
        return "environment"
    if lowered in (".condarc", "condarc"):
        return "condarc"
    if lowered == "renv.lock":
        return "renv_lock"
    if lowered.endswith(".lock"):
        return "explicit_lock"
    if _REQUIREMENTS_FILE.match(name):
        return "requirements"
    if lowered.endswith((".txt", ".in")) and pure.parent.name.lower() == "requirements":
        return "requirements"
    if lowered.endswith(".txt"):
        # conda list --explicit output, e.g. spec-file.txt
        return "explicit_lock"
    if lowered in ("pip.conf", "pip.ini"):
        return "pip_config"
    if lowered == ".rprofile":
        return "rprofile"
    if _PIPELINE_FILE.match(name):
        return "pipeline"
    if lowered.endswith((".yml", ".yaml")) and any(
        parent == d or parent.startswith(d + "/") for d in PIPELINE_DIRECTORIES
    ):
        return "pipeline"
    if _DOCKERFILE.match(name):
        return "dockerfile"
    return None


# Loaders whose matches are only governed when the content says so
CANDIDATE_LOADERS = {"explicit_lock"}

LOADERS: Dict[str, LoaderFn] = {
    "environment": load_environment_file,
    "condarc": load_condarc,
    "conda_lock": load_conda_lock,
    "explicit_lock": load_explicit_lock,
    "requirements": load_requirements_file,
    "pip_config": load_pip_config,
    "renv_lock": load_renv_lock,
    "rprofile": load_rprofile,
    "pipeline": load_pipeline,
    "dockerfile": load_dockerfile,
}


def _is_excluded(rel_path: str, exclude: Sequence[str]) -> bool:
    for pattern in exclude:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        # "legacy/" or "legacy" excludes the whole directory
        prefix = pattern.rstrip("/")
        if rel_path == prefix or rel_path.startswith(prefix + "/"):
            return True
    return False


def discover_config_files(
    root: Path, exclude: Sequence[str] = ()
) -> List[Tuple[str, str]]:
    """Walk root and return sorted (relative posix path, loader name) pairs.

    Version control metadata, virtual environments, caches and renv's
    package library are skipped, as is anything matching an exclude glob.
    """
    found: List[Tuple[str, str]] = []

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        kept = []
        for dirname in dirnames:
            rel_child = f"{rel_dir}/{dirname}" if rel_dir else dirname
            if dirname in SKIPPED_DIRECTORIES or rel_child in SKIPPED_PREFIXES:
                continue
            if _is_excluded(rel_child, exclude):
                continue
            kept.append(dirname)
        dirnames[:] = sorted(kept)

        for filename in filenames:
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if _is_excluded(rel_path, exclude):
                log.debug("Excluded %s", rel_path)
                continue
            loader_name = classify_file(rel_path)
            if loader_name is not None:
                found.append((rel_path, loader_name))

    found.sort()
    log.debug("Discovered %d configuration file(s) under %s", len(found), root)
    return found


def load_file(path: Path, root: Path) -> List[Dict[str, Any]]:
    """Load a single file through the loader matching its name.

    Raises:
        ConfigLoadError: If the file is not a recognized configuration file
                         or fails to parse
    """
    rel_path = path.resolve().relative_to(root.resolve()).as_posix()
    loader_name = classify_file(rel_path)
    if loader_name is None:
        raise ConfigLoadError(f"{rel_path} is not a recognized configuration file")
    return LOADERS[loader_name](path, rel_path)


def load_repository(
    root: str, exclude: Sequence[str] = (), _allow_absolute: bool = False
) -> List[Dict[str, Any]]:
    """Load every governed configuration file under root.

    Args:
        root: Repository directory to scan
        exclude: Glob patterns relative to root to skip
        _allow_absolute: Internal parameter for testing - allows absolute paths

    Returns:
        Resources from all files, in discovery order

    Raises:
        RepositoryLoadError: If root is invalid or any file fails to load;
                             the message lists every failing file
    """
    try:
        base = validate_safe_directory(root, must_exist=True, allow_absolute=_allow_absolute)
    except (SecurityError, ValueError) as e:
        raise RepositoryLoadError(f"Security validation failed: {e}")

    resources: List[Dict[str, Any]] = []
    errors: List[str] = []

    for rel_path, loader_name in discover_config_files(base, exclude):
        try:
            loaded = LOADERS[loader_name](base / rel_path, rel_path)
        except ConfigLoadError as e:
            errors.append(f"{rel_path}: {e}")
            continue
        log.debug("%s -> %d resource(s) via %s loader", rel_path, len(loaded), loader_name)
        resources.extend(loaded)

    if errors:
        raise RepositoryLoadError(
            "Failed to load one or more configuration files:\n" + "\n".join(errors)
        )

    return resources


def summarize_files(
    root: Path, exclude: Sequence[str] = ()
) -> List[Dict[str, Any]]:
    """Per-file discovery summary used by the discover command.

    Files that fail to parse are reported with their error instead of
    aborting the listing.
    """
    summary = []
    for rel_path, loader_name in discover_config_files(root, exclude):
        entry: Dict[str, Any] = {"file": rel_path, "loader": loader_name, "types": {}, "error": None}
        try:
            for resource in LOADERS[loader_name](root / rel_path, rel_path):
                entry["types"][resource["type"]] = entry["types"].get(resource["type"], 0) + 1
        except ConfigLoadError as e:
            entry["error"] = str(e)
        if loader_name in CANDIDATE_LOADERS and not entry["types"] and entry["error"] is None:
            continue
        summary.append(entry)
    return summary
