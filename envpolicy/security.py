"""Security utilities for input validation and sanitization."""

import os
import re
from pathlib import Path
from typing import Any, Optional


class SecurityError(Exception):
    """Exception raised when security validation fails."""

    pass


# Security constants
MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB
MAX_PATH_LENGTH = 4096
MAX_PROPERTY_DEPTH = 20
MAX_ARRAY_INDEX = 100  # Maximum array index for property access
MAX_DOCUMENT_DEPTH = 50  # Maximum nesting depth for JSON/YAML documents
MAX_OUTPUT_LENGTH = 10000
ALLOWED_RULE_EXTENSIONS = {".json", ".yml", ".yaml"}
ALLOWED_CONFIG_EXTENSIONS = {".yml", ".yaml"}

# Dangerous characters that could be used for shell injection or other attacks
DANGEROUS_FILENAME_CHARS = set(';|&$`<>(){}[]"\'\\\n\r\t\x00')

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_CONTROL_CHARS = "".join(chr(i) for i in range(32) if i not in (9, 32)) + "\x7f"


def _check_raw_path(raw: str, kind: str) -> None:
    if not raw:
        raise ValueError(f"{kind} path cannot be empty")

    # Check path length to prevent buffer overflow attacks
    if len(raw) > MAX_PATH_LENGTH:
        raise SecurityError(f"{kind} path exceeds maximum length of {MAX_PATH_LENGTH}")

    # Check for null bytes (path injection)
    if "\x00" in raw:
        raise SecurityError(f"Null bytes not allowed in {kind.lower()} paths")


def _check_within_base(raw: str, resolved: Path, base_dir: Optional[str], allow_absolute: bool) -> None:
    """Reject paths that escape the base directory.

    Relative input must stay under the base (CWD by default). Absolute input is
    only restricted when a base directory is passed explicitly.
    """
    if allow_absolute:
        return

    cwd = os.getcwd()
    base = Path(base_dir if base_dir is not None else cwd).resolve()
    is_explicit_base = base_dir is not None and base_dir != cwd
    is_relative_input = not Path(raw).is_absolute()

    if not (is_explicit_base or is_relative_input):
        return

    try:
        resolved.relative_to(base)
    except ValueError:
        if is_relative_input:
            raise SecurityError(
                f"Path traversal detected: relative path '{raw}' resolves to '{resolved}' "
                f"which is outside base directory '{base}'"
            )
        raise SecurityError(
            f"Path '{raw}' is outside explicitly specified base directory '{base}'"
        )


def validate_safe_path(
    file_path: str,
    base_dir: Optional[str] = None,
    must_exist: bool = True,
    allowed_extensions: Optional[set] = None,
    allow_absolute: bool = False,
) -> Path:
    """Validate that a file path is safe and within allowed boundaries.

    Prevents path traversal attacks by ensuring the resolved path
    is within the base directory (or current working directory).

    Args:
        file_path: The file path to validate
        base_dir: Base directory to restrict paths to (default: current working directory)
        must_exist: Whether the file must already exist
        allowed_extensions: Set of allowed file extensions (e.g., {'.json', '.yml'})
        allow_absolute: Allow absolute paths outside base_dir (for testing only)

    Returns:
        Validated Path object

    Raises:
        SecurityError: If path validation fails
        ValueError: If path is invalid
    """
    _check_raw_path(file_path, "File")

    # Only the filename is checked for shell metacharacters; separators are fine
    filename = Path(file_path).name
    dangerous_chars_found = [c for c in filename if c in DANGEROUS_FILENAME_CHARS]
    if dangerous_chars_found:
        raise SecurityError(
            f"Filename contains dangerous characters: {dangerous_chars_found}. "
            f"Only alphanumeric, dash, underscore, and dot are allowed in filenames."
        )

    try:
        resolved = Path(file_path).resolve()
    except (OSError, RuntimeError) as e:
        raise ValueError(f"Failed to resolve path: {e}")

    _check_within_base(file_path, resolved, base_dir, allow_absolute)

    if allowed_extensions is not None:
        if resolved.suffix.lower() not in allowed_extensions:
            raise SecurityError(
                f"Invalid file extension '{resolved.suffix}'. "
                f"Allowed extensions: {', '.join(sorted(allowed_extensions))}"
            )

    if must_exist and not resolved.exists():
        raise ValueError(f"File does not exist: {file_path}")

    if must_exist and not resolved.is_file():
        raise ValueError(f"Path is not a file: {file_path}")

    return resolved


def validate_safe_directory(
    dir_path: str,
    base_dir: Optional[str] = None,
    must_exist: bool = True,
    allow_absolute: bool = False,
) -> Path:
    """Validate that a directory path is safe and within allowed boundaries.

    Args:
        dir_path: The directory path to validate
        base_dir: Base directory to restrict paths to (default: current working directory)
        must_exist: Whether the directory must already exist
        allow_absolute: Allow absolute paths outside base_dir (for testing only)

    Returns:
        Validated Path object

    Raises:
        SecurityError: If path validation fails
        ValueError: If path is invalid
    """
    _check_raw_path(dir_path, "Directory")

    try:
        resolved = Path(dir_path).resolve()
    except (OSError, RuntimeError) as e:
        raise ValueError(f"Failed to resolve path: {e}")

    _check_within_base(dir_path, resolved, base_dir, allow_absolute)

    if must_exist and not resolved.exists():
        raise ValueError(f"Directory does not exist: {dir_path}")

    if must_exist and not resolved.is_dir():
        raise ValueError(f"Path is not a directory: {dir_path}")

    return resolved


def validate_file_size(file_path: Path, max_size: int = MAX_FILE_SIZE) -> None:
    """Validate that a file size is within acceptable limits.

    Raises:
        SecurityError: If file size exceeds maximum
        ValueError: If file doesn't exist
    """
    if not file_path.exists():
        raise ValueError(f"File does not exist: {file_path}")

    file_size = file_path.stat().st_size

    if file_size > max_size:
        max_mb = max_size / (1024 * 1024)
        actual_mb = file_size / (1024 * 1024)
        raise SecurityError(
            f"File size ({actual_mb:.2f}MB) exceeds maximum allowed size ({max_mb:.2f}MB)"
        )


def validate_property_path(path: str, max_depth: int = MAX_PROPERTY_DEPTH) -> None:
    """Validate a property path for safe traversal.

    Args:
        path: Dot-notation property path (e.g., 'inputs.versionSpec')
        max_depth: Maximum allowed depth

    Raises:
        SecurityError: If path validation fails
    """
    if not path:
        raise ValueError("Property path cannot be empty")

    if len(path) > 1000:
        raise SecurityError("Property path too long")

    parts = path.split(".")
    if len(parts) > max_depth:
        raise SecurityError(
            f"Property path depth ({len(parts)}) exceeds maximum ({max_depth})"
        )

    for part in parts:
        if not part:
            raise SecurityError("Property path cannot contain empty segments")

        if any(c in part for c in ["\x00", "\n", "\r"]):
            raise SecurityError("Property path contains invalid characters")


def sanitize_scan_root(root: str, allow_absolute: bool = False) -> Path:
    """Validate the repository directory that will be scanned."""
    return validate_safe_directory(root, must_exist=True, allow_absolute=allow_absolute)


def validate_document_depth(obj: Any, current_depth: int = 0, max_depth: int = MAX_DOCUMENT_DEPTH) -> None:
    """Validate that a parsed JSON/YAML document doesn't exceed maximum nesting depth.

    Args:
        obj: The parsed document (dict, list, or primitive)
        current_depth: Current recursion depth (internal use)
        max_depth: Maximum allowed depth

    Raises:
        SecurityError: If depth exceeds maximum
    """
    if current_depth > max_depth:
        raise SecurityError(
            f"Document nesting depth ({current_depth}) exceeds maximum allowed depth ({max_depth}). "
            f"This may indicate a malicious deeply-nested structure."
        )

    if isinstance(obj, dict):
        for value in obj.values():
            validate_document_depth(value, current_depth + 1, max_depth)
    elif isinstance(obj, list):
        for item in obj:
            validate_document_depth(item, current_depth + 1, max_depth)


def sanitize_for_output(text: str, context: str = "terminal") -> str:
    """Sanitize text for safe display in various output contexts.

    Prevents injection attacks via ANSI escape codes, newlines, and
    context-specific control sequences.

    Args:
        text: The text to sanitize
        context: Output context - "terminal", "github", "azure", or "json"

    Returns:
        Sanitized text safe for the specified context
    """
    if not text:
        return text

    sanitized = _ANSI_ESCAPE.sub("", text)

    # Keep tab and space, drop every other control character
    for char in _CONTROL_CHARS:
        sanitized = sanitized.replace(char, "")

    if context == "github":
        # ::error::, ::warning::, ::set-output:: workflow commands
        sanitized = sanitized.replace("::", ":\u200b:")  # Zero-width space breaks the command

    elif context == "azure":
        # ##vso[...] logging commands; property values are escaped by the reporter
        sanitized = sanitized.replace("##", "#\u200b#")

    if len(sanitized) > MAX_OUTPUT_LENGTH:
        sanitized = sanitized[:MAX_OUTPUT_LENGTH] + "... (truncated)"

    return sanitized
