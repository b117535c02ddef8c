"""Plain-text output for the CI reporters."""

import sys


def emit(line: str) -> None:
    """Print a line, replacing characters the stdout encoding cannot hold.

    Windows build agents often run with a cp1252 stdout, and sanitized
    messages may carry zero-width spaces.
    """
    encoding = getattr(sys.stdout, "encoding", None) or "utf-8"
    print(line.encode(encoding, errors="replace").decode(encoding))
