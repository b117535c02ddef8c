"""Output formatters for policy violations."""

from envpolicy.reporters.azure import AzureDevOpsReporter
from envpolicy.reporters.github import GitHubReporter
from envpolicy.reporters.json_reporter import JSONReporter
from envpolicy.reporters.terminal import TerminalReporter

__all__ = ["AzureDevOpsReporter", "GitHubReporter", "JSONReporter", "TerminalReporter"]

REPORTERS = {
    "terminal": TerminalReporter,
    "github": GitHubReporter,
    "azure": AzureDevOpsReporter,
    "json": JSONReporter,
}


def get_reporter(format: str):
    """Factory function to get reporter by format name.

    Args:
        format: One of 'terminal', 'github', 'azure', or 'json'

    Returns:
        Reporter instance

    Raises:
        ValueError: If format is not supported
    """
    if format not in REPORTERS:
        raise ValueError(
            f"Unsupported format: {format}. Choose from: {', '.join(REPORTERS.keys())}"
        )

    return REPORTERS[format]()
