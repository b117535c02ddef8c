"""Violation model for policy check results."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Literal, Optional


@dataclass
class Violation:
    """Represents a policy rule violation found during evaluation.

    A violation occurs when a configuration resource doesn't meet the
    requirements specified in a policy rule.

    Attributes:
        rule_id: Unique identifier of the violated rule
        rule_name: Human-readable name of the violated rule
        resource_name: Address of the resource that violated the rule
        resource_type: Type of the resource (e.g., 'conda_dependency')
        severity: Severity level ('error' or 'warning')
        message: Formatted message explaining the violation
        location: File location as 'path:line' or 'path', when known
        remediation: How to fix the violation, copied from the rule
    """

    rule_id: str
    rule_name: str
    resource_name: str
    resource_type: str
    severity: Literal["error", "warning"]
    message: str
    location: Optional[str] = None
    remediation: Optional[str] = None

    def is_error(self) -> bool:
        """Check if this violation is an error (not just a warning)."""
        return self.severity == "error"

    def is_warning(self) -> bool:
        """Check if this violation is a warning (not an error)."""
        return self.severity == "warning"

    @property
    def file(self) -> Optional[str]:
        """File part of the location."""
        if not self.location:
            return None
        path, _, line = self.location.rpartition(":")
        if path and line.isdigit():
            return path
        return self.location

    @property
    def line(self) -> Optional[int]:
        """Line part of the location, if one was recorded."""
        if not self.location:
            return None
        _, sep, line = self.location.rpartition(":")
        if sep and line.isdigit():
            return int(line)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Plain mapping of every field plus the split file/line location."""
        data = asdict(self)
        data["file"] = self.file
        data["line"] = self.line
        return data

    def format_compact(self) -> str:
        """Format violation as a compact single-line string.

        Returns:
            Compact representation for logging or simple output
        """
        severity_prefix = "ERROR" if self.is_error() else "WARN"
        return f"[{severity_prefix}] {self.resource_name} ({self.resource_type}): {self.message}"

    def format_detailed(self) -> str:
        """Format violation with detailed information.

        Returns:
            Multi-line detailed representation
        """
        lines = [
            f"Severity: {self.severity.upper()}",
            f"Rule: {self.rule_name} ({self.rule_id})",
            f"Resource: {self.resource_name} ({self.resource_type})",
            f"Message: {self.message}",
        ]
        if self.location:
            lines.append(f"Location: {self.location}")
        if self.remediation:
            lines.append(f"Remediation: {self.remediation}")
        return "\n".join(lines)

    def __str__(self) -> str:
        """String representation using compact format."""
        return self.format_compact()

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return (
            f"Violation(rule_id='{self.rule_id}', resource_name='{self.resource_name}', "
            f"severity='{self.severity}')"
        )
