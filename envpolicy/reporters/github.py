"""GitHub Actions reporter for workflow annotations."""

from typing import List

from envpolicy.models.violation import Violation
from envpolicy.reporters.stream import emit
from envpolicy.security import sanitize_for_output


def _escape_property(value: str) -> str:
    """Escape an annotation property value (file, title)."""
    return (
        value.replace("%", "%25")
        .replace("\r", "%0D")
        .replace("\n", "%0A")
        .replace(":", "%3A")
        .replace(",", "%2C")
    )


class GitHubReporter:
    """Reports violations as GitHub Actions annotations.

    Outputs violations in the GitHub Actions workflow command format
    so they appear as annotations on the offending file and line in pull
    requests and workflow runs.

    Format: ::error file={file},line={line},title={title}::{message}
    """

    def report(self, violations: List[Violation]) -> None:
        """Report violations as GitHub Actions annotations.

        Args:
            violations: List of violations to report
        """
        if not violations:
            emit("All policy checks passed!")
            return

        errors = [v for v in violations if v.is_error()]
        warnings = [v for v in violations if v.is_warning()]

        for violation in errors:
            self._print_annotation("error", violation)

        for violation in warnings:
            self._print_annotation("warning", violation)

        self._print_summary(errors, warnings)

    def format_annotation(self, level: str, violation: Violation) -> str:
        """Build a single annotation line.

        Args:
            level: 'error' or 'warning'
            violation: The violation to annotate
        """
        # Sanitize for GitHub context to prevent workflow command injection
        title = sanitize_for_output(violation.rule_name, context="github")
        rule_id = sanitize_for_output(violation.rule_id, context="github")
        resource_name = sanitize_for_output(violation.resource_name, context="github")
        message_text = sanitize_for_output(violation.message, context="github")
        message = f"[{rule_id}] [{resource_name}] {message_text}"

        properties = []
        if violation.file:
            properties.append(f"file={_escape_property(sanitize_for_output(violation.file))}")
            if violation.line is not None:
                properties.append(f"line={violation.line}")
        properties.append(f"title={_escape_property(title)}")

        return f"::{level} {','.join(properties)}::{message}"

    def _print_annotation(self, level: str, violation: Violation) -> None:
        emit(self.format_annotation(level, violation))

    def _print_summary(self, errors: List[Violation], warnings: List[Violation]) -> None:
        """Print summary using GitHub Actions format.

        Args:
            errors: List of error violations
            warnings: List of warning violations
        """
        error_count = len(errors)
        warning_count = len(warnings)

        summary = f"Policy check found {error_count} error(s) and {warning_count} warning(s)"

        if error_count > 0:
            emit(f"::error::{summary}")
        else:
            emit(f"::notice::{summary}")
