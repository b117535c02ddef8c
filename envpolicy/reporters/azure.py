"""Azure DevOps reporter using pipeline logging commands."""

from typing import List

from envpolicy.models.violation import Violation
from envpolicy.reporters.stream import emit
from envpolicy.security import sanitize_for_output


def _escape_property(value: str) -> str:
    """Escape a ##vso property value so it cannot close the command early."""
    return (
        value.replace("%", "%AZP25")
        .replace(";", "%3B")
        .replace("]", "%5D")
        .replace("\r", "%0D")
        .replace("\n", "%0A")
    )


class AzureDevOpsReporter:
    """Reports violations as Azure DevOps logging commands.

    Each violation becomes a task.logissue command, which Azure Pipelines
    surfaces on the build summary and, with sourcepath/linenumber, on the
    pull request diff. A final task.complete marks the step as
    SucceededWithIssues (warnings only) or Failed (any error).

    Format:
        ##vso[task.logissue type=error;sourcepath={file};linenumber={line};code={rule_id}]{message}
    """

    def report(self, violations: List[Violation]) -> None:
        """Report violations as Azure DevOps logging commands.

        Args:
            violations: List of violations to report
        """
        if not violations:
            emit("All policy checks passed!")
            return

        errors = [v for v in violations if v.is_error()]
        warnings = [v for v in violations if v.is_warning()]

        for violation in errors + warnings:
            emit(self.format_issue(violation))

        emit(
            f"Policy check found {len(errors)} error(s) and {len(warnings)} warning(s)"
        )
        result = "Failed" if errors else "SucceededWithIssues"
        emit(f"##vso[task.complete result={result};]")

    def format_issue(self, violation: Violation) -> str:
        """Build the task.logissue command for one violation."""
        properties = [f"type={violation.severity}"]

        if violation.file:
            properties.append(
                f"sourcepath={_escape_property(sanitize_for_output(violation.file, context='azure'))}"
            )
            if violation.line is not None:
                properties.append(f"linenumber={violation.line}")

        properties.append(
            f"code={_escape_property(sanitize_for_output(violation.rule_id, context='azure'))}"
        )

        resource_name = sanitize_for_output(violation.resource_name, context="azure")
        message_text = sanitize_for_output(violation.message, context="azure")

        return f"##vso[task.logissue {';'.join(properties)}][{resource_name}] {message_text}"
