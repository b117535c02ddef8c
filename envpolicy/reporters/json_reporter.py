"""JSON reporter for machine-readable output."""

import json
from typing import Any, Dict, List

from envpolicy.models.violation import Violation
from envpolicy.security import sanitize_for_output

# Fields that carry rule- or file-derived text
_TEXT_FIELDS = ("rule_id", "rule_name", "resource_name", "resource_type", "message", "remediation")


def _violation_data(violation: Violation) -> Dict[str, Any]:
    data = violation.to_dict()
    for field in _TEXT_FIELDS:
        if data[field]:
            data[field] = sanitize_for_output(data[field], context="json")
    return data


class JSONReporter:
    """Reports violations as a single JSON document on stdout.

    ``summary.passed`` is true only when there are no violations at all, so
    dashboards see warnings as a non-clean run whatever --strict says.
    """

    def report(self, violations: List[Violation]) -> None:
        errors = sum(1 for v in violations if v.is_error())

        output = {
            "summary": {
                "total_violations": len(violations),
                "errors": errors,
                "warnings": len(violations) - errors,
                "passed": not violations,
            },
            "violations": [_violation_data(v) for v in violations],
        }

        print(json.dumps(output, indent=2))
