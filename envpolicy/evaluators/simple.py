"""Simple property-based rule evaluator."""

import logging
import operator
import re
from typing import Any, Callable, Dict, List, Optional

from envpolicy.loaders.resources import get_nested_property
from envpolicy.models.rule import Rule
from envpolicy.models.violation import Violation

log = logging.getLogger("envpolicy.evaluators.simple")


def values_equal(actual: Any, expected: Any) -> bool:
    """Compare two values for equality.

    Handles type coercion for common cases ("true" vs True, "7" vs 7), since
    INI and YAML files often carry booleans and numbers as strings.
    """
    if actual == expected:
        return True

    if isinstance(expected, bool) and isinstance(actual, str):
        if expected is True and actual.lower() in ("true", "yes", "1"):
            return True
        if expected is False and actual.lower() in ("false", "no", "0"):
            return True

    if isinstance(actual, bool) and isinstance(expected, str):
        if actual is True and expected.lower() in ("true", "yes", "1"):
            return True
        if actual is False and expected.lower() in ("false", "no", "0"):
            return True

    if isinstance(expected, (int, float)) and not isinstance(expected, bool) and isinstance(actual, str):
        try:
            return float(actual) == float(expected)
        except (ValueError, TypeError):
            pass

    if isinstance(actual, (int, float)) and not isinstance(actual, bool) and isinstance(expected, str):
        try:
            return float(actual) == float(expected)
        except (ValueError, TypeError):
            pass

    return False


def matches_all(values: Dict[str, Any], criteria: Optional[Dict[str, Any]]) -> bool:
    """True when every property path in criteria equals its expected value."""
    if not criteria:
        return True
    return all(
        values_equal(get_nested_property(values, path), expected)
        for path, expected in criteria.items()
    )


def resource_location(resource: Dict[str, Any]) -> Optional[str]:
    """'file:line' for a resource, or just 'file' when the line is unknown."""
    file = resource.get("file")
    if not file:
        return None
    line = resource.get("line")
    return f"{file}:{line}" if line else file


class SimpleEvaluator:
    """Evaluates rules by checking property values against expected values.

    Supports multiple comparison operators:
    - equals: Exact value match
    - greater_than / greater_than_or_equal / less_than / less_than_or_equal
    - contains: String/list contains check
    - in: Value must be in list
    - all_in: Every list element (or the scalar) must be in an allow-list
    - none_in: No list element (nor the scalar) may be in a deny-list
    - ordered_in: Every list element must be allowed and follow the allow-list order
    - regex_match: Regular expression pattern match
    - has_keys / is_not_empty

    Uses dot notation for nested property access.
    """

    def evaluate(
        self, rule: Rule, resources: List[Dict[str, Any]]
    ) -> List[Violation]:
        """Evaluate a rule against a list of resources.

        Args:
            rule: The policy rule to evaluate
            resources: Normalized resource dictionaries from the repository loaders

        Returns:
            List of violations found (empty if all resources comply)
        """
        # Pure cross-resource rules are handled by CrossResourceEvaluator
        if rule.property is None and not rule.resource_forbidden:
            return []

        violations = []

        for resource in self.in_scope(rule, resources):
            violation = self._check_resource(rule, resource)
            if violation:
                violations.append(violation)

        return violations

    def in_scope(
        self, rule: Rule, resources: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Resources of the rule's type(s) that also satisfy its where clause."""
        matching = [
            r
            for r in resources
            if rule.matches_resource_type(r.get("type", ""))
            and matches_all(r.get("values", {}), rule.where)
        ]
        log.debug("Rule %s applies to %d resource(s)", rule.id, len(matching))
        return matching

    def _violation(self, rule: Rule, resource: Dict[str, Any], message: str) -> Violation:
        return Violation(
            rule_id=rule.id,
            rule_name=rule.name,
            resource_name=resource.get("address", "unknown"),
            resource_type=resource.get("type", "unknown"),
            severity=rule.severity,
            message=message,
            location=resource_location(resource),
            remediation=rule.remediation,
        )

    def _check_resource(
        self, rule: Rule, resource: Dict[str, Any]
    ) -> Optional[Violation]:
        """Check a single resource against a rule.

        Returns:
            Violation if rule is violated, None if resource complies
        """
        resource_address = resource.get("address", "unknown")
        values = resource.get("values", {})

        # Messages are sanitized again by each reporter for its own context
        message = rule.format_message(resource_address, output_context="terminal")

        if rule.resource_forbidden is True:
            return self._violation(rule, resource, message)

        actual_value = get_nested_property(values, rule.property)

        if actual_value is None:
            return self._violation(
                rule, resource, f"{message} (property '{rule.property}' not found)"
            )

        if rule.equals is not None:
            passes = values_equal(actual_value, rule.equals)
        elif rule.greater_than is not None:
            passes = self._check_numeric_comparison(actual_value, rule.greater_than, operator.gt)
        elif rule.greater_than_or_equal is not None:
            passes = self._check_numeric_comparison(
                actual_value, rule.greater_than_or_equal, operator.ge
            )
        elif rule.less_than is not None:
            passes = self._check_numeric_comparison(actual_value, rule.less_than, operator.lt)
        elif rule.less_than_or_equal is not None:
            passes = self._check_numeric_comparison(
                actual_value, rule.less_than_or_equal, operator.le
            )
        elif rule.contains is not None:
            passes = self._check_contains(actual_value, rule.contains)
        elif rule.in_list is not None:
            passes = self._check_in_list(actual_value, rule.in_list)
        elif rule.all_in is not None:
            passes = self._check_all_in(actual_value, rule.all_in)
        elif rule.none_in is not None:
            passes = self._check_none_in(actual_value, rule.none_in)
        elif rule.ordered_in is not None:
            passes = self._check_ordered_in(actual_value, rule.ordered_in)
        elif rule.regex_match is not None:
            passes = self._check_regex_match(actual_value, rule.regex_match)
        elif rule.has_keys is not None:
            passes = self._check_has_keys(actual_value, rule.has_keys)
        elif rule.is_not_empty is not None:
            passes = self._check_is_not_empty(actual_value)
        else:
            # Should never happen due to model validation
            passes = False

        if not passes:
            return self._violation(
                rule,
                resource,
                f"{message} (expected {rule.describe_check()}, got '{actual_value}')",
            )

        return None

    def _check_numeric_comparison(
        self, actual: Any, expected: int | float, op: Callable[[float, float], bool]
    ) -> bool:
        """Check numeric comparison using the provided operator."""
        if isinstance(actual, bool):
            return False
        try:
            return op(float(actual), expected)
        except (ValueError, TypeError):
            return False

    def _check_contains(self, actual: Any, expected: str) -> bool:
        """Substring match for strings, element match for lists."""
        if isinstance(actual, (str, list)):
            return expected in actual
        return expected in str(actual)

    def _check_in_list(self, actual: Any, expected_list: List[Any]) -> bool:
        """Check if actual value is in the expected list."""
        return any(values_equal(actual, expected) for expected in expected_list)

    def _check_all_in(self, actual: Any, allowed: List[Any]) -> bool:
        """Every element of a list (or the scalar itself) must be allowed."""
        items = actual if isinstance(actual, list) else [actual]
        return all(self._check_in_list(item, allowed) for item in items)

    def _check_none_in(self, actual: Any, forbidden: List[Any]) -> bool:
        """No element of a list (nor the scalar itself) may be forbidden."""
        items = actual if isinstance(actual, list) else [actual]
        return not any(self._check_in_list(item, forbidden) for item in items)

    def _check_ordered_in(self, actual: Any, allowed: List[Any]) -> bool:
        """Every element must be allowed, and positions in the allow-list never go back."""
        items = actual if isinstance(actual, list) else [actual]
        previous = -1
        for item in items:
            position = next(
                (i for i, expected in enumerate(allowed) if values_equal(item, expected)), None
            )
            if position is None or position < previous:
                return False
            previous = position
        return True

    def _check_regex_match(self, actual: Any, pattern: str) -> bool:
        """Check if actual value matches the regex pattern.

        An invalid pattern never matches.
        """
        actual_str = actual if isinstance(actual, str) else str(actual)
        try:
            return re.search(pattern, actual_str) is not None
        except re.error:
            log.warning("Invalid regex_match pattern %r", pattern)
            return False

    def _check_has_keys(self, actual: Any, required_keys: List[str]) -> bool:
        """Check if actual value (dict) contains all required keys."""
        if not isinstance(actual, dict):
            return False
        return set(required_keys).issubset(actual.keys())

    def _check_is_not_empty(self, actual: Any) -> bool:
        """Check if actual value exists and is not empty."""
        if actual is None:
            return False
        if hasattr(actual, "__len__"):
            return len(actual) > 0
        return True

    def evaluate_all(
        self, rules: List[Rule], resources: List[Dict[str, Any]]
    ) -> List[Violation]:
        """Evaluate all rules against all resources.

        Returns:
            Combined list of all violations found
        """
        all_violations = []

        for rule in rules:
            all_violations.extend(self.evaluate(rule, resources))

        return all_violations
