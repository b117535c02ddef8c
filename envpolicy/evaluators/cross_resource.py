"""Cross-resource relationship evaluator.

This evaluator validates that when certain resources exist in a repository,
required companion resources also exist and meet specified conditions.

Example use cases:
- environment.yml must have a conda-lock file next to it
- requirements.in must be compiled to a requirements.txt in the same directory
- An Azure pipeline must contain a PublishTestResults step
"""

import logging
import posixpath
from collections import defaultdict
from typing import Any, Dict, List

from envpolicy.evaluators.simple import matches_all, resource_location, values_equal
from envpolicy.loaders.resources import get_nested_property
from envpolicy.models.rule import RequiredResource, Rule
from envpolicy.models.violation import Violation

log = logging.getLogger("envpolicy.evaluators.cross_resource")


class CrossResourceEvaluator:
    """Evaluates cross-resource relationships between configuration files.

    This evaluator checks that when a primary resource exists, all required
    related resources also exist and optionally meet specified conditions.

    Supports three relationship strategies:
    1. same_directory: The related resource comes from a file in the primary's directory
    2. contained_in_primary: The related resource was parsed out of the primary
       (its 'parent' value is the primary's address)
    3. anywhere: Any resource of the required type in the repository

    Example:
        evaluator = CrossResourceEvaluator()
        violations = evaluator.evaluate(rule, resources)
    """

    def evaluate(
        self,
        rule: Rule,
        resources: List[Dict[str, Any]],
    ) -> List[Violation]:
        """Evaluate a cross-resource rule against resources.

        Args:
            rule: The policy rule to evaluate (must have requires_resources)
            resources: Normalized resource dictionaries from the repository loaders

        Returns:
            List of violations found (empty if all resources comply)
        """
        if not rule.requires_resources:
            return []

        violations = []

        resource_index = self._build_resource_index(resources)

        for primary in self._get_primary_resources(rule, resource_index):
            for required in rule.requires_resources:
                violations.extend(
                    self._check_required_resource(rule, primary, required, resource_index)
                )

        return violations

    def _build_resource_index(
        self, resources: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Build index structures for fast resource lookups.

        Returns:
            Dictionary containing:
            - by_type: Resources indexed by type
            - by_address: Resources indexed by address
        """
        index = {
            "by_type": defaultdict(list),
            "by_address": {},
        }

        for resource in resources:
            resource_type = resource.get("type", "")
            resource_address = resource.get("address", "")

            if resource_type:
                index["by_type"][resource_type].append(resource)

            if resource_address:
                index["by_address"][resource_address] = resource

        return index

    def _get_primary_resources(
        self, rule: Rule, resource_index: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Primary resources of the rule's type(s) that satisfy its where clause."""
        primary_resources = []
        for resource_type in rule.target_types():
            primary_resources.extend(
                r
                for r in resource_index["by_type"].get(resource_type, [])
                if matches_all(r.get("values", {}), rule.where)
            )
        return primary_resources

    def _check_required_resource(
        self,
        rule: Rule,
        primary: Dict[str, Any],
        required: RequiredResource,
        resource_index: Dict[str, Any],
    ) -> List[Violation]:
        """Check if required resource exists and meets conditions.

        Returns:
            List of violations (empty if compliant)
        """
        related_resources = [
            r
            for r in self._find_related_resources(primary, required, resource_index)
            if matches_all(r.get("values", {}), required.filter)
        ]

        log.debug(
            "%s: %d related %s resource(s) for rule %s",
            primary.get("address"),
            len(related_resources),
            required.resource_type,
            rule.id,
        )

        violations = []

        if len(related_resources) < required.min_count:
            violations.append(
                self._create_violation(
                    rule,
                    primary,
                    required,
                    f"Missing required {required.resource_type} "
                    f"(found {len(related_resources)}, need {required.min_count})",
                )
            )
            return violations  # No point checking conditions if resource missing

        if required.max_count is not None and len(related_resources) > required.max_count:
            violations.append(
                self._create_violation(
                    rule,
                    primary,
                    required,
                    f"Too many {required.resource_type} "
                    f"(found {len(related_resources)}, max {required.max_count})",
                )
            )

        if required.conditions:
            for related_resource in related_resources:
                violations.extend(
                    self._validate_conditions(rule, primary, required, related_resource)
                )

        return violations

    def _find_related_resources(
        self,
        primary: Dict[str, Any],
        required: RequiredResource,
        resource_index: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Find resources related to the primary resource by the required relationship."""
        candidates = [
            c
            for c in resource_index["by_type"].get(required.resource_type, [])
            if c is not primary
        ]

        if required.relationship == "same_directory":
            return self._find_in_same_directory(primary, candidates)
        elif required.relationship == "contained_in_primary":
            return self._find_contained_in_primary(primary, candidates)
        elif required.relationship == "anywhere":
            return candidates

        return []

    def _find_in_same_directory(
        self, primary: Dict[str, Any], candidates: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Resources whose source file sits in the primary's directory.

        Example: envs/ml/environment.yml matches envs/ml/conda-lock.yml
        but not envs/conda-lock.yml
        """
        primary_file = primary.get("file")
        if not primary_file:
            return []

        directory = posixpath.dirname(primary_file)
        return [
            c
            for c in candidates
            if c.get("file") and posixpath.dirname(c["file"]) == directory
        ]

    def _find_contained_in_primary(
        self, primary: Dict[str, Any], candidates: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Resources parsed out of the primary.

        Example: azure_pipeline 'azure-pipelines.yml' contains the step
        'azure-pipelines.yml:steps[2]', whose parent is 'azure-pipelines.yml'
        """
        primary_address = primary.get("address")
        return [
            c
            for c in candidates
            if c.get("values", {}).get("parent") == primary_address
        ]

    def _validate_conditions(
        self,
        rule: Rule,
        primary: Dict[str, Any],
        required: RequiredResource,
        related_resource: Dict[str, Any],
    ) -> List[Violation]:
        """Validate that related resource meets all specified conditions.

        Returns:
            List of violations (empty if all conditions met)
        """
        violations = []
        related_values = related_resource.get("values", {})
        related_address = related_resource.get("address", "unknown")

        for property_path, expected_value in required.conditions.items():
            actual_value = get_nested_property(related_values, property_path)

            if not values_equal(actual_value, expected_value):
                message = (
                    f"Related resource {related_address} fails condition: "
                    f"{property_path} is {repr(actual_value)}, expected {repr(expected_value)}"
                )
                violations.append(
                    self._create_violation(rule, primary, required, message)
                )

        return violations

    def _create_violation(
        self,
        rule: Rule,
        primary: Dict[str, Any],
        required: RequiredResource,
        detail_message: str,
    ) -> Violation:
        """Create a violation for cross-resource rule failure."""
        primary_address = primary.get("address", "unknown")
        primary_type = primary.get("type", "unknown")

        base_message = rule.format_message(primary_address)

        if required.message_suffix:
            full_message = f"{base_message}: {detail_message} {required.message_suffix}"
        else:
            full_message = f"{base_message}: {detail_message}"

        return Violation(
            rule_id=rule.id,
            rule_name=rule.name,
            resource_name=primary_address,
            resource_type=primary_type,
            severity=rule.severity,
            message=full_message,
            location=resource_location(primary),
            remediation=rule.remediation,
        )
