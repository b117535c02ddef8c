"""Runs every rule through the simple and cross-resource evaluators."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from envpolicy.evaluators.cross_resource import CrossResourceEvaluator
from envpolicy.evaluators.simple import SimpleEvaluator, matches_all
from envpolicy.models.rule import Rule
from envpolicy.models.violation import Violation

log = logging.getLogger("envpolicy.evaluators.engine")


@dataclass
class EvaluationResult:
    """Outcome of evaluating a rule set against a repository.

    Attributes:
        violations: Violations ordered by rule id, then resource address
        rules_evaluated: Number of rules that were run
        resources_scanned: Number of resources the loaders produced
        skipped_rules: Ids of rules that had no in-scope resources
    """

    violations: List[Violation]
    rules_evaluated: int
    resources_scanned: int
    skipped_rules: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.is_error()]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if v.is_warning()]

    def has_failures(self, strict: bool = False) -> bool:
        """True when the check should fail: any error, or any warning in strict mode."""
        if self.errors:
            return True
        return strict and bool(self.warnings)


def filter_rules(rules: List[Rule], categories: Optional[Sequence[str]] = None) -> List[Rule]:
    """Keep only rules in the given categories (all rules when none are given)."""
    if not categories:
        return list(rules)
    wanted = {c.lower() for c in categories}
    return [r for r in rules if r.category is not None and r.category.lower() in wanted]


class PolicyEngine:
    """Evaluates rules against resources with both evaluators.

    Example:
        engine = PolicyEngine()
        result = engine.run(rules, resources)
        if result.has_failures(strict=True):
            ...
    """

    def __init__(self) -> None:
        self.simple = SimpleEvaluator()
        self.cross_resource = CrossResourceEvaluator()

    def _has_scope(self, rule: Rule, resources: List[Dict[str, Any]]) -> bool:
        return any(
            rule.matches_resource_type(r.get("type", ""))
            and matches_all(r.get("values", {}), rule.where)
            for r in resources
        )

    def evaluate(self, rule: Rule, resources: List[Dict[str, Any]]) -> List[Violation]:
        """All violations of a single rule."""
        violations = self.simple.evaluate(rule, resources)
        violations.extend(self.cross_resource.evaluate(rule, resources))
        return violations

    def run(self, rules: List[Rule], resources: List[Dict[str, Any]]) -> EvaluationResult:
        """Evaluate every rule and return ordered results."""
        violations: List[Violation] = []
        skipped: List[str] = []

        for rule in rules:
            if not self._has_scope(rule, resources):
                log.debug("Rule %s has no matching resources", rule.id)
                skipped.append(rule.id)
                continue
            violations.extend(self.evaluate(rule, resources))

        violations.sort(key=lambda v: (v.rule_id, v.resource_name))

        log.info(
            "Evaluated %d rule(s) against %d resource(s): %d violation(s)",
            len(rules),
            len(resources),
            len(violations),
        )

        return EvaluationResult(
            violations=violations,
            rules_evaluated=len(rules),
            resources_scanned=len(resources),
            skipped_rules=skipped,
        )
