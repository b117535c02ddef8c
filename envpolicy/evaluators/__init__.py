"""Policy evaluation engines."""

from envpolicy.evaluators.cross_resource import CrossResourceEvaluator
from envpolicy.evaluators.engine import EvaluationResult, PolicyEngine, filter_rules
from envpolicy.evaluators.simple import SimpleEvaluator

__all__ = [
    "CrossResourceEvaluator",
    "EvaluationResult",
    "PolicyEngine",
    "SimpleEvaluator",
    "filter_rules",
]
