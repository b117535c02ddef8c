"""Core data models for envpolicy."""

from envpolicy.models.rule import RequiredResource, Rule
from envpolicy.models.violation import Violation

__all__ = ["RequiredResource", "Rule", "Violation"]
