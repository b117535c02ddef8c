"""Rule model for policy definitions."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from envpolicy.security import validate_property_path

Scalar = bool | str | int | float | None

OPERATOR_FIELDS = (
    "equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "contains",
    "in_list",
    "all_in",
    "none_in",
    "ordered_in",
    "regex_match",
    "has_keys",
    "is_not_empty",
)


def _validate_path_keys(mapping: Optional[Dict[str, Any]], field_name: str) -> None:
    if mapping is None:
        return
    for key in mapping:
        try:
            validate_property_path(key)
        except Exception as e:
            raise ValueError(f"Invalid property path in {field_name}: {e}")


class RequiredResource(BaseModel):
    """Defines a required related resource in cross-resource validation rules.

    When a primary resource exists in the scanned repository, related
    resources must also exist and optionally meet specific conditions.

    Example:
        A conda environment file must sit next to a lock file:
        {
            "resource_type": "conda_lockfile",
            "relationship": "same_directory",
            "min_count": 1
        }

        A pipeline must publish test results:
        {
            "resource_type": "azure_pipeline_step",
            "relationship": "contained_in_primary",
            "filter": {"task_name": "PublishTestResults"}
        }
    """

    resource_type: str = Field(
        ...,
        description="Type of required resource (e.g., 'conda_lockfile')",
        min_length=1,
    )

    relationship: Literal["same_directory", "contained_in_primary", "anywhere"] = Field(
        ...,
        description=(
            "How this resource relates to the primary resource:\n"
            "- 'same_directory': Both come from files in the same directory\n"
            "- 'contained_in_primary': The related resource was parsed out of the primary\n"
            "- 'anywhere': Any resource of this type in the repository"
        ),
    )

    filter: Optional[Dict[str, Any]] = Field(
        None,
        description=(
            "Only related resources matching every entry are counted. "
            "Keys are dot-notation property paths."
        ),
    )

    min_count: int = Field(
        1,
        description="Minimum number of this resource type required (default: 1)",
        ge=0,
    )

    max_count: Optional[int] = Field(
        None,
        description="Maximum number of this resource type allowed (optional)",
        ge=1,
    )

    conditions: Optional[Dict[str, Any]] = Field(
        None,
        description=(
            "Additional property conditions each related resource must meet. "
            "Keys are dot-notation property paths, values are expected values."
        ),
    )

    message_suffix: Optional[str] = Field(
        None,
        description="Additional context to append to violation message",
        min_length=1,
    )

    @model_validator(mode="after")
    def validate_count_range(self) -> "RequiredResource":
        """Ensure max_count >= min_count if both specified."""
        if self.max_count is not None and self.max_count < self.min_count:
            raise ValueError(
                f"max_count ({self.max_count}) must be >= min_count ({self.min_count})"
            )
        return self

    @model_validator(mode="after")
    def validate_property_keys(self) -> "RequiredResource":
        """Ensure filter and condition keys are valid property paths."""
        _validate_path_keys(self.filter, "filter")
        _validate_path_keys(self.conditions, "conditions")
        return self


class Rule(BaseModel):
    """A policy rule that defines requirements for environment configuration.

    Rules are defined in JSON or YAML and specify what values parsed
    configuration resources must have to comply with governance policy.

    Examples:
        Exact version pins in environment.yml:
        {
            "id": "conda-dependency-pinned",
            "name": "Conda dependencies must pin an exact version",
            "resource_type": "conda_dependency",
            "severity": "error",
            "property": "pinned",
            "equals": true,
            "message": "{{resource_name}} must pin an exact version (e.g. numpy=1.26.4)"
        }

        Scoped check with where:
        {
            "id": "pipeline-python-version-pinned",
            "name": "Pipelines must pin the Python version",
            "resource_type": "azure_pipeline_step",
            "where": {"task_name": "UsePythonVersion"},
            "severity": "warning",
            "property": "inputs.versionSpec",
            "regex_match": "^\\\\d+\\\\.\\\\d+(\\\\.\\\\d+)?$",
            "message": "{{resource_name}} should request an exact Python version"
        }

        Forbidden resource:
        {
            "id": "no-pip-conf",
            "name": "Per-repo pip.conf is not allowed",
            "resource_type": "pip_config",
            "severity": "error",
            "resource_forbidden": true,
            "message": "{{resource_name}}: configure the package index centrally"
        }
    """

    id: str = Field(
        ...,
        description="Unique identifier for the rule",
        min_length=1,
    )

    name: str = Field(
        ...,
        description="Human-readable name for the rule",
        min_length=1,
    )

    resource_type: Optional[str] = Field(
        None,
        description="Resource type to check (e.g., 'conda_dependency'). Use resource_types for multiple types.",
        min_length=1,
    )

    resource_types: Optional[List[str]] = Field(
        None,
        description="List of resource types to check (alternative to resource_type)",
        min_length=1,
    )

    severity: Literal["error", "warning"] = Field(
        ...,
        description="Severity level: 'error' fails the check, 'warning' is advisory",
    )

    category: Optional[str] = Field(
        None,
        description="Grouping used for --category filtering (e.g., 'reproducibility', 'security')",
        min_length=1,
    )

    remediation: Optional[str] = Field(
        None,
        description="How to fix a violation of this rule",
        min_length=1,
    )

    where: Optional[Dict[str, Any]] = Field(
        None,
        description="Only resources whose properties match every entry are checked",
    )

    property: Optional[str] = Field(
        None,
        description="Dot-notation path to the property to check (e.g., 'inputs.versionSpec'). Not required for resource_forbidden rules.",
        min_length=1,
    )

    # Rule type: forbidden resource (any file producing this type is a violation)
    resource_forbidden: Optional[bool] = Field(
        None,
        description="If true, any resource of this resource_type is a violation",
    )

    # Comparison operators (exactly one must be specified for property-based rules)
    equals: Optional[Scalar] = Field(
        None,
        description="Expected value that the property should equal",
    )

    greater_than: Optional[int | float] = Field(
        None,
        description="Property value must be greater than this number",
    )

    greater_than_or_equal: Optional[int | float] = Field(
        None,
        description="Property value must be greater than or equal to this number",
    )

    less_than: Optional[int | float] = Field(
        None,
        description="Property value must be less than this number",
    )

    less_than_or_equal: Optional[int | float] = Field(
        None,
        description="Property value must be less than or equal to this number",
    )

    contains: Optional[str] = Field(
        None,
        description="Property value (string or list) must contain this substring/element",
    )

    in_list: Optional[List[Scalar]] = Field(
        None,
        description="Property value must be one of the values in this list",
        alias="in",
    )

    all_in: Optional[List[Scalar]] = Field(
        None,
        description="Every element of the property value (or the scalar itself) must be in this allow-list",
    )

    none_in: Optional[List[Scalar]] = Field(
        None,
        description="No element of the property value (nor the scalar itself) may be in this deny-list",
    )

    ordered_in: Optional[List[Scalar]] = Field(
        None,
        description="Every element of the property value must be in this allow-list, in the same relative order",
        min_length=1,
    )

    regex_match: Optional[str] = Field(
        None,
        description="Property value must match this regular expression pattern",
    )

    has_keys: Optional[List[str]] = Field(
        None,
        description="Property value (dict) must contain all of these keys",
        min_length=1,
    )

    is_not_empty: Optional[bool] = Field(
        None,
        description="Property value must exist and not be empty (for dicts, lists, or strings)",
    )

    # Cross-resource relationship checking
    requires_resources: Optional[List[RequiredResource]] = Field(
        None,
        description=(
            "List of required related resources that must exist alongside this resource "
            "(e.g., environment.yml must have a conda-lock file next to it)."
        ),
        min_length=1,
    )

    message: str = Field(
        ...,
        description="Message to display when rule fails. Supports {{resource_name}} template.",
        min_length=1,
    )

    model_config = {"populate_by_name": True}

    @field_validator("property")
    @classmethod
    def validate_property_path_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate property path format for security."""
        if v is not None:
            try:
                validate_property_path(v)
            except Exception as e:
                raise ValueError(f"Invalid property path: {e}")
        return v

    @field_validator("where")
    @classmethod
    def validate_where_paths(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Validate where-clause keys are safe property paths."""
        if v is not None and len(v) == 0:
            raise ValueError("where must contain at least one entry")
        _validate_path_keys(v, "where")
        return v

    @model_validator(mode="after")
    def validate_resource_type_exclusivity(self) -> "Rule":
        """Ensure either resource_type OR resource_types is specified, not both."""
        has_single = self.resource_type is not None
        has_multiple = self.resource_types is not None

        if not has_single and not has_multiple:
            raise ValueError(
                "Rule must specify either 'resource_type' (single) or 'resource_types' (multiple)"
            )

        if has_single and has_multiple:
            raise ValueError(
                "Rule cannot specify both 'resource_type' and 'resource_types'. Use one or the other."
            )

        if has_multiple and len(self.resource_types) != len(set(self.resource_types)):
            raise ValueError("resource_types contains duplicate entries")

        return self

    @model_validator(mode="after")
    def validate_comparison_operator(self) -> "Rule":
        """Ensure exactly one comparison operator is specified, or resource_forbidden, or requires_resources."""
        specified = self.specified_operators()

        if self.resource_forbidden is True:
            if self.property is not None:
                raise ValueError(
                    "resource_forbidden rules should not specify a property"
                )
            if specified:
                raise ValueError(
                    "resource_forbidden rules should not specify comparison operators"
                )
            if self.requires_resources is not None:
                raise ValueError(
                    "resource_forbidden rules cannot specify requires_resources"
                )
            return self

        # Pure cross-resource rule: no property, no operators
        if self.requires_resources and self.property is None:
            if specified:
                raise ValueError(
                    "Cross-resource rules without property should not specify comparison operators"
                )
            return self

        if self.property is None:
            raise ValueError(
                "Rules must specify either a property to check, resource_forbidden, or requires_resources"
            )

        if len(specified) == 0:
            raise ValueError(
                "Rule must specify exactly one comparison operator: "
                "equals, greater_than, greater_than_or_equal, less_than, less_than_or_equal, "
                "contains, in, all_in, none_in, ordered_in, regex_match, has_keys, or is_not_empty"
            )

        if len(specified) > 1:
            raise ValueError(
                f"Rule must specify only one comparison operator, found multiple: {', '.join(specified)}"
            )

        return self

    def specified_operators(self) -> List[str]:
        """Names of the comparison operators set on this rule."""
        # equals: null is indistinguishable from "unset"; null checks use is_not_empty
        return [name for name in OPERATOR_FIELDS if getattr(self, name) is not None]

    def describe_check(self) -> str:
        """Short human description of the comparison, e.g. ">= 7"."""
        if self.resource_forbidden:
            return "resource is forbidden"
        if self.equals is not None:
            return f"equals '{self.equals}'"
        if self.greater_than is not None:
            return f"> {self.greater_than}"
        if self.greater_than_or_equal is not None:
            return f">= {self.greater_than_or_equal}"
        if self.less_than is not None:
            return f"< {self.less_than}"
        if self.less_than_or_equal is not None:
            return f"<= {self.less_than_or_equal}"
        if self.contains is not None:
            return f"contains '{self.contains}'"
        if self.in_list is not None:
            return f"in {self.in_list}"
        if self.all_in is not None:
            return f"all in {self.all_in}"
        if self.none_in is not None:
            return f"none in {self.none_in}"
        if self.ordered_in is not None:
            return f"in order {self.ordered_in}"
        if self.regex_match is not None:
            return f"matches pattern '{self.regex_match}'"
        if self.has_keys is not None:
            return f"has keys {self.has_keys}"
        if self.is_not_empty is not None:
            return "is not empty"
        if self.requires_resources:
            return "required related resources"
        return "unknown"

    def format_message(self, resource_name: str, output_context: str = "terminal") -> str:
        """Format the rule message with resource context.

        Args:
            resource_name: Name of the resource that violated the rule
            output_context: Output context for sanitization ("terminal", "github", "azure", "json")

        Returns:
            Formatted message with template variables replaced and sanitized
        """
        from envpolicy.security import sanitize_for_output

        safe_resource_name = sanitize_for_output(resource_name, context=output_context)

        return self.message.replace("{{resource_name}}", safe_resource_name)

    def matches_resource_type(self, resource_type: str) -> bool:
        """Check if this rule applies to the given resource type."""
        if self.resource_type is not None:
            return resource_type == self.resource_type
        elif self.resource_types is not None:
            return resource_type in self.resource_types
        return False

    def target_types(self) -> List[str]:
        """Resource types this rule applies to."""
        if self.resource_type is not None:
            return [self.resource_type]
        return list(self.resource_types or [])

    def __str__(self) -> str:
        """String representation of the rule."""
        return f"Rule({self.id}: {self.name})"

    def __repr__(self) -> str:
        """Detailed representation of the rule."""
        return (
            f"Rule(id='{self.id}', name='{self.name}', "
            f"resource_type='{self.resource_type}', severity='{self.severity}')"
        )
