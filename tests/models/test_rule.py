"""Tests for Rule model."""

import pytest
from pydantic import ValidationError

from envpolicy.models.rule import RequiredResource, Rule


def _rule(**overrides) -> Rule:
    data = {
        "id": "test",
        "name": "Test",
        "resource_type": "conda_dependency",
        "severity": "error",
        "property": "pinned",
        "equals": True,
        "message": "msg",
    }
    data.update(overrides)
    return Rule(**data)


def test_rule_creation_valid():
    """Test creating a valid rule."""
    rule = _rule(message="{{resource_name}} must pin")

    assert rule.id == "test"
    assert rule.resource_type == "conda_dependency"
    assert rule.severity == "error"
    assert rule.property == "pinned"
    assert rule.equals is True
    assert rule.category is None
    assert rule.remediation is None


@pytest.mark.parametrize("severity", ["error", "warning"])
def test_rule_severity_valid(severity):
    assert _rule(severity=severity).severity == severity


def test_rule_severity_invalid():
    with pytest.raises(ValidationError):
        _rule(severity="info")


@pytest.mark.parametrize("field", ["id", "name", "message"])
def test_rule_required_strings_not_empty(field):
    with pytest.raises(ValidationError):
        _rule(**{field: ""})


def test_rule_in_alias():
    """'in' in rule files populates in_list."""
    rule = Rule(
        **{
            "id": "renv-source",
            "name": "Source",
            "resource_type": "renv_package",
            "severity": "warning",
            "property": "source",
            "in": ["Repository", "Bioconductor"],
            "message": "msg",
        }
    )
    assert rule.in_list == ["Repository", "Bioconductor"]
    assert rule.describe_check() == "in ['Repository', 'Bioconductor']"


def test_rule_in_list_by_field_name():
    rule = _rule(equals=None, property="source", in_list=["Repository"])
    assert rule.in_list == ["Repository"]


def test_rule_requires_an_operator():
    with pytest.raises(ValidationError, match="exactly one comparison operator"):
        _rule(equals=None)


def test_rule_rejects_multiple_operators():
    with pytest.raises(ValidationError, match="only one comparison operator"):
        _rule(property="channels", equals=None, all_in=["conda-forge"], none_in=["defaults"])


def test_rule_requires_property_without_cross_resource():
    with pytest.raises(ValidationError, match="property to check"):
        _rule(property=None, equals=None)


def test_rule_resource_type_exclusivity():
    with pytest.raises(ValidationError, match="either 'resource_type'"):
        _rule(resource_type=None)

    with pytest.raises(ValidationError, match="cannot specify both"):
        _rule(resource_types=["conda_dependency", "pip_requirement"])


def test_rule_resource_types_duplicates_rejected():
    with pytest.raises(ValidationError, match="duplicate"):
        _rule(resource_type=None, resource_types=["pip_requirement", "pip_requirement"])


def test_rule_multiple_resource_types():
    rule = _rule(resource_type=None, resource_types=["conda_dependency", "pip_requirement"])

    assert rule.matches_resource_type("pip_requirement")
    assert rule.matches_resource_type("conda_dependency")
    assert not rule.matches_resource_type("renv_package")
    assert rule.target_types() == ["conda_dependency", "pip_requirement"]


def test_rule_forbidden_resource():
    rule = _rule(property=None, equals=None, resource_type="pip_config", resource_forbidden=True)

    assert rule.resource_forbidden is True
    assert rule.describe_check() == "resource is forbidden"


def test_rule_forbidden_rejects_property_and_operators():
    with pytest.raises(ValidationError, match="should not specify a property"):
        _rule(resource_forbidden=True, equals=None)

    with pytest.raises(ValidationError, match="comparison operators"):
        _rule(resource_forbidden=True, property=None)


def test_rule_where_clause():
    rule = _rule(
        resource_type="azure_pipeline_step",
        where={"task_name": "UsePythonVersion"},
        property="inputs.versionSpec",
        equals=None,
        regex_match=r"^\d+\.\d+$",
    )
    assert rule.where == {"task_name": "UsePythonVersion"}


def test_rule_where_must_not_be_empty():
    with pytest.raises(ValidationError, match="at least one entry"):
        _rule(where={})


def test_rule_where_invalid_path():
    with pytest.raises(ValidationError, match="Invalid property path in where"):
        _rule(where={"inputs..versionSpec": "3.11"})


def test_rule_invalid_property_path():
    with pytest.raises(ValidationError, match="Invalid property path"):
        _rule(property="a..b")


def test_rule_category_and_remediation():
    rule = _rule(category="reproducibility", remediation="Pin it")

    assert rule.category == "reproducibility"
    assert rule.remediation == "Pin it"


def test_cross_resource_rule_without_property():
    rule = _rule(
        resource_type="conda_environment",
        property=None,
        equals=None,
        requires_resources=[
            {"resource_type": "conda_lockfile", "relationship": "same_directory"}
        ],
    )

    assert len(rule.requires_resources) == 1
    assert rule.requires_resources[0].min_count == 1
    assert rule.describe_check() == "required related resources"


def test_cross_resource_rule_rejects_operators_without_property():
    with pytest.raises(ValidationError, match="should not specify comparison operators"):
        _rule(
            property=None,
            requires_resources=[
                {"resource_type": "conda_lockfile", "relationship": "same_directory"}
            ],
        )


def test_required_resource_relationship_values():
    for relationship in ("same_directory", "contained_in_primary", "anywhere"):
        required = RequiredResource(resource_type="x", relationship=relationship)
        assert required.relationship == relationship

    with pytest.raises(ValidationError):
        RequiredResource(resource_type="x", relationship="references_primary")


def test_required_resource_count_range():
    RequiredResource(resource_type="x", relationship="anywhere", min_count=1, max_count=1)

    with pytest.raises(ValidationError, match="max_count"):
        RequiredResource(resource_type="x", relationship="anywhere", min_count=3, max_count=2)


def test_required_resource_filter_paths_validated():
    with pytest.raises(ValidationError, match="Invalid property path in filter"):
        RequiredResource(
            resource_type="azure_pipeline_step",
            relationship="contained_in_primary",
            filter={"": "PublishTestResults"},
        )


@pytest.mark.parametrize(
    "operator,value,expected",
    [
        ("greater_than", 1, "> 1"),
        ("greater_than_or_equal", 7, ">= 7"),
        ("less_than", 2, "< 2"),
        ("less_than_or_equal", 0, "<= 0"),
        ("contains", "forge", "contains 'forge'"),
        ("all_in", ["conda-forge"], "all in ['conda-forge']"),
        ("none_in", ["defaults"], "none in ['defaults']"),
        ("ordered_in", ["internal", "conda-forge"], "in order ['internal', 'conda-forge']"),
        ("regex_match", "^3", "matches pattern '^3'"),
        ("has_keys", ["CRAN"], "has keys ['CRAN']"),
        ("is_not_empty", True, "is not empty"),
    ],
)
def test_describe_check(operator, value, expected):
    rule = _rule(equals=None, **{operator: value})
    assert rule.describe_check() == expected


def test_format_message_substitutes_resource_name():
    rule = _rule(message="{{resource_name}} must pin an exact version")
    assert rule.format_message("environment.yml:pandas") == "environment.yml:pandas must pin an exact version"


def test_format_message_sanitizes_resource_name():
    rule = _rule(message="{{resource_name}} bad")
    message = rule.format_message("evil::set-output", output_context="github")
    assert "::" not in message


def test_str_and_repr():
    rule = _rule()
    assert str(rule) == "Rule(test: Test)"
    assert "resource_type='conda_dependency'" in repr(rule)
