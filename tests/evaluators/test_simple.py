"""Tests for simple evaluator."""

import pytest

from envpolicy.evaluators.simple import (
    SimpleEvaluator,
    matches_all,
    resource_location,
    values_equal,
)
from envpolicy.models.rule import RequiredResource, Rule
from envpolicy.models.violation import Violation


def _resource(address, resource_type, values, file=None, line=None):
    return {
        "address": address,
        "type": resource_type,
        "name": address.rsplit(":", 1)[-1],
        "values": values,
        "file": file,
        "line": line,
    }


def _rule(**kwargs):
    defaults = {
        "id": "check",
        "name": "Check",
        "resource_type": "conda_config",
        "severity": "error",
        "message": "{{resource_name}} failed",
    }
    defaults.update(kwargs)
    return Rule(**defaults)


def test_evaluator_no_violations(sample_rule, sample_resources):
    """Test evaluation when all resources comply."""
    evaluator = SimpleEvaluator()

    violations = evaluator.evaluate(sample_rule, sample_resources[:1])
    assert len(violations) == 0


def test_evaluator_finds_violation(sample_rule, sample_resources):
    """Test evaluation finds violations."""
    evaluator = SimpleEvaluator()

    violations = evaluator.evaluate(sample_rule, sample_resources)

    assert len(violations) == 1
    assert isinstance(violations[0], Violation)
    assert violations[0].resource_name == "environment.yml:pandas"
    assert violations[0].resource_type == "conda_dependency"
    assert violations[0].severity == "error"
    assert violations[0].location == "environment.yml:8"
    assert violations[0].message == (
        "environment.yml:pandas must pin an exact version (expected equals 'True', got 'False')"
    )


def test_evaluator_missing_property(sample_rule):
    """Test evaluation when property doesn't exist."""
    evaluator = SimpleEvaluator()
    resources = [_resource("environment.yml:numpy", "conda_dependency", {"name": "numpy"})]

    violations = evaluator.evaluate(sample_rule, resources)

    assert len(violations) == 1
    assert "(property 'pinned' not found)" in violations[0].message


def test_evaluator_null_property_reads_as_missing():
    rule = _rule(property="channel_priority", equals="strict")
    resources = [_resource(".condarc", "conda_config", {"channel_priority": None})]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert "not found" in violations[0].message


def test_evaluator_filters_by_resource_type(sample_warning_rule, sample_resources):
    """Test that evaluator only checks matching resource types."""
    violations = SimpleEvaluator().evaluate(sample_warning_rule, sample_resources)

    assert [v.resource_name for v in violations] == [".condarc"]
    assert violations[0].location == ".condarc"


def test_evaluator_multiple_resource_types():
    rule = _rule(
        resource_types=["requirements_file", "pip_requirements_input"],
        resource_type=None,
        property="requirement_count",
        greater_than=0,
    )
    resources = [
        _resource("requirements.txt", "requirements_file", {"requirement_count": 0}),
        _resource("requirements.in", "pip_requirements_input", {"requirement_count": 0}),
        _resource("environment.yml", "conda_environment", {"requirement_count": 0}),
    ]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert [v.resource_name for v in violations] == ["requirements.txt", "requirements.in"]


def test_evaluator_where_clause():
    rule = _rule(
        resource_type="azure_pipeline_step",
        where={"task_name": "UsePythonVersion"},
        property="inputs.versionSpec",
        regex_match=r"^\d+\.\d+(\.\d+)?$",
    )
    resources = [
        _resource("p.yml:steps[0]", "azure_pipeline_step", {"task_name": "UsePythonVersion", "inputs": {"versionSpec": "3.x"}}),
        _resource("p.yml:steps[1]", "azure_pipeline_step", {"task_name": "UsePythonVersion", "inputs": {"versionSpec": "3.11"}}),
        _resource("p.yml:steps[2]", "azure_pipeline_step", {"task_name": None, "inputs": {}}),
    ]

    evaluator = SimpleEvaluator()
    violations = evaluator.evaluate(rule, resources)

    assert len(evaluator.in_scope(rule, resources)) == 2
    assert [v.resource_name for v in violations] == ["p.yml:steps[0]"]
    assert "matches pattern" in violations[0].message


def test_evaluator_forbidden_resource():
    rule = _rule(
        resource_type="pip_config",
        resource_forbidden=True,
        message="{{resource_name}}: configure the index centrally",
        remediation="Delete the file",
    )
    resources = [_resource("pip.conf", "pip_config", {}, file="pip.conf", line=1)]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert len(violations) == 1
    assert violations[0].message == "pip.conf: configure the index centrally"
    assert violations[0].location == "pip.conf:1"
    assert violations[0].remediation == "Delete the file"


def test_evaluator_skips_pure_cross_resource_rules():
    rule = _rule(
        resource_type="conda_environment",
        requires_resources=[
            RequiredResource(resource_type="conda_lockfile", relationship="same_directory")
        ],
    )

    assert SimpleEvaluator().evaluate(rule, [_resource("environment.yml", "conda_environment", {})]) == []


@pytest.mark.parametrize(
    "operator,expected,actual,passes",
    [
        ("equals", "strict", "strict", True),
        ("equals", "strict", "flexible", False),
        ("equals", False, "false", True),
        ("equals", 7, "7", True),
        ("greater_than", 0, 3, True),
        ("greater_than", 0, 0, False),
        ("greater_than_or_equal", 4, "4", True),
        ("less_than", 1, 0, True),
        ("less_than", 1, True, False),
        ("less_than_or_equal", 0, 1, False),
        ("less_than_or_equal", 0, "n/a", False),
        ("contains", "conda-forge", ["conda-forge", "bioconda"], True),
        ("contains", "forge", "conda-forge", True),
        ("contains", "defaults", ["conda-forge"], False),
        ("in_list", ["Repository", "Bioconductor"], "Repository", True),
        ("in_list", ["Repository", "Bioconductor"], "GitHub", False),
        ("all_in", ["conda-forge", "bioconda"], ["conda-forge", "bioconda"], True),
        ("all_in", ["conda-forge"], ["conda-forge", "defaults"], False),
        ("all_in", ["conda-forge"], "conda-forge", True),
        ("none_in", ["defaults"], ["conda-forge"], True),
        ("none_in", ["defaults"], ["conda-forge", "defaults"], False),
        ("none_in", ["root", "0"], "root", False),
        ("ordered_in", ["internal", "conda-forge"], ["internal", "conda-forge"], True),
        ("ordered_in", ["internal", "conda-forge"], ["conda-forge", "internal"], False),
        ("ordered_in", ["internal", "conda-forge", "bioconda"], ["internal", "bioconda"], True),
        ("ordered_in", ["internal", "conda-forge"], ["internal", "defaults"], False),
        ("ordered_in", ["conda-forge"], [], True),
        ("regex_match", r"^ubuntu-\d+\.\d+$", "ubuntu-22.04", True),
        ("regex_match", r"^ubuntu-\d+\.\d+$", "ubuntu-latest", False),
        ("has_keys", ["CRAN"], {"CRAN": "https://cran"}, True),
        ("has_keys", ["CRAN"], {"BioC": "https://bioc"}, False),
        ("has_keys", ["CRAN"], ["CRAN"], False),
        ("is_not_empty", True, ["main"], True),
        ("is_not_empty", True, [], False),
        ("is_not_empty", True, "", False),
        ("is_not_empty", True, 0, True),
    ],
)
def test_evaluator_operators(operator, expected, actual, passes):
    rule = _rule(property="value", **{operator: expected})
    resources = [_resource(".condarc", "conda_config", {"value": actual})]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert (len(violations) == 0) is passes


def test_evaluator_in_alias():
    rule = Rule.model_validate(
        {
            "id": "renv-package-source",
            "name": "Repository sources",
            "resource_type": "renv_package",
            "severity": "warning",
            "property": "source",
            "in": ["Repository"],
            "message": "{{resource_name}} bad source",
        }
    )
    resources = [_resource("renv.lock:scratch", "renv_package", {"source": "Local"})]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert violations[0].message == "renv.lock:scratch bad source (expected in ['Repository'], got 'Local')"


def test_evaluator_invalid_regex_never_matches(caplog):
    rule = _rule(property="value", regex_match="[unclosed")
    resources = [_resource(".condarc", "conda_config", {"value": "anything"})]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert len(violations) == 1
    assert "Invalid regex_match pattern" in caplog.text


def test_evaluator_nested_list_property():
    rule = _rule(resource_type="conda_environment", property="channels.0", equals="conda-forge")
    resources = [
        _resource("a/environment.yml", "conda_environment", {"channels": ["conda-forge"]}),
        _resource("b/environment.yml", "conda_environment", {"channels": ["defaults"]}),
        _resource("c/environment.yml", "conda_environment", {"channels": []}),
    ]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert [v.resource_name for v in violations] == ["b/environment.yml", "c/environment.yml"]


def test_evaluate_all(sample_rule, sample_warning_rule, sample_resources):
    violations = SimpleEvaluator().evaluate_all([sample_rule, sample_warning_rule], sample_resources)

    assert [v.rule_id for v in violations] == ["test-rule", "test-warning"]


@pytest.mark.parametrize(
    "actual,expected,equal",
    [
        ("yes", True, True),
        ("0", False, True),
        (True, "true", True),
        (False, "no", True),
        ("1.0", 1, True),
        (2, "2", True),
        ("abc", 1, False),
        ("true", False, False),
        (1, True, True),
    ],
)
def test_values_equal(actual, expected, equal):
    assert values_equal(actual, expected) is equal


def test_matches_all():
    values = {"task_name": "UsePythonVersion", "inputs": {"versionSpec": "3.11"}}

    assert matches_all(values, None) is True
    assert matches_all(values, {"task_name": "UsePythonVersion", "inputs.versionSpec": "3.11"}) is True
    assert matches_all(values, {"task_name": "PublishTestResults"}) is False


@pytest.mark.parametrize(
    "file,line,expected",
    [
        ("environment.yml", 8, "environment.yml:8"),
        ("environment.yml", None, "environment.yml"),
        (None, 8, None),
    ],
)
def test_resource_location(file, line, expected):
    assert resource_location({"file": file, "line": line}) == expected


def test_ordered_in_reports_actual_channels():
    rule = _rule(resource_type="conda_environment", property="channels", ordered_in=["internal", "conda-forge"])
    resources = [
        _resource("environment.yml", "conda_environment", {"channels": ["conda-forge", "internal"]})
    ]

    violations = SimpleEvaluator().evaluate(rule, resources)

    assert len(violations) == 1
    assert "expected in order ['internal', 'conda-forge']" in violations[0].message
