"""Tests for cross-resource relationship evaluator."""

import pytest

from envpolicy.evaluators.cross_resource import CrossResourceEvaluator
from envpolicy.models.rule import RequiredResource, Rule


def _environment(file):
    return {
        "address": file,
        "type": "conda_environment",
        "name": "environment.yml",
        "values": {"channels": ["conda-forge"]},
        "file": file,
        "line": 1,
    }


def _lockfile(file):
    return {
        "address": file,
        "type": "conda_lockfile",
        "name": file.rsplit("/", 1)[-1],
        "values": {"format": "conda-lock", "platforms": ["linux-64"]},
        "file": file,
        "line": None,
    }


def _pipeline(file="azure-pipelines.yml", hosted=True):
    return {
        "address": file,
        "type": "azure_pipeline",
        "name": file,
        "values": {"uses_hosted_pool": hosted},
        "file": file,
        "line": 1,
    }


def _step(file, index, task_name=None, **extra):
    values = {"kind": "task" if task_name else "script", "task_name": task_name, "parent": file}
    values.update(extra)
    return {
        "address": f"{file}:steps[{index}]",
        "type": "azure_pipeline_step",
        "name": task_name or "script",
        "values": values,
        "file": file,
        "line": 10 + index,
    }


@pytest.fixture
def lockfile_rule():
    return Rule(
        id="conda-environment-lockfile",
        name="Environments need a lock file",
        resource_type="conda_environment",
        severity="warning",
        requires_resources=[
            RequiredResource(
                resource_type="conda_lockfile",
                relationship="same_directory",
                message_suffix="Run conda-lock.",
            )
        ],
        message="{{resource_name}} has no lock file",
        remediation="conda-lock -f environment.yml",
    )


@pytest.fixture
def publish_rule():
    return Rule(
        id="pipeline-publishes-test-results",
        name="Pipelines publish test results",
        resource_type="azure_pipeline",
        severity="warning",
        requires_resources=[
            RequiredResource(
                resource_type="azure_pipeline_step",
                relationship="contained_in_primary",
                filter={"task_name": "PublishTestResults"},
            )
        ],
        message="{{resource_name}} does not publish test results",
    )


def test_same_directory_satisfied(lockfile_rule):
    resources = [_environment("envs/ml/environment.yml"), _lockfile("envs/ml/conda-lock.yml")]

    assert CrossResourceEvaluator().evaluate(lockfile_rule, resources) == []


def test_same_directory_missing(lockfile_rule):
    resources = [
        _environment("envs/ml/environment.yml"),
        _lockfile("envs/conda-lock.yml"),
        _lockfile("envs/ml/nested/conda-lock.yml"),
    ]

    violations = CrossResourceEvaluator().evaluate(lockfile_rule, resources)

    assert len(violations) == 1
    violation = violations[0]
    assert violation.resource_name == "envs/ml/environment.yml"
    assert violation.resource_type == "conda_environment"
    assert violation.severity == "warning"
    assert violation.location == "envs/ml/environment.yml:1"
    assert violation.remediation == "conda-lock -f environment.yml"
    assert violation.message == (
        "envs/ml/environment.yml has no lock file: "
        "Missing required conda_lockfile (found 0, need 1) Run conda-lock."
    )


def test_same_directory_at_root(lockfile_rule):
    resources = [_environment("environment.yml"), _lockfile("conda-lock.yml")]

    assert CrossResourceEvaluator().evaluate(lockfile_rule, resources) == []


def test_contained_in_primary_with_filter(publish_rule):
    resources = [
        _pipeline("azure-pipelines.yml"),
        _step("azure-pipelines.yml", 0, "UsePythonVersion"),
        _step("azure-pipelines.yml", 1),
        _pipeline("ci/release.azure-pipelines.yml"),
        _step("ci/release.azure-pipelines.yml", 0, "PublishTestResults"),
    ]

    violations = CrossResourceEvaluator().evaluate(publish_rule, resources)

    assert [v.resource_name for v in violations] == ["azure-pipelines.yml"]
    assert "found 0, need 1" in violations[0].message


def test_anywhere_relationship():
    rule = Rule(
        id="repo-has-condarc",
        name="Repositories ship a .condarc",
        resource_type="conda_environment",
        severity="error",
        requires_resources=[RequiredResource(resource_type="conda_config", relationship="anywhere")],
        message="{{resource_name}} needs a .condarc somewhere in the repository",
    )
    condarc = {
        "address": "tools/.condarc",
        "type": "conda_config",
        "name": ".condarc",
        "values": {},
        "file": "tools/.condarc",
        "line": None,
    }
    evaluator = CrossResourceEvaluator()

    assert evaluator.evaluate(rule, [_environment("environment.yml"), condarc]) == []
    assert len(evaluator.evaluate(rule, [_environment("environment.yml")])) == 1


def test_primary_where_clause(publish_rule):
    rule = publish_rule.model_copy(update={"where": {"uses_hosted_pool": True}})
    resources = [_pipeline("a.azure-pipelines.yml", hosted=True), _pipeline("b.azure-pipelines.yml", hosted=False)]

    violations = CrossResourceEvaluator().evaluate(rule, resources)

    assert [v.resource_name for v in violations] == ["a.azure-pipelines.yml"]


def test_primary_not_counted_as_its_own_related_resource():
    rule = Rule(
        id="one-environment-per-directory",
        name="One environment file per directory",
        resource_type="conda_environment",
        severity="warning",
        requires_resources=[
            RequiredResource(
                resource_type="conda_environment",
                relationship="same_directory",
                min_count=0,
                max_count=1,
            )
        ],
        message="{{resource_name}} shares its directory with other environments",
    )
    evaluator = CrossResourceEvaluator()

    assert evaluator.evaluate(rule, [_environment("environment.yml")]) == []

    violations = evaluator.evaluate(
        rule,
        [
            _environment("environment.yml"),
            _environment("environment-dev.yml"),
            _environment("environment-gpu.yml"),
        ],
    )
    assert len(violations) == 3
    assert "Too many conda_environment (found 2, max 1)" in violations[0].message


def test_conditions_on_related_resources():
    rule = Rule(
        id="lock-covers-linux",
        name="Lock files target linux",
        resource_type="conda_environment",
        severity="error",
        requires_resources=[
            RequiredResource(
                resource_type="conda_lockfile",
                relationship="same_directory",
                conditions={"platforms.0": "linux-64", "format": "conda-lock"},
            )
        ],
        message="{{resource_name}} lock file is incomplete",
    )
    lock = _lockfile("conda-lock.yml")
    lock["values"]["platforms"] = ["osx-arm64"]

    violations = CrossResourceEvaluator().evaluate(rule, [_environment("environment.yml"), lock])

    assert len(violations) == 1
    assert violations[0].message == (
        "environment.yml lock file is incomplete: Related resource conda-lock.yml "
        "fails condition: platforms.0 is 'osx-arm64', expected 'linux-64'"
    )


def test_rule_without_requirements_is_ignored(sample_rule, sample_resources):
    assert CrossResourceEvaluator().evaluate(sample_rule, sample_resources) == []


def test_property_rule_with_requirements_runs_both_checks():
    rule = Rule(
        id="env-channels-and-lock",
        name="Channels and lock",
        resource_type="conda_environment",
        severity="error",
        property="channels",
        contains="conda-forge",
        requires_resources=[RequiredResource(resource_type="conda_lockfile", relationship="same_directory")],
        message="{{resource_name}} problem",
    )

    violations = CrossResourceEvaluator().evaluate(rule, [_environment("environment.yml")])

    assert len(violations) == 1
    assert "Missing required conda_lockfile" in violations[0].message
