"""Shared pytest fixtures for envpolicy tests."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from envpolicy.models.rule import Rule
from envpolicy.models.violation import Violation


def write_files(root: Path, files: Dict[str, str]) -> Path:
    """Write {relative path: content} under root and return root."""
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[[Dict[str, str]], Path]:
    """Build a repository directory from a mapping of paths to file contents."""

    def _make(files: Dict[str, str]) -> Path:
        return write_files(tmp_path / "repo", files)

    return _make


@pytest.fixture
def sample_rule() -> Rule:
    """Create a sample rule for testing."""
    return Rule(
        id="test-rule",
        name="Test Rule",
        resource_type="conda_dependency",
        severity="error",
        property="pinned",
        equals=True,
        message="{{resource_name}} must pin an exact version",
    )


@pytest.fixture
def sample_warning_rule() -> Rule:
    """Create a sample warning rule for testing."""
    return Rule(
        id="test-warning",
        name="Test Warning",
        resource_type="conda_config",
        severity="warning",
        property="channel_priority",
        equals="strict",
        message="{{resource_name}} should use strict channel priority",
    )


@pytest.fixture
def sample_violation() -> Violation:
    """Create a sample violation for testing."""
    return Violation(
        rule_id="test-rule",
        rule_name="Test Rule",
        resource_name="environment.yml:pandas",
        resource_type="conda_dependency",
        severity="error",
        message="environment.yml:pandas must pin an exact version",
        location="environment.yml:8",
        remediation="Use name=version",
    )


@pytest.fixture
def sample_resources() -> List[Dict[str, Any]]:
    """Create sample normalized resources for testing."""
    return [
        {
            "address": "environment.yml:numpy",
            "type": "conda_dependency",
            "name": "numpy",
            "values": {"name": "numpy", "version": "1.26.4", "pinned": True, "parent": "environment.yml"},
            "file": "environment.yml",
            "line": 7,
        },
        {
            "address": "environment.yml:pandas",
            "type": "conda_dependency",
            "name": "pandas",
            "values": {"name": "pandas", "version": None, "pinned": False, "parent": "environment.yml"},
            "file": "environment.yml",
            "line": 8,
        },
        {
            "address": ".condarc",
            "type": "conda_config",
            "name": ".condarc",
            "values": {"channel_priority": "flexible", "auto_activate_base": True},
            "file": ".condarc",
            "line": None,
        },
    ]


@pytest.fixture
def fixtures_dir() -> Path:
    """Get the path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_repo(fixtures_dir: Path) -> Path:
    """Repository with a known mix of compliant and non-compliant files."""
    return fixtures_dir / "sample-repo"


@pytest.fixture
def temp_rule_file(tmp_path: Path) -> Path:
    """Create a temporary rule file for testing."""
    rule_data = {
        "id": "temp-test-rule",
        "name": "Temporary Test Rule",
        "resource_type": "pip_requirement",
        "severity": "error",
        "property": "pinned",
        "equals": True,
        "message": "Test message for {{resource_name}}",
    }

    rule_file = tmp_path / "test-rule.json"
    with open(rule_file, "w") as f:
        json.dump(rule_data, f)

    return rule_file


@pytest.fixture
def temp_rules_dir(tmp_path: Path) -> Path:
    """Create a temporary directory with multiple rule files."""
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()

    rules = [
        {
            "id": "rule-1",
            "name": "Rule One",
            "resource_type": "conda_dependency",
            "severity": "error",
            "property": "pinned",
            "equals": True,
            "message": "Message one",
        },
        {
            "id": "rule-2",
            "name": "Rule Two",
            "resource_type": "conda_config",
            "severity": "warning",
            "property": "channel_priority",
            "equals": "strict",
            "message": "Message two",
        },
    ]

    for i, rule_data in enumerate(rules):
        rule_file = rules_dir / f"rule-{i + 1}.json"
        with open(rule_file, "w") as f:
            json.dump(rule_data, f)

    return rules_dir
