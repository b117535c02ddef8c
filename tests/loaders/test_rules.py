"""Tests for rule loader."""

import json

import pytest

from envpolicy.loaders.rules import RuleLoadError, load_rules, load_single_rule
from envpolicy.models.rule import Rule


def test_load_rules_from_directory(temp_rules_dir):
    """Test loading rules from a directory."""
    rules = load_rules(str(temp_rules_dir))

    assert len(rules) == 2
    assert all(isinstance(r, Rule) for r in rules)
    assert [r.id for r in rules] == ["rule-1", "rule-2"]


def test_load_rules_sorted_by_id(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    for rule_id in ("zeta", "alpha", "mid"):
        (rules_dir / f"a-{rule_id}.json").write_text(
            json.dumps(
                {
                    "id": rule_id,
                    "name": rule_id,
                    "resource_type": "conda_dependency",
                    "severity": "error",
                    "property": "pinned",
                    "equals": True,
                    "message": "msg",
                }
            )
        )

    assert [r.id for r in load_rules(str(rules_dir))] == ["alpha", "mid", "zeta"]


def test_load_rules_nonexistent_directory():
    with pytest.raises(RuleLoadError, match="does not exist"):
        load_rules("/nonexistent/path")


def test_load_rules_not_a_directory(temp_rule_file):
    with pytest.raises(RuleLoadError, match="not a directory"):
        load_rules(str(temp_rule_file))


def test_load_rules_no_rule_files(tmp_path):
    empty_dir = tmp_path / "empty"
    empty_dir.mkdir()
    (empty_dir / "README.md").write_text("# rules go here")

    with pytest.raises(RuleLoadError, match="No rule files"):
        load_rules(str(empty_dir))


def test_load_rules_yaml(tmp_path):
    """Rules can be written in YAML, including the 'in' operator."""
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "renv.yml").write_text(
        "id: renv-package-source\n"
        "name: Packages from a repository\n"
        "resource_type: renv_package\n"
        "severity: warning\n"
        "property: source\n"
        "in: [Repository, Bioconductor]\n"
        "message: '{{resource_name}} comes from elsewhere'\n"
    )

    rules = load_rules(str(rules_dir))

    assert len(rules) == 1
    assert rules[0].in_list == ["Repository", "Bioconductor"]


def test_load_rules_invalid_json(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "invalid.json").write_text("{ invalid json }")

    with pytest.raises(RuleLoadError, match="Invalid JSON"):
        load_rules(str(rules_dir))


def test_load_rules_invalid_yaml(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "invalid.yaml").write_text("id: [unclosed\n")

    with pytest.raises(RuleLoadError, match="Invalid YAML"):
        load_rules(str(rules_dir))


def test_load_rules_yaml_list_rejected(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "list.yml").write_text("- id: one\n- id: two\n")

    with pytest.raises(RuleLoadError, match="single rule object"):
        load_rules(str(rules_dir))


def test_load_rules_invalid_schema(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    with open(rules_dir / "invalid.json", "w") as f:
        json.dump({"id": "test", "missing": "required fields"}, f)

    with pytest.raises(RuleLoadError, match="Validation failed"):
        load_rules(str(rules_dir))


def test_load_rules_duplicate_ids(tmp_path, temp_rules_dir):
    duplicate = json.loads((temp_rules_dir / "rule-1.json").read_text())
    (temp_rules_dir / "rule-1-copy.json").write_text(json.dumps(duplicate))

    with pytest.raises(RuleLoadError, match="Duplicate rule id 'rule-1'"):
        load_rules(str(temp_rules_dir))


def test_load_rules_reports_every_failing_file(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "a.json").write_text("{ nope")
    (rules_dir / "b.json").write_text(json.dumps({"id": "x"}))

    with pytest.raises(RuleLoadError) as exc_info:
        load_rules(str(rules_dir))

    message = str(exc_info.value)
    assert "a.json: Invalid JSON" in message
    assert "b.json: Validation failed" in message


def test_load_rules_recursive(tmp_path):
    """Test loading rules recursively from subdirectories."""
    subdir = tmp_path / "rules" / "conda"
    subdir.mkdir(parents=True)
    with open(subdir / "nested.json", "w") as f:
        json.dump(
            {
                "id": "nested-rule",
                "name": "Nested Rule",
                "resource_type": "conda_environment",
                "severity": "error",
                "property": "channels",
                "none_in": ["defaults"],
                "message": "msg",
            },
            f,
        )

    rules = load_rules(str(tmp_path / "rules"))
    assert len(rules) == 1
    assert rules[0].id == "nested-rule"


def test_load_single_rule(temp_rule_file):
    rule = load_single_rule(str(temp_rule_file))

    assert isinstance(rule, Rule)
    assert rule.id == "temp-test-rule"
    assert rule.name == "Temporary Test Rule"


def test_load_single_rule_nonexistent():
    with pytest.raises(RuleLoadError, match="does not exist"):
        load_single_rule("/nonexistent/file.json")


def test_load_single_rule_not_a_file(tmp_path):
    directory = tmp_path / "looks-like.json"
    directory.mkdir()

    with pytest.raises(RuleLoadError, match="not a file"):
        load_single_rule(str(directory))


def test_load_single_rule_wrong_extension(tmp_path):
    rule_file = tmp_path / "rule.txt"
    rule_file.write_text("{}")

    with pytest.raises(RuleLoadError, match="Invalid file extension"):
        load_single_rule(str(rule_file))
