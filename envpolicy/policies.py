"""Built-in rule pack for conda, pip, renv, Azure Pipelines and Docker.

These rules are written to disk by ``envpolicy init`` and evaluated directly
by ``envpolicy check --builtin``.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from envpolicy.models.rule import Rule

DEFAULT_RULES: Dict[str, Dict[str, Any]] = {
    "conda-dependency-pinned.json": {
        "id": "conda-dependency-pinned",
        "name": "Conda dependencies must pin an exact version",
        "resource_type": "conda_dependency",
        "severity": "error",
        "category": "reproducibility",
        "property": "pinned",
        "equals": True,
        "message": "{{resource_name}} must pin an exact version",
        "remediation": "Use 'name=version' (e.g. numpy=1.26.4) for every dependency in environment.yml.",
    },
    "pip-requirement-pinned.json": {
        "id": "pip-requirement-pinned",
        "name": "pip requirements must pin an exact version",
        "resource_type": "pip_requirement",
        "severity": "error",
        "category": "reproducibility",
        "property": "pinned",
        "equals": True,
        "message": "{{resource_name}} must pin an exact version",
        "remediation": "Use 'name==version', or a VCS URL at a full commit hash.",
    },
    "conda-auto-activate-base-disabled.json": {
        "id": "conda-auto-activate-base-disabled",
        "name": "Conda must not auto-activate the base environment",
        "resource_type": "conda_config",
        "severity": "warning",
        "category": "hygiene",
        "property": "auto_activate_base",
        "equals": False,
        "message": "{{resource_name}} leaves auto_activate_base enabled",
        "remediation": "Add 'auto_activate_base: false' to .condarc.",
    },
    "conda-channel-priority-strict.json": {
        "id": "conda-channel-priority-strict",
        "name": "Conda channel priority should be strict",
        "resource_type": "conda_config",
        "severity": "warning",
        "category": "reproducibility",
        "property": "channel_priority",
        "equals": "strict",
        "message": "{{resource_name}} should set channel_priority to strict",
        "remediation": "Add 'channel_priority: strict' to .condarc so packages resolve from the first channel that has them.",
    },
    "conda-no-defaults-channel.json": {
        "id": "conda-no-defaults-channel",
        "name": "Environments must not use the 'defaults' channel",
        "resource_type": "conda_environment",
        "severity": "error",
        "category": "security",
        "property": "channels",
        "none_in": ["defaults"],
        "message": "{{resource_name}} lists the 'defaults' channel",
        "remediation": "Replace 'defaults' with the internal mirror followed by conda-forge.",
    },
    "conda-channel-order.json": {
        "id": "conda-channel-order",
        "name": "Environment channels must follow the approved order",
        "resource_type": "conda_environment",
        "severity": "warning",
        "category": "reproducibility",
        "property": "channels",
        "ordered_in": ["conda-forge", "bioconda", "defaults"],
        "message": "{{resource_name}} lists channels outside the approved order",
        "remediation": "Order channels as conda-forge, then bioconda. Add the internal mirror to the front of this rule's ordered_in list.",
    },
    "conda-environment-lockfile.json": {
        "id": "conda-environment-lockfile",
        "name": "Conda environments should have a lock file",
        "resource_type": "conda_environment",
        "severity": "warning",
        "category": "reproducibility",
        "requires_resources": [
            {
                "resource_type": "conda_lockfile",
                "relationship": "same_directory",
                "min_count": 1,
                "message_suffix": "(run 'conda-lock -f environment.yml')",
            }
        ],
        "message": "{{resource_name}} has no lock file",
        "remediation": "Generate conda-lock.yml or an @EXPLICIT spec file next to environment.yml and commit it.",
    },
    "pip-index-https.json": {
        "id": "pip-index-https",
        "name": "pip package indexes must use HTTPS",
        "resource_type": "pip_config",
        "severity": "error",
        "category": "security",
        "property": "insecure_index_count",
        "less_than_or_equal": 0,
        "message": "{{resource_name}} points pip at a plain-http index",
        "remediation": "Use an https:// index-url and extra-index-url.",
    },
    "pip-no-trusted-host.json": {
        "id": "pip-no-trusted-host",
        "name": "pip should not disable certificate checks",
        "resource_type": "pip_config",
        "severity": "warning",
        "category": "security",
        "property": "trusted_host_count",
        "less_than_or_equal": 0,
        "message": "{{resource_name}} marks hosts as trusted",
        "remediation": "Remove trusted-host and install the internal CA certificate instead.",
    },
    "requirements-hashes.json": {
        "id": "requirements-hashes",
        "name": "Compiled requirements should carry hashes",
        "resource_type": "requirements_file",
        "severity": "warning",
        "category": "security",
        "property": "all_hashed",
        "equals": True,
        "message": "{{resource_name}} has requirements without --hash",
        "remediation": "Compile with 'pip-compile --generate-hashes' and install with '--require-hashes'.",
    },
    "pip-tools-compiled.json": {
        "id": "pip-tools-compiled",
        "name": "requirements.in should be compiled to requirements.txt",
        "resource_type": "pip_requirements_input",
        "severity": "warning",
        "category": "reproducibility",
        "requires_resources": [
            {
                "resource_type": "requirements_file",
                "relationship": "same_directory",
                "min_count": 1,
            }
        ],
        "message": "{{resource_name}} has no compiled requirements file",
        "remediation": "Run 'pip-compile requirements.in' and commit the output.",
    },
    "renv-lockfile-present.json": {
        "id": "renv-lockfile-present",
        "name": "R projects must commit renv.lock",
        "resource_type": "rprofile",
        "severity": "error",
        "category": "reproducibility",
        "requires_resources": [
            {
                "resource_type": "renv_lockfile",
                "relationship": "same_directory",
                "min_count": 1,
            }
        ],
        "message": "{{resource_name}} has no renv.lock next to it",
        "remediation": "Run renv::snapshot() and commit renv.lock.",
    },
    "rprofile-activates-renv.json": {
        "id": "rprofile-activates-renv",
        "name": ".Rprofile should activate renv",
        "resource_type": "rprofile",
        "severity": "warning",
        "category": "reproducibility",
        "property": "activates_renv",
        "equals": True,
        "message": "{{resource_name}} does not source renv/activate.R",
        "remediation": "Run renv::activate() or add source(\"renv/activate.R\") to .Rprofile.",
    },
    "renv-repositories-https.json": {
        "id": "renv-repositories-https",
        "name": "renv repositories must use HTTPS",
        "resource_type": "renv_lockfile",
        "severity": "error",
        "category": "security",
        "property": "insecure_repository_count",
        "less_than_or_equal": 0,
        "message": "{{resource_name}} records a plain-http repository",
        "remediation": "Point the CRAN/Posit Package Manager repositories at https:// URLs and snapshot again.",
    },
    "renv-package-source.json": {
        "id": "renv-package-source",
        "name": "R packages should come from a package repository",
        "resource_type": "renv_package",
        "severity": "warning",
        "category": "reproducibility",
        "property": "source",
        "in": ["Repository", "Bioconductor"],
        "message": "{{resource_name}} is installed from outside a package repository",
        "remediation": "Install the package from CRAN, the internal repository or Bioconductor, then renv::snapshot().",
    },
    "pipeline-no-inline-secrets.json": {
        "id": "pipeline-no-inline-secrets",
        "name": "Pipelines must not hold secrets inline",
        "resource_type": "azure_pipeline",
        "severity": "error",
        "category": "security",
        "property": "inline_secret_count",
        "less_than_or_equal": 0,
        "message": "{{resource_name}} defines secret-looking variables with literal values",
        "remediation": "Move secrets to a variable group linked to Key Vault and reference them as $(name).",
    },
    "pipeline-vm-image-pinned.json": {
        "id": "pipeline-vm-image-pinned",
        "name": "Pipelines should pin the hosted agent image",
        "resource_type": "azure_pipeline",
        "where": {"uses_hosted_pool": True},
        "severity": "warning",
        "category": "ci",
        "property": "vm_image",
        "regex_match": "^(?!.*latest).+$",
        "message": "{{resource_name}} uses a floating vmImage",
        "remediation": "Use a versioned image such as ubuntu-22.04 instead of ubuntu-latest.",
    },
    "pipeline-python-version-pinned.json": {
        "id": "pipeline-python-version-pinned",
        "name": "Pipelines should request an exact Python version",
        "resource_type": "azure_pipeline_step",
        "where": {"task_name": "UsePythonVersion"},
        "severity": "warning",
        "category": "ci",
        "property": "inputs.versionSpec",
        "regex_match": "^\\d+\\.\\d+(\\.\\d+)?$",
        "message": "{{resource_name}} should request an exact Python version",
        "remediation": "Set versionSpec to a major.minor version such as '3.11'.",
    },
    "pipeline-publishes-test-results.json": {
        "id": "pipeline-publishes-test-results",
        "name": "Pipelines should publish test results",
        "resource_type": "azure_pipeline",
        "severity": "warning",
        "category": "ci",
        "requires_resources": [
            {
                "resource_type": "azure_pipeline_step",
                "relationship": "contained_in_primary",
                "filter": {"task_name": "PublishTestResults"},
                "min_count": 1,
            }
        ],
        "message": "{{resource_name}} does not publish test results",
        "remediation": "Add a PublishTestResults@2 step after the test run.",
    },
    "docker-base-image-pinned.json": {
        "id": "docker-base-image-pinned",
        "name": "Docker base images must be pinned",
        "resource_type": "docker_base_image",
        "severity": "error",
        "category": "reproducibility",
        "property": "pinned",
        "equals": True,
        "message": "{{resource_name}} uses an unpinned base image",
        "remediation": "Use an explicit tag other than 'latest', or better a @sha256 digest.",
    },
    "docker-non-root-user.json": {
        "id": "docker-non-root-user",
        "name": "Containers should not run as root",
        "resource_type": "dockerfile",
        "severity": "warning",
        "category": "security",
        "property": "runs_as_root",
        "equals": False,
        "message": "{{resource_name}} runs its final stage as root",
        "remediation": "Create an unprivileged user and switch to it with USER before CMD.",
    },
}

MINIMAL_RULE_FILES = (
    "conda-dependency-pinned.json",
    "conda-no-defaults-channel.json",
    "conda-auto-activate-base-disabled.json",
)

CHANNEL_ALLOWLIST_FILENAME = "conda-channels-allowed.yml"

CHANNEL_ALLOWLIST_TEMPLATE = """\
# Channel allow-list for environment.yml files.
# Replace the entries under ordered_in with your organization's channels,
# listed in the order environments are expected to use them. Every channel
# must be on the list and environments may skip entries but never reorder them.
id: conda-channels-allowed
name: Environments may only use approved channels
resource_type: conda_environment
severity: error
category: security
property: channels
ordered_in:
  - conda-forge
message: "{{resource_name}} uses a channel outside the allow-list or out of order"
remediation: Remove unapproved channels, list the rest in allow-list order, or request an addition.
"""


def builtin_rules() -> List[Rule]:
    """The default rule pack as validated Rule objects, sorted by id."""
    rules = [Rule(**data) for data in DEFAULT_RULES.values()]
    return sorted(rules, key=lambda r: r.id)


def rule_pack_files(minimal: bool = False) -> Dict[str, str]:
    """File name -> file content for the pack written by init."""
    if minimal:
        selected = {name: DEFAULT_RULES[name] for name in MINIMAL_RULE_FILES}
    else:
        selected = DEFAULT_RULES

    files = {name: json.dumps(data, indent=2) + "\n" for name, data in selected.items()}
    if minimal:
        files[CHANNEL_ALLOWLIST_FILENAME] = CHANNEL_ALLOWLIST_TEMPLATE
    return files


def write_rule_pack(target_dir: Path, minimal: bool = False) -> List[str]:
    """Write the rule pack into target_dir and return the file names."""
    target_dir.mkdir(parents=True, exist_ok=True)
    files = rule_pack_files(minimal)
    for filename, content in files.items():
        (target_dir / filename).write_text(content, encoding="utf-8")
    return list(files)
