"""Loader for Azure DevOps pipeline YAML.

Normalizes the three pipeline shapes Azure accepts (steps only, jobs, and
stages of jobs) into one 'azure_pipeline' resource and an
'azure_pipeline_step' resource per step, including the steps of deployment
jobs.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from envpolicy.loaders.resources import ConfigLoadError, make_resource, read_text
from envpolicy.loaders.yamlsupport import PathKey, line_of, load_yaml_document

log = logging.getLogger("envpolicy.loaders.pipeline")

STEP_KINDS = (
    "task",
    "script",
    "bash",
    "pwsh",
    "powershell",
    "checkout",
    "template",
    "download",
    "downloadBuild",
    "publish",
    "getPackage",
    "reviewApp",
)

# Deployment strategies and the lifecycle hooks that carry steps
_DEPLOYMENT_HOOKS = (
    "preDeploy",
    "deploy",
    "routeTraffic",
    "postRouteTraffic",
    "on",
)

SECRET_NAME_PATTERN = re.compile(
    r"(password|passwd|pwd|secret|token|api[_-]?key|access[_-]?key|"
    r"private[_-]?key|connection[_-]?string|sas|key(?=$|[_.-]))",
    re.IGNORECASE,
)

# $(var), ${{ expr }} and $[ expr ] pull values from the pipeline at runtime
_RUNTIME_REFERENCE = re.compile(r"^\s*\$(\(|\{\{|\[)")


class PipelineLoadError(ConfigLoadError):
    """Exception raised when an Azure DevOps pipeline file cannot be loaded."""

    pass


def normalize_trigger(value: Any, present: bool) -> Any:
    """Normalize trigger/pr settings.

    Returns "all" when omitted (Azure's default is to trigger on every
    branch), "none" when disabled, or the list of included branches.
    """
    if not present:
        return "all"
    if value is None or value == "none":
        return "none"
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, dict):
        branches = value.get("branches")
        if isinstance(branches, dict):
            return [str(b) for b in branches.get("include") or []] or "all"
        if isinstance(branches, list):
            return [str(b) for b in branches]
        return "all"
    return "all"


def _normalize_pool(pool: Any) -> Optional[Dict[str, Any]]:
    if pool is None:
        return None
    if isinstance(pool, str):
        return {"name": pool}
    if isinstance(pool, dict):
        return dict(pool)
    return None


def is_inline_secret(name: Any, value: Any) -> bool:
    """A secret-looking variable name holding a literal value."""
    if not isinstance(name, str) or not SECRET_NAME_PATTERN.search(name):
        return False
    if value is None or isinstance(value, (bool, int, float)):
        return False
    text = str(value)
    if not text.strip():
        return False
    return not _RUNTIME_REFERENCE.match(text)


def _variables(block: Any) -> Tuple[Dict[str, Any], List[str]]:
    """Flatten a variables block into (name -> value, variable groups).

    Accepts both the mapping form and the list form with name/value,
    group and template entries.
    """
    values: Dict[str, Any] = {}
    groups: List[str] = []

    if isinstance(block, dict):
        values.update({str(k): v for k, v in block.items()})
    elif isinstance(block, list):
        for entry in block:
            if not isinstance(entry, dict):
                continue
            if "group" in entry:
                groups.append(str(entry["group"]))
            elif "name" in entry:
                values[str(entry["name"])] = entry.get("value")

    return values, groups


def _step_kind(step: Dict[str, Any]) -> str:
    for kind in STEP_KINDS:
        if kind in step:
            return kind
    return "unknown"


def step_values(step: Dict[str, Any], index: int, parent: str) -> Dict[str, Any]:
    """Normalize one pipeline step."""
    kind = _step_kind(step)
    task = step.get("task") if kind == "task" else None
    task_name, task_version = None, None

    if isinstance(task, str):
        task_name, _, version = task.partition("@")
        task_version = version or None

    script = None
    if kind in ("script", "bash", "pwsh", "powershell"):
        script = step.get(kind)

    env = step.get("env") if isinstance(step.get("env"), dict) else {}
    inputs = step.get("inputs") if isinstance(step.get("inputs"), dict) else {}

    return {
        "kind": kind,
        "task": task,
        "task_name": task_name,
        "task_version": task_version,
        "display_name": step.get("displayName"),
        "script": script,
        "inputs": inputs,
        "env": sorted(str(k) for k in env.keys()),
        "condition": step.get("condition"),
        "enabled": step.get("enabled", True),
        "index": index,
        "parent": parent,
    }


def _job_steps(job: Dict[str, Any], job_path: List[PathKey]) -> Iterator[Tuple[List[PathKey], Dict[str, Any]]]:
    steps = job.get("steps")
    if isinstance(steps, list):
        for i, step in enumerate(steps):
            if isinstance(step, dict):
                yield job_path + ["steps", i], step

    strategy = job.get("strategy")
    if isinstance(strategy, dict):
        for strategy_name, hooks in strategy.items():
            if not isinstance(hooks, dict):
                continue
            for hook in _DEPLOYMENT_HOOKS:
                hook_body = hooks.get(hook)
                if hook == "on" and hook_body is None:
                    # YAML 1.1 reads a bare 'on' key as boolean True
                    hook_body = hooks.get(True)
                if not isinstance(hook_body, dict):
                    continue
                # 'on' nests success/failure blocks one level deeper
                blocks = (
                    [(["strategy", strategy_name, hook, k], v) for k, v in hook_body.items()]
                    if hook == "on"
                    else [(["strategy", strategy_name, hook], hook_body)]
                )
                for block_path, block in blocks:
                    if not isinstance(block, dict):
                        continue
                    for i, step in enumerate(block.get("steps") or []):
                        if isinstance(step, dict):
                            yield job_path + block_path + ["steps", i], step


def iter_jobs(data: Dict[str, Any]) -> Iterator[Tuple[List[PathKey], Dict[str, Any]]]:
    """Yield (path, job) for every job, whichever shape the pipeline uses."""
    stages = data.get("stages")
    if isinstance(stages, list):
        for s, stage in enumerate(stages):
            if not isinstance(stage, dict):
                continue
            for j, job in enumerate(stage.get("jobs") or []):
                if isinstance(job, dict):
                    yield ["stages", s, "jobs", j], job

    jobs = data.get("jobs")
    if isinstance(jobs, list):
        for j, job in enumerate(jobs):
            if isinstance(job, dict):
                yield ["jobs", j], job


def _format_path(path: List[PathKey]) -> str:
    text = ""
    for key in path:
        if isinstance(key, int):
            text += f"[{key}]"
        else:
            text += f".{key}" if text else key
    return text


def load_pipeline(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load an azure-pipelines.yml file.

    Raises:
        PipelineLoadError: If the file is not valid YAML or not a mapping
    """
    text = read_text(path, PipelineLoadError)
    data, root = load_yaml_document(text, rel_path, PipelineLoadError)

    if not isinstance(data, dict):
        raise PipelineLoadError(f"{rel_path} must contain a mapping at the top level")

    all_steps: List[Tuple[List[PathKey], Dict[str, Any]]] = []

    top_steps = data.get("steps")
    if isinstance(top_steps, list):
        for i, step in enumerate(top_steps):
            if isinstance(step, dict):
                all_steps.append((["steps", i], step))

    jobs = list(iter_jobs(data))
    for job_path, job in jobs:
        all_steps.extend(_job_steps(job, job_path))

    variables, groups = _variables(data.get("variables"))
    # Stage and job variables can leak secrets just as well as pipeline-level ones
    scoped_variables: Dict[str, Any] = {}
    stages = data.get("stages")
    for s, stage in enumerate(stages if isinstance(stages, list) else []):
        if isinstance(stage, dict):
            stage_vars, stage_groups = _variables(stage.get("variables"))
            groups.extend(stage_groups)
            scoped_variables.update({f"stages[{s}].{k}": v for k, v in stage_vars.items()})
    for job_path, job in jobs:
        job_vars, job_groups = _variables(job.get("variables"))
        groups.extend(job_groups)
        prefix = _format_path(job_path)
        scoped_variables.update({f"{prefix}.{k}": v for k, v in job_vars.items()})

    inline_secrets = [name for name, value in variables.items() if is_inline_secret(name, value)]
    inline_secrets.extend(
        name
        for name, value in scoped_variables.items()
        if is_inline_secret(name.rsplit(".", 1)[-1], value)
    )
    for step_path, step in all_steps:
        env = step.get("env")
        if isinstance(env, dict):
            inline_secrets.extend(
                f"{_format_path(step_path)}.env.{name}"
                for name, value in env.items()
                if is_inline_secret(name, value)
            )

    pool = _normalize_pool(data.get("pool"))
    vm_image = pool.get("vmImage") if pool else None
    if vm_image is None:
        for _, job in jobs:
            job_pool = _normalize_pool(job.get("pool"))
            if job_pool and job_pool.get("vmImage"):
                vm_image = job_pool["vmImage"]
                break

    pipeline_values = {
        "name": data.get("name"),
        "trigger": normalize_trigger(data.get("trigger"), "trigger" in data),
        "pr": normalize_trigger(data.get("pr"), "pr" in data),
        "pool": pool,
        "vm_image": vm_image,
        "uses_hosted_pool": vm_image is not None,
        "stage_count": len(stages) if isinstance(stages, list) else 0,
        "job_count": len(jobs),
        "step_count": len(all_steps),
        "variables": sorted(variables.keys()),
        "variable_groups": groups,
        "inline_secret_names": inline_secrets,
        "inline_secret_count": len(inline_secrets),
        "extends": data.get("extends") is not None,
    }

    resources = [
        make_resource(
            "azure_pipeline",
            path.name,
            pipeline_values,
            rel_path,
            line=line_of(root, ["trigger"]) or 1,
            address=rel_path,
        )
    ]

    for index, (step_path, step) in enumerate(all_steps):
        values = step_values(step, index, rel_path)
        step_ref = _format_path(step_path)
        resources.append(
            make_resource(
                "azure_pipeline_step",
                values["display_name"] or values["task"] or values["kind"],
                values,
                rel_path,
                line=line_of(root, step_path),
                address=f"{rel_path}:{step_ref}",
            )
        )

    log.debug("Loaded pipeline %s with %d step(s)", rel_path, len(all_steps))
    return resources
