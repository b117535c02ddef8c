"""Loader for Dockerfiles used to package Python and R workloads."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from envpolicy.loaders.resources import ConfigLoadError, make_resource, read_text

log = logging.getLogger("envpolicy.loaders.dockerfile")

ROOT_USERS = ("root", "0", "0:0", "root:root")

_INSTRUCTION = re.compile(r"^\s*([A-Za-z]+)\s*(.*)$")
_VARIABLE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::?-([^}]*))?\}|\$([A-Za-z_][A-Za-z0-9_]*)")


class DockerfileLoadError(ConfigLoadError):
    """Exception raised when a Dockerfile cannot be loaded."""

    pass


def parse_instructions(text: str) -> List[Tuple[int, str, str]]:
    """Split a Dockerfile into (line, INSTRUCTION, arguments).

    Handles backslash continuations, comments and blank lines. Parser
    directives (# syntax=...) are comments for our purposes.
    """
    instructions: List[Tuple[int, str, str]] = []
    buffer = ""
    start = 0

    for number, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not buffer and (not stripped or stripped.startswith("#")):
            continue
        if buffer and stripped.startswith("#"):
            # Comment lines inside a continuation are dropped by Docker
            continue
        if not buffer:
            start = number
        if stripped.endswith("\\"):
            buffer += stripped[:-1] + " "
            continue
        buffer += stripped
        match = _INSTRUCTION.match(buffer)
        if match:
            instructions.append((start, match.group(1).upper(), match.group(2).strip()))
        buffer = ""

    if buffer:
        match = _INSTRUCTION.match(buffer)
        if match:
            instructions.append((start, match.group(1).upper(), match.group(2).strip()))

    return instructions


def substitute_args(value: str, args: Dict[str, Optional[str]]) -> str:
    """Expand ${VAR}, ${VAR:-default} and $VAR using ARG defaults."""

    def replace(match: re.Match) -> str:
        name = match.group(1) or match.group(3)
        default = match.group(2)
        resolved = args.get(name)
        if resolved:
            return resolved
        if default is not None:
            return default
        return match.group(0)

    return _VARIABLE.sub(replace, value)


def parse_image_reference(reference: str) -> Dict[str, Optional[str]]:
    """Split 'registry:5000/repo/name:tag@sha256:...' into image, tag and digest."""
    digest = None
    if "@" in reference:
        reference, digest = reference.split("@", 1)

    tag = None
    last_segment = reference.rsplit("/", 1)[-1]
    if ":" in last_segment:
        reference, tag = reference.rsplit(":", 1)

    return {"image": reference, "tag": tag, "digest": digest}


def _parse_from(arguments: str) -> Tuple[str, Optional[str]]:
    """Return (image reference, stage name) from FROM arguments."""
    tokens = [t for t in arguments.split() if not t.startswith("--")]
    if not tokens:
        return "", None
    stage = None
    if len(tokens) >= 3 and tokens[1].lower() == "as":
        stage = tokens[2]
    return tokens[0], stage


def load_dockerfile(path: Path, rel_path: str) -> List[Dict[str, Any]]:
    """Load a Dockerfile into a 'dockerfile' resource and one 'docker_base_image' per FROM.

    Raises:
        DockerfileLoadError: If the file has no FROM instruction
    """
    text = read_text(path, DockerfileLoadError)
    instructions = parse_instructions(text)

    args: Dict[str, Optional[str]] = {}
    stages: List[Dict[str, Any]] = []
    images: List[Dict[str, Any]] = []
    uses_add = False
    has_healthcheck = False

    for line, instruction, arguments in instructions:
        if instruction == "ARG" and not stages:
            name, _, default = arguments.partition("=")
            args[name.strip()] = default.strip().strip('"').strip("'") or None

        elif instruction == "FROM":
            reference, stage_name = _parse_from(arguments)
            reference = substitute_args(reference, args)
            known_stages = [s["name"] for s in stages if s["name"]]
            references_stage = reference in known_stages
            parsed = parse_image_reference(reference)

            if references_stage or reference.lower() == "scratch":
                pinned = True
            else:
                pinned = bool(parsed["digest"]) or (
                    parsed["tag"] is not None and parsed["tag"].lower() != "latest"
                )

            stage = {"name": stage_name, "user": None, "line": line}
            stages.append(stage)
            images.append(
                {
                    "line": line,
                    "values": {
                        "image": parsed["image"],
                        "tag": parsed["tag"],
                        "digest": parsed["digest"],
                        "reference": reference,
                        "stage": stage_name,
                        "stage_index": len(stages) - 1,
                        "references_stage": references_stage,
                        "pinned": pinned,
                        "parent": rel_path,
                    },
                }
            )

        elif instruction == "USER" and stages:
            stages[-1]["user"] = arguments.split()[0] if arguments else None

        elif instruction == "ADD":
            uses_add = True

        elif instruction == "HEALTHCHECK":
            has_healthcheck = arguments.strip().upper() != "NONE"

    if not stages:
        raise DockerfileLoadError(f"{rel_path} has no FROM instruction")

    final_user = stages[-1]["user"]

    file_values = {
        "base_images": [img["values"]["reference"] for img in images],
        "stage_count": len(stages),
        "final_user": final_user,
        "runs_as_root": final_user is None or final_user.lower() in ROOT_USERS,
        "has_healthcheck": has_healthcheck,
        "uses_add": uses_add,
        "unpinned_base_count": sum(1 for img in images if not img["values"]["pinned"]),
    }

    resources = [
        make_resource(
            "dockerfile",
            path.name,
            file_values,
            rel_path,
            line=stages[-1]["line"],
            address=rel_path,
        )
    ]

    for index, image in enumerate(images):
        values = image["values"]
        name = values["stage"] or f"stage{index}"
        resources.append(
            make_resource(
                "docker_base_image",
                name,
                values,
                rel_path,
                line=image["line"],
                address=f"{rel_path}:FROM[{index}]",
            )
        )

    log.debug("Loaded %s with %d stage(s)", rel_path, len(stages))
    return resources
