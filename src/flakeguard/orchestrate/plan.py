"""Load YAML build plans into modules and subprocess commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from flakeguard.errors import BuildPlanError
from flakeguard.orchestrate.models import STEP_ORDER, BuildModule, StepKind
from flakeguard.orchestrate.runner import RERUN_PLACEHOLDER, ModuleCommands

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuildPlan:
    """Modules to build and the commands that build them."""

    modules: tuple[BuildModule, ...]
    commands: dict[str, ModuleCommands]


def _optional_path(base_dir: Path, value: Any, field_name: str, module_id: str) -> Path | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise BuildPlanError(f"module {module_id}: {field_name} must be a non-empty string")
    path = Path(value)
    return path if path.is_absolute() else (base_dir / path).resolve()


def _parse_steps(raw_steps: Any, module_id: str) -> dict[StepKind, str]:
    if not isinstance(raw_steps, dict) or not raw_steps:
        raise BuildPlanError(f"module {module_id}: steps must be a non-empty mapping")
    steps: dict[StepKind, str] = {}
    for raw_kind, command in raw_steps.items():
        kind = str(raw_kind).strip().upper()
        if kind not in STEP_ORDER:
            raise BuildPlanError(
                f"module {module_id}: unknown step {raw_kind!r}, expected one of {', '.join(STEP_ORDER)}"
            )
        if not isinstance(command, str) or not command.strip():
            raise BuildPlanError(f"module {module_id}: command for {kind} must be a non-empty string")
        steps[cast(StepKind, kind)] = command.strip()
    return steps


def parse_build_plan(document: Any, base_dir: Path) -> BuildPlan:
    """Validate a parsed plan document; relative paths resolve against `base_dir`."""

    if not isinstance(document, dict) or not isinstance(document.get("modules"), list):
        raise BuildPlanError("build plan must be a mapping with a 'modules' list")

    modules: list[BuildModule] = []
    commands: dict[str, ModuleCommands] = {}
    for position, item in enumerate(document["modules"], start=1):
        if not isinstance(item, dict):
            raise BuildPlanError(f"module entry {position} must be a mapping")
        module_id = item.get("id")
        if not isinstance(module_id, str) or not module_id.strip():
            raise BuildPlanError(f"module entry {position} needs a non-empty 'id'")
        module_id = module_id.strip()
        if module_id in commands:
            raise BuildPlanError(f"duplicate module id {module_id}")

        steps = _parse_steps(item.get("steps"), module_id)
        workdir = _optional_path(base_dir, item.get("workdir"), "workdir", module_id) or base_dir.resolve()
        test_rerun = item.get("test_rerun")
        if test_rerun is not None and (not isinstance(test_rerun, str) or RERUN_PLACEHOLDER not in test_rerun):
            raise BuildPlanError(f"module {module_id}: test_rerun must be a string containing '{RERUN_PLACEHOLDER}'")

        commands[module_id] = ModuleCommands(
            module_id=module_id,
            workdir=workdir,
            steps=steps,
            test_rerun=test_rerun,
            failures_file=_optional_path(workdir, item.get("failures_file"), "failures_file", module_id),
            junit_dir=_optional_path(workdir, item.get("junit_dir"), "junit_dir", module_id),
        )
        modules.append(BuildModule(module_id=module_id, steps=tuple(steps)))

    return BuildPlan(modules=tuple(modules), commands=commands)


def load_build_plan(plan_file: Path, logger: logging.Logger | None = None) -> BuildPlan:
    """Read and validate a YAML build plan file."""

    effective_logger = logger or LOGGER
    try:
        document = yaml.safe_load(plan_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise BuildPlanError(f"cannot read build plan {plan_file}: {exc}") from exc

    plan = parse_build_plan(document, base_dir=plan_file.parent)
    effective_logger.info("build_plan.loaded path=%s modules=%s", plan_file, len(plan.modules))
    return plan
