"""Build-step orchestration models, runners and plans.

The orchestrator itself lives in `flakeguard.orchestrate.pipeline`.
"""

from flakeguard.orchestrate.cancellation import CancellationToken
from flakeguard.orchestrate.models import (
    STEP_ORDER,
    VERDICT_VALUES,
    AttemptRecord,
    BuildModule,
    ModuleOutcome,
    ModuleState,
    StepKind,
    StepResult,
    Verdict,
)
from flakeguard.orchestrate.plan import BuildPlan, load_build_plan, parse_build_plan
from flakeguard.orchestrate.runner import (
    CommandStepRunner,
    ModuleCommands,
    StepRunner,
    read_failures_file,
    read_junit_failures,
)

__all__ = [
    "CancellationToken",
    "STEP_ORDER",
    "VERDICT_VALUES",
    "AttemptRecord",
    "BuildModule",
    "ModuleOutcome",
    "ModuleState",
    "StepKind",
    "StepResult",
    "Verdict",
    "BuildPlan",
    "load_build_plan",
    "parse_build_plan",
    "CommandStepRunner",
    "ModuleCommands",
    "StepRunner",
    "read_failures_file",
    "read_junit_failures",
]
