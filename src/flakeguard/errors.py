"""Exception taxonomy for registry loading, step execution and classification."""

from __future__ import annotations


class FlakeguardError(Exception):
    """Base class for all flakeguard errors."""


class LoadError(FlakeguardError):
    """The flaky-test registry source is unreadable or empty."""


class StepExecutionError(FlakeguardError):
    """A build step could not be executed at all (tool crash, missing command)."""

    def __init__(self, message: str, *, module_id: str | None = None, step_kind: str | None = None) -> None:
        super().__init__(message)
        self.module_id = module_id
        self.step_kind = step_kind


class StepTimeoutError(StepExecutionError):
    """A build step exceeded its per-step deadline."""

    def __init__(self, module_id: str, step_kind: str, timeout_sec: float) -> None:
        super().__init__(
            f"step {step_kind} of module {module_id} timed out after {timeout_sec:g}s",
            module_id=module_id,
            step_kind=step_kind,
        )
        self.timeout_sec = timeout_sec


class ClassificationAmbiguity(FlakeguardError):
    """Known/genuine partition is not a disjoint cover of the failure set."""


class BuildPlanError(FlakeguardError):
    """A build plan document is structurally invalid."""
