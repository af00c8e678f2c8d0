"""Typed models for build steps, module attempts and module outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from flakeguard.classify.classifier import ClassificationResult, FailureSet
from flakeguard.retry.policy import RetryDecision

StepKind = Literal["COMPILE", "TEST", "PACKAGE", "QUALITY_CHECK"]
ModuleState = Literal["PENDING", "COMPILING", "TESTING", "PACKAGING", "QUALITY_CHECK", "DONE", "FAILED"]
Verdict = Literal["SUCCESS", "UNSTABLE", "FAILED"]

STEP_ORDER: tuple[StepKind, ...] = ("COMPILE", "TEST", "PACKAGE", "QUALITY_CHECK")
VERDICT_VALUES: tuple[Verdict, ...] = ("SUCCESS", "UNSTABLE", "FAILED")

STEP_STATES: dict[StepKind, ModuleState] = {
    "COMPILE": "COMPILING",
    "TEST": "TESTING",
    "PACKAGE": "PACKAGING",
    "QUALITY_CHECK": "QUALITY_CHECK",
}


@dataclass(frozen=True, slots=True)
class BuildModule:
    """One independently buildable unit and the steps it runs."""

    module_id: str
    steps: tuple[StepKind, ...] = STEP_ORDER

    def ordered_steps(self) -> tuple[StepKind, ...]:
        """Return declared steps in canonical build order."""

        declared = set(self.steps)
        unknown = declared.difference(STEP_ORDER)
        if unknown:
            raise ValueError(f"Unknown step kinds for module {self.module_id}: {', '.join(sorted(unknown))}")
        return tuple(step for step in STEP_ORDER if step in declared)


@dataclass(frozen=True, slots=True)
class StepResult:
    """What an external step invocation reported back."""

    exit_code: int
    failures: FailureSet = ()
    output_tail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One TEST step execution and how it was judged."""

    attempt_number: int
    classification: ClassificationResult
    decision: RetryDecision
    exit_code: int
    scope: frozenset[str] | None = None
    duration_sec: float | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "attempt_number": self.attempt_number,
            "exit_code": self.exit_code,
            "known": sorted(self.classification.known),
            "genuine": sorted(self.classification.genuine),
            "decision": self.decision.action,
            "decision_reason": self.decision.reason,
            "mark_unstable": self.decision.mark_unstable,
            "scope": sorted(self.scope) if self.scope is not None else None,
            "duration_sec": round(self.duration_sec, 3) if self.duration_sec is not None else None,
        }


@dataclass(frozen=True, slots=True)
class ModuleOutcome:
    """Final record of one module's build."""

    module_id: str
    final_verdict: Verdict
    final_state: ModuleState
    attempts: tuple[AttemptRecord, ...] = ()
    state_history: tuple[ModuleState, ...] = ()
    failed_step: StepKind | None = None
    error_message: str | None = None
    cancelled: bool = False
    duration_sec: float | None = None
    output_tail: str | None = None

    @property
    def flaky_observed(self) -> frozenset[str]:
        """Known-flaky identifiers that failed in any attempt."""

        observed: set[str] = set()
        for attempt in self.attempts:
            observed.update(attempt.classification.known)
        return frozenset(observed)

    @property
    def genuine_failures(self) -> frozenset[str]:
        genuine: set[str] = set()
        for attempt in self.attempts:
            genuine.update(attempt.classification.genuine)
        return frozenset(genuine)

    def as_dict(self) -> dict[str, object]:
        return {
            "module_id": self.module_id,
            "final_verdict": self.final_verdict,
            "final_state": self.final_state,
            "failed_step": self.failed_step,
            "error_message": self.error_message,
            "cancelled": self.cancelled,
            "duration_sec": round(self.duration_sec, 3) if self.duration_sec is not None else None,
            "state_history": list(self.state_history),
            "attempts": [attempt.as_dict() for attempt in self.attempts],
            "output_tail": self.output_tail,
        }


@dataclass(slots=True)
class ModuleProgress:
    """Mutable working state owned by the worker building one module."""

    module_id: str
    state: ModuleState = "PENDING"
    state_history: list[ModuleState] = field(default_factory=lambda: ["PENDING"])
    attempts: list[AttemptRecord] = field(default_factory=list)
    unstable: bool = False
    output_tail: str | None = None

    def transition(self, new_state: ModuleState) -> None:
        self.state = new_state
        self.state_history.append(new_state)

    def finalize(
        self,
        verdict: Verdict,
        *,
        failed_step: StepKind | None = None,
        error_message: str | None = None,
        cancelled: bool = False,
        duration_sec: float | None = None,
    ) -> ModuleOutcome:
        if verdict == "FAILED":
            if self.state != "FAILED":
                self.transition("FAILED")
        elif self.state != "DONE":
            self.transition("DONE")
        return ModuleOutcome(
            module_id=self.module_id,
            final_verdict=verdict,
            final_state=self.state,
            attempts=tuple(self.attempts),
            state_history=tuple(self.state_history),
            failed_step=failed_step,
            error_message=error_message,
            cancelled=cancelled,
            duration_sec=duration_sec,
            output_tail=self.output_tail if verdict == "FAILED" else None,
        )
