"""Merge module outcomes into one build summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from uuid import uuid4

import polars as pl

from flakeguard.orchestrate.models import VERDICT_VALUES, ModuleOutcome, Verdict
from flakeguard.registry.models import FlakyTestRegistry
from flakeguard.utils.time_utils import now_utc

MODULE_RESULTS_SCHEMA: dict[str, Any] = {
    "module_id": pl.String,
    "final_verdict": pl.String,
    "final_state": pl.String,
    "attempts": pl.Int64,
    "flaky_observed": pl.Int64,
    "genuine_failures": pl.Int64,
    "failed_step": pl.String,
    "error_message": pl.String,
    "output_tail": pl.String,
    "cancelled": pl.Boolean,
    "duration_sec": pl.Float64,
}


def overall_verdict(outcomes: Sequence[ModuleOutcome]) -> Verdict:
    """FAILED beats UNSTABLE beats SUCCESS; an empty build is a SUCCESS."""

    verdicts = {outcome.final_verdict for outcome in outcomes}
    if "FAILED" in verdicts:
        return "FAILED"
    if "UNSTABLE" in verdicts:
        return "UNSTABLE"
    return "SUCCESS"


def new_run_id() -> str:
    return f"build-run-{uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class BuildSummary:
    """Read-only result of a whole build, handed to reporting sinks."""

    run_id: str
    overall_verdict: Verdict
    outcomes: tuple[ModuleOutcome, ...]
    verdict_counts: dict[Verdict, int]
    flaky_observations: dict[str, str]
    genuine_failures: dict[str, list[str]]
    generated_ts: datetime = field(default_factory=now_utc)

    @property
    def only_flaky_failures(self) -> bool:
        """True when flaky tests failed but nothing failed for real."""

        return bool(self.flaky_observations) and self.overall_verdict != "FAILED"

    def outcome_for(self, module_id: str) -> ModuleOutcome | None:
        return next((outcome for outcome in self.outcomes if outcome.module_id == module_id), None)

    def outcomes_frame(self) -> pl.DataFrame:
        """One row per module with stable column types."""

        rows = [
            {
                "module_id": outcome.module_id,
                "final_verdict": outcome.final_verdict,
                "final_state": outcome.final_state,
                "attempts": len(outcome.attempts),
                "flaky_observed": len(outcome.flaky_observed),
                "genuine_failures": len(outcome.genuine_failures),
                "failed_step": outcome.failed_step,
                "error_message": outcome.error_message,
                "output_tail": outcome.output_tail,
                "cancelled": outcome.cancelled,
                "duration_sec": outcome.duration_sec,
            }
            for outcome in self.outcomes
        ]
        if not rows:
            return pl.DataFrame(schema=MODULE_RESULTS_SCHEMA)
        return pl.DataFrame(rows, schema_overrides=MODULE_RESULTS_SCHEMA)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "generated_ts": self.generated_ts.isoformat(),
            "overall_verdict": self.overall_verdict,
            "verdict_counts": dict(self.verdict_counts),
            "modules_total": len(self.outcomes),
            "only_flaky_failures": self.only_flaky_failures,
            "flaky_observations": dict(self.flaky_observations),
            "genuine_failures": {module_id: list(ids) for module_id, ids in self.genuine_failures.items()},
            "modules": [outcome.as_dict() for outcome in self.outcomes],
        }


def aggregate_outcomes(
    outcomes: Sequence[ModuleOutcome],
    *,
    run_id: str | None = None,
    registry: FlakyTestRegistry | None = None,
) -> BuildSummary:
    """Build the summary for a finished run.

    Module order is kept for presentation only; the verdict and the counts do
    not depend on it.
    """

    verdict_counts: dict[Verdict, int] = {verdict: 0 for verdict in VERDICT_VALUES}
    observed: set[str] = set()
    genuine_by_module: dict[str, list[str]] = {}
    for outcome in outcomes:
        verdict_counts[outcome.final_verdict] += 1
        observed.update(outcome.flaky_observed)
        if outcome.genuine_failures:
            genuine_by_module[outcome.module_id] = sorted(outcome.genuine_failures)

    flaky_observations = {
        identifier: (registry.reason_for(identifier) or "") if registry is not None else ""
        for identifier in sorted(observed)
    }
    return BuildSummary(
        run_id=run_id or new_run_id(),
        overall_verdict=overall_verdict(outcomes),
        outcomes=tuple(outcomes),
        verdict_counts=verdict_counts,
        flaky_observations=flaky_observations,
        genuine_failures=dict(sorted(genuine_by_module.items())),
    )
