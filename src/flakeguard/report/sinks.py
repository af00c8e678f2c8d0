"""Reporting sinks that receive the finished build summary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from flakeguard.report.aggregate import BuildSummary
from flakeguard.utils.paths import write_json_atomically, write_parquet_atomically

LOGGER = logging.getLogger(__name__)


class ReportSink(Protocol):
    def publish(self, summary: BuildSummary) -> None: ...


@dataclass(frozen=True, slots=True)
class SummaryArtifactPaths:
    summary_path: Path
    module_results_path: Path


def summary_artifact_paths(artifacts_root: Path, run_id: str) -> SummaryArtifactPaths:
    """Return where summary artifacts for `run_id` are written."""

    output_dir = artifacts_root / "build_summaries"
    return SummaryArtifactPaths(
        summary_path=output_dir / f"{run_id}_build_summary.json",
        module_results_path=output_dir / f"{run_id}_module_results.parquet",
    )


class ArtifactReportSink:
    """Write the summary JSON and per-module results parquet."""

    def __init__(self, artifacts_root: Path, logger: logging.Logger | None = None) -> None:
        self.artifacts_root = artifacts_root
        self.logger = logger or LOGGER
        self.last_paths: SummaryArtifactPaths | None = None

    def publish(self, summary: BuildSummary) -> None:
        paths = summary_artifact_paths(self.artifacts_root, summary.run_id)
        write_json_atomically(summary.to_dict(), paths.summary_path)
        write_parquet_atomically(summary.outcomes_frame(), paths.module_results_path)
        self.last_paths = paths
        self.logger.info(
            "report.artifacts_written run_id=%s summary_path=%s module_results_path=%s",
            summary.run_id,
            paths.summary_path,
            paths.module_results_path,
        )


class LoggingReportSink:
    """Log a one-line verdict plus flaky observations."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOGGER

    def publish(self, summary: BuildSummary) -> None:
        self.logger.info(
            "report.summary run_id=%s verdict=%s modules=%s counts=%s only_flaky=%s",
            summary.run_id,
            summary.overall_verdict,
            len(summary.outcomes),
            summary.verdict_counts,
            summary.only_flaky_failures,
        )
        for identifier, reason in summary.flaky_observations.items():
            self.logger.info("report.flaky_observed test=%s reason=%s", identifier, reason or "-")
        for module_id, identifiers in summary.genuine_failures.items():
            self.logger.warning("report.genuine_failures module=%s tests=%s", module_id, ",".join(identifiers))


def publish_summary(
    summary: BuildSummary,
    sinks: Sequence[ReportSink],
    logger: logging.Logger | None = None,
) -> int:
    """Hand the summary to every sink and return how many of them failed."""

    effective_logger = logger or LOGGER
    failures = 0
    for sink in sinks:
        try:
            sink.publish(summary)
        except Exception:
            failures += 1
            effective_logger.exception("report.sink_failed sink=%s run_id=%s", type(sink).__name__, summary.run_id)
    return failures
