"""Build summary aggregation and reporting sinks."""

from flakeguard.report.aggregate import BuildSummary, aggregate_outcomes, new_run_id, overall_verdict
from flakeguard.report.sinks import (
    ArtifactReportSink,
    LoggingReportSink,
    ReportSink,
    SummaryArtifactPaths,
    publish_summary,
    summary_artifact_paths,
)

__all__ = [
    "BuildSummary",
    "aggregate_outcomes",
    "new_run_id",
    "overall_verdict",
    "ArtifactReportSink",
    "LoggingReportSink",
    "ReportSink",
    "SummaryArtifactPaths",
    "publish_summary",
    "summary_artifact_paths",
]
