"""Flaky-aware multi-module build orchestration."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Sequence, cast

from flakeguard.classify.classifier import ClassificationResult, classify
from flakeguard.config import AppSettings
from flakeguard.errors import ClassificationAmbiguity, LoadError, StepExecutionError, StepTimeoutError
from flakeguard.orchestrate.cancellation import CancellationToken
from flakeguard.orchestrate.models import (
    STEP_STATES,
    AttemptRecord,
    BuildModule,
    ModuleOutcome,
    ModuleProgress,
    StepKind,
    StepResult,
)
from flakeguard.orchestrate.runner import StepRunner
from flakeguard.registry.loader import RegistrySource, load_registry
from flakeguard.registry.models import FlakyTestRegistry
from flakeguard.report.aggregate import BuildSummary, aggregate_outcomes, new_run_id
from flakeguard.report.sinks import ArtifactReportSink, LoggingReportSink, ReportSink, publish_summary
from flakeguard.retry.policy import DEFAULT_MAX_ATTEMPTS, RetryDecision, RetryPolicy

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "build cancelled"


@dataclass(frozen=True, slots=True)
class OrchestratorOptions:
    """Runtime limits for one build."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    parallelism: int = 2
    per_step_timeout_sec: float | None = None
    progress_every: int = 10

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "OrchestratorOptions":
        config = settings.orchestrator
        return cls(
            max_attempts=config.max_attempts,
            parallelism=config.parallelism,
            per_step_timeout_sec=config.per_step_timeout_sec,
            progress_every=config.progress_every,
        )


@dataclass(frozen=True, slots=True)
class BuildRunResult:
    """Return object for a finished build."""

    run_id: str
    summary: BuildSummary
    registry: FlakyTestRegistry
    sink_failures: int = 0

    @property
    def outcomes(self) -> tuple[ModuleOutcome, ...]:
        return self.summary.outcomes


class _BuildCancelled(Exception):
    """Raised inside a module worker when the cancel token fires between steps."""


class BuildStepOrchestrator:
    """Drive COMPILE -> TEST (with retries) -> PACKAGE -> QUALITY_CHECK per module.

    Modules run in a bounded thread pool and never share mutable state; the
    registry is read-only. Only TEST failures are classified and retried, any
    other failing step stops the module immediately.
    """

    def __init__(
        self,
        registry: FlakyTestRegistry,
        runner: StepRunner,
        *,
        options: OrchestratorOptions | None = None,
        report_sinks: Sequence[ReportSink] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.options = options or OrchestratorOptions()
        if self.options.parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {self.options.parallelism}")
        self.policy = RetryPolicy(max_attempts=self.options.max_attempts)
        self.report_sinks = tuple(report_sinks)
        self.logger = logger or LOGGER

    def _invoke_step(self, module_id: str, step_kind: StepKind, scope: frozenset[str] | None) -> StepResult:
        """Call the runner, enforcing the per-step deadline when one is configured."""

        timeout = self.options.per_step_timeout_sec
        if timeout is None:
            return self.runner.run_step(module_id, step_kind, scope)

        outcome: dict[str, object] = {}

        def _call() -> None:
            try:
                outcome["result"] = self.runner.run_step(module_id, step_kind, scope)
            except Exception as exc:
                outcome["error"] = exc

        # Daemon thread: a hung step is abandoned and never blocks interpreter exit.
        worker = threading.Thread(target=_call, name=f"step-{module_id}-{step_kind}", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise StepTimeoutError(module_id, step_kind, timeout)
        error = outcome.get("error")
        if isinstance(error, Exception):
            raise error
        return cast(StepResult, outcome["result"])

    def _run_test_step(
        self,
        module: BuildModule,
        progress: ModuleProgress,
        token: CancellationToken,
    ) -> str | None:
        """Run the retry loop; return an error message when the module must fail."""

        attempt_number = 1
        scope: frozenset[str] | None = None
        while True:
            started = time.monotonic()
            result = self._invoke_step(module.module_id, "TEST", scope)
            duration = time.monotonic() - started
            progress.output_tail = result.output_tail

            if not result.succeeded and not result.failures:
                decision = RetryDecision(
                    action="FAIL",
                    reason=f"exit_code={result.exit_code} no_failures_reported",
                    module_id=module.module_id,
                )
                classification = ClassificationResult()
            else:
                classification = classify(result.failures, self.registry)
                decision = self.policy.decide(classification, attempt_number, module_id=module.module_id)

            progress.attempts.append(
                AttemptRecord(
                    attempt_number=attempt_number,
                    classification=classification,
                    decision=decision,
                    exit_code=result.exit_code,
                    scope=scope,
                    duration_sec=duration,
                )
            )
            self.logger.info(
                "module.test_attempt module=%s attempt=%s exit_code=%s known=%s genuine=%s decision=%s reason=%s",
                module.module_id,
                attempt_number,
                result.exit_code,
                len(classification.known),
                len(classification.genuine),
                decision.action,
                decision.reason,
            )

            if decision.action == "FAIL":
                if classification.genuine:
                    return f"genuine test failures: {', '.join(sorted(classification.genuine))}"
                return f"test step failed: {decision.reason}"
            if decision.action == "ACCEPT":
                if decision.mark_unstable:
                    progress.unstable = True
                    self.logger.warning(
                        "module.flaky_retries_exhausted module=%s tests=%s",
                        module.module_id,
                        ",".join(sorted(classification.known)),
                    )
                return None

            if token.is_cancelled:
                raise _BuildCancelled()
            attempt_number += 1
            scope = decision.scope
            progress.transition("TESTING")

    def build_module(self, module: BuildModule, token: CancellationToken | None = None) -> ModuleOutcome:
        """Build one module to a terminal state; errors stay inside the outcome."""

        cancel_token = token or CancellationToken()
        progress = ModuleProgress(module_id=module.module_id)
        started = time.monotonic()

        def _elapsed() -> float:
            return time.monotonic() - started

        try:
            steps = module.ordered_steps()
        except ValueError as exc:
            return progress.finalize("FAILED", error_message=str(exc), duration_sec=_elapsed())

        for step_kind in steps:
            if cancel_token.is_cancelled:
                self.logger.warning("module.cancelled module=%s before_step=%s", module.module_id, step_kind)
                return progress.finalize(
                    "FAILED",
                    failed_step=step_kind,
                    error_message=CANCELLED_MESSAGE,
                    cancelled=True,
                    duration_sec=_elapsed(),
                )

            progress.transition(STEP_STATES[step_kind])
            progress.output_tail = None
            self.logger.debug("module.state module=%s state=%s", module.module_id, progress.state)
            try:
                if step_kind == "TEST":
                    error_message = self._run_test_step(module, progress, cancel_token)
                else:
                    result = self._invoke_step(module.module_id, step_kind, None)
                    progress.output_tail = result.output_tail
                    error_message = (
                        None if result.succeeded else f"{step_kind} exited with code {result.exit_code}"
                    )
            except _BuildCancelled:
                self.logger.warning("module.cancelled module=%s during_step=%s", module.module_id, step_kind)
                return progress.finalize(
                    "FAILED",
                    failed_step=step_kind,
                    error_message=CANCELLED_MESSAGE,
                    cancelled=True,
                    duration_sec=_elapsed(),
                )
            except ClassificationAmbiguity:
                raise
            except StepExecutionError as exc:
                self.logger.error("module.step_error module=%s step=%s error=%s", module.module_id, step_kind, exc)
                error_message = str(exc)
            except Exception as exc:
                self.logger.exception("module.step_crashed module=%s step=%s", module.module_id, step_kind)
                error_message = f"{type(exc).__name__}: {exc}"

            if error_message is not None:
                self.logger.warning(
                    "module.failed module=%s step=%s error=%s", module.module_id, step_kind, error_message
                )
                if progress.output_tail:
                    self.logger.debug(
                        "module.failed_output module=%s tail=%s", module.module_id, progress.output_tail
                    )
                return progress.finalize(
                    "FAILED",
                    failed_step=step_kind,
                    error_message=error_message,
                    duration_sec=_elapsed(),
                )

        verdict = "UNSTABLE" if progress.unstable else "SUCCESS"
        outcome = progress.finalize(verdict, duration_sec=_elapsed())
        self.logger.info(
            "module.done module=%s verdict=%s attempts=%s", module.module_id, verdict, len(outcome.attempts)
        )
        return outcome

    def run(
        self,
        modules: Sequence[BuildModule],
        *,
        cancel_token: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> BuildRunResult:
        """Build every module, aggregate the outcomes and publish the summary."""

        module_ids = [module.module_id for module in modules]
        duplicates = sorted({module_id for module_id in module_ids if module_ids.count(module_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate module ids: {', '.join(duplicates)}")

        effective_run_id = run_id or new_run_id()
        token = cancel_token or CancellationToken()
        started = time.monotonic()
        self.logger.info(
            "build_run.start run_id=%s modules=%s parallelism=%s max_attempts=%s timeout_sec=%s registry_entries=%s",
            effective_run_id,
            len(modules),
            self.options.parallelism,
            self.options.max_attempts,
            self.options.per_step_timeout_sec,
            len(self.registry),
        )

        outcomes_by_index: dict[int, ModuleOutcome] = {}
        if modules:
            workers = min(self.options.parallelism, len(modules))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="flakeguard-module") as pool:
                futures: dict[Future[ModuleOutcome], int] = {
                    pool.submit(self.build_module, module, token): index for index, module in enumerate(modules)
                }
                progress_every = max(1, self.options.progress_every)
                for completed_count, future in enumerate(as_completed(futures), start=1):
                    try:
                        outcomes_by_index[futures[future]] = future.result()
                    except ClassificationAmbiguity:
                        token.cancel()
                        raise
                    if completed_count % progress_every == 0 or completed_count == len(modules):
                        self.logger.info(
                            "build_run.progress completed=%s/%s elapsed_sec=%.2f",
                            completed_count,
                            len(modules),
                            time.monotonic() - started,
                        )

        outcomes = [outcomes_by_index[index] for index in range(len(modules))]
        summary = aggregate_outcomes(outcomes, run_id=effective_run_id, registry=self.registry)
        sink_failures = publish_summary(summary, self.report_sinks, logger=self.logger)
        self.logger.info(
            "build_run.complete run_id=%s verdict=%s counts=%s duration_sec=%.2f",
            effective_run_id,
            summary.overall_verdict,
            summary.verdict_counts,
            time.monotonic() - started,
        )
        return BuildRunResult(
            run_id=effective_run_id,
            summary=summary,
            registry=self.registry,
            sink_failures=sink_failures,
        )


def load_build_registry(
    settings: AppSettings,
    registry_source: RegistrySource | None = None,
    logger: logging.Logger | None = None,
) -> FlakyTestRegistry:
    """Load the registry for a build, applying the empty-registry policy."""

    effective_logger = logger or LOGGER
    source = registry_source if registry_source is not None else settings.registry.source_file
    if source is None:
        raise LoadError("no registry source configured")

    registry = load_registry(source, logger=effective_logger)
    if registry.is_empty:
        if settings.registry.require_non_empty:
            raise LoadError("registry is empty; the known-flaky list was probably not fetched")
        effective_logger.warning("registry.empty every test failure will be treated as genuine")
    return registry


def run_build(
    settings: AppSettings,
    modules: Sequence[BuildModule],
    runner: StepRunner,
    *,
    registry_source: RegistrySource | None = None,
    report_sinks: Sequence[ReportSink] | None = None,
    cancel_token: CancellationToken | None = None,
    logger: logging.Logger | None = None,
) -> BuildRunResult:
    """Load the registry, then build every module.

    A LoadError is raised before any step runs when the registry cannot be
    loaded.
    """

    effective_logger = logger or LOGGER
    registry = load_build_registry(settings, registry_source, logger=effective_logger)
    sinks = (
        report_sinks
        if report_sinks is not None
        else (
            LoggingReportSink(logger=effective_logger),
            ArtifactReportSink(settings.paths.artifacts_root, logger=effective_logger),
        )
    )
    orchestrator = BuildStepOrchestrator(
        registry,
        runner,
        options=OrchestratorOptions.from_settings(settings),
        report_sinks=sinks,
        logger=effective_logger,
    )
    return orchestrator.run(modules, cancel_token=cancel_token)
