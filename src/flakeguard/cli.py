"""Typer CLI entrypoint for flakeguard."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
import yaml

from flakeguard.classify.classifier import classify
from flakeguard.config import AppSettings, load_settings
from flakeguard.errors import BuildPlanError, LoadError
from flakeguard.logging_utils import configure_logging, resolve_log_level
from flakeguard.orchestrate.plan import load_build_plan
from flakeguard.orchestrate.pipeline import run_build
from flakeguard.orchestrate.runner import CommandStepRunner, read_failures_file
from flakeguard.registry.loader import load_registry
from flakeguard.report.sinks import ArtifactReportSink, LoggingReportSink, summary_artifact_paths
from flakeguard.retry.policy import decide_retry

app = typer.Typer(
    add_completion=False,
    help="flakeguard command line interface.",
    no_args_is_help=True,
)

EXIT_CODES = {"SUCCESS": 0, "FAILED": 1, "UNSTABLE": 2}

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Optional settings YAML path.",
    exists=False,
    file_okay=True,
    dir_okay=False,
    readable=True,
)


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
    log_level: str = "INFO",
) -> tuple[AppSettings, logging.Logger]:
    settings = load_settings(config_file=config_file)
    if configure:
        try:
            level = resolve_log_level(log_level)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        logger = configure_logging(settings.paths.logs_root / "flakeguard.log", level=level)
    else:
        logger = logging.getLogger("flakeguard")
    return settings, logger


def _resolve_registry_file(registry_file: Path | None, settings: AppSettings) -> Path:
    chosen = registry_file or settings.registry.source_file
    if chosen is None:
        raise typer.BadParameter("registry-file is required when registry.source_file is not configured.")
    return chosen


@app.command("show-config")
def show_config(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Print the effective configuration after env overrides."""

    settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    rendered = yaml.safe_dump(settings.as_dict(), sort_keys=False)
    typer.echo(rendered)


@app.command("registry-check")
def registry_check(
    registry_file: Path | None = typer.Option(
        None,
        "--registry-file",
        help="Fetched known-flaky document (defaults to registry.source_file).",
    ),
    show_entries: bool = typer.Option(False, "--show-entries", help="Print every identifier and reason."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Load the known-flaky registry and report how many entries it holds."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    source = _resolve_registry_file(registry_file, settings)
    try:
        registry = load_registry(source, logger=logger)
    except LoadError as exc:
        typer.echo(f"registry_error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"registry_file: {source}")
    typer.echo(f"entries: {len(registry)}")
    if registry.is_empty:
        typer.echo("warning: registry is empty")
    if show_entries:
        for entry in registry.entries():
            typer.echo(f"{entry.identifier}\t{entry.reason}")


@app.command("classify")
def classify_cmd(
    failures_file: Path = typer.Option(
        ...,
        "--failures-file",
        help="Failing test identifiers, one per line.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    registry_file: Path | None = typer.Option(None, "--registry-file", help="Fetched known-flaky document."),
    attempt: int = typer.Option(1, "--attempt", min=1, help="Attempt number of this failure list."),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1, help="Override orchestrator.max_attempts."),
    as_json: bool = typer.Option(False, "--json", help="Print a JSON document instead of key: value lines."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Classify one failure list and print the retry decision."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    source = _resolve_registry_file(registry_file, settings)
    try:
        registry = load_registry(source, logger=logger)
    except LoadError as exc:
        typer.echo(f"registry_error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    limit = max_attempts or settings.orchestrator.max_attempts
    classification = classify(read_failures_file(failures_file), registry)
    decision = decide_retry(classification, attempt, limit)

    if as_json:
        payload = {
            **classification.as_dict(),
            "known_reasons": classification.known_reasons(registry),
            "decision": decision.action,
            "decision_reason": decision.reason,
            "mark_unstable": decision.mark_unstable,
            "retry_scope": sorted(decision.scope),
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"known: {len(classification.known)}")
    for identifier, reason in classification.known_reasons(registry).items():
        typer.echo(f"  {identifier}  ({reason or 'no reason given'})")
    typer.echo(f"genuine: {len(classification.genuine)}")
    for identifier in sorted(classification.genuine):
        typer.echo(f"  {identifier}")
    typer.echo(f"decision: {decision.action}")
    typer.echo(f"decision_reason: {decision.reason}")
    typer.echo(f"mark_unstable: {decision.mark_unstable}")


@app.command("build")
def build_cmd(
    plan_file: Path = typer.Option(
        ...,
        "--plan-file",
        help="YAML build plan listing modules and step commands.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    registry_file: Path | None = typer.Option(None, "--registry-file", help="Fetched known-flaky document."),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1, help="Override orchestrator.max_attempts."),
    parallelism: int | None = typer.Option(None, "--parallelism", min=1, help="Override orchestrator.parallelism."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=0.001,
        help="Override orchestrator.per_step_timeout_sec.",
    ),
    unstable_exit_zero: bool = typer.Option(
        False,
        "--unstable-exit-zero",
        help="Exit 0 for UNSTABLE builds instead of 2.",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Run a build plan with flaky-aware test retries."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True, log_level=log_level)
    overrides = {
        key: value
        for key, value in {
            "max_attempts": max_attempts,
            "parallelism": parallelism,
            "per_step_timeout_sec": timeout,
        }.items()
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update={"orchestrator": settings.orchestrator.model_copy(update=overrides)})

    try:
        plan = load_build_plan(plan_file, logger=logger)
    except BuildPlanError as exc:
        typer.echo(f"plan_error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    runner = CommandStepRunner(
        modules=plan.commands,
        timeout_sec=settings.orchestrator.per_step_timeout_sec,
        logger=logger,
    )
    try:
        result = run_build(
            settings,
            plan.modules,
            runner,
            registry_source=_resolve_registry_file(registry_file, settings),
            report_sinks=(
                LoggingReportSink(logger=logger),
                ArtifactReportSink(settings.paths.artifacts_root, logger=logger),
            ),
            logger=logger,
        )
    except LoadError as exc:
        typer.echo(f"registry_error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    summary = result.summary
    typer.echo(f"run_id: {summary.run_id}")
    typer.echo(f"verdict: {summary.overall_verdict}")
    for outcome in summary.outcomes:
        detail = f" ({outcome.error_message})" if outcome.error_message else ""
        typer.echo(f"  {outcome.module_id}: {outcome.final_verdict} attempts={len(outcome.attempts)}{detail}")
    for identifier, reason in summary.flaky_observations.items():
        typer.echo(f"flaky: {identifier} ({reason or 'no reason given'})")
    typer.echo(f"summary_path: {summary_artifact_paths(settings.paths.artifacts_root, summary.run_id).summary_path}")

    exit_code = EXIT_CODES[summary.overall_verdict]
    if summary.overall_verdict == "UNSTABLE" and unstable_exit_zero:
        exit_code = 0
    raise typer.Exit(code=exit_code)


def main() -> None:
    """CLI script entrypoint."""

    app()


if __name__ == "__main__":
    main()
