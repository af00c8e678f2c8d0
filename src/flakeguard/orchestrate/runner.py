"""Step-runner seam and the subprocess-backed runner used by the CLI."""

from __future__ import annotations

import logging
import shlex
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from flakeguard.classify.classifier import FailureSet, to_failure_set
from flakeguard.errors import StepExecutionError, StepTimeoutError
from flakeguard.orchestrate.models import StepKind, StepResult

LOGGER = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 2000
FAILURE_TAGS: tuple[str, ...] = ("failure", "error")
RERUN_PLACEHOLDER = "{tests}"


class StepRunner(Protocol):
    """Executes one build step for one module.

    `scope` is None for a full run, or the set of tests to re-run selectively.
    Implementations raise StepExecutionError when the step cannot run at all.
    With a per-step timeout the call runs on a daemon thread; a call that never
    returns is abandoned there and keeps running until the process exits.
    """

    def run_step(self, module_id: str, step_kind: StepKind, scope: frozenset[str] | None) -> StepResult: ...


@dataclass(frozen=True, slots=True)
class ModuleCommands:
    """Shell commands and failure-report locations for one module."""

    module_id: str
    workdir: Path
    steps: Mapping[StepKind, str]
    test_rerun: str | None = None
    failures_file: Path | None = None
    junit_dir: Path | None = None


def read_failures_file(path: Path) -> FailureSet:
    """Read one failing test identifier per line; blank lines and `#` comments are ignored."""

    if not path.exists():
        return ()
    identifiers: list[str] = []
    for raw_line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = raw_line.strip()
        if line and not line.startswith("#"):
            identifiers.append(line)
    return to_failure_set(identifiers)


def read_junit_failures(report_dir: Path, logger: logging.Logger | None = None) -> FailureSet:
    """Collect `classname::name` for every failed or errored JUnit test case."""

    effective_logger = logger or LOGGER
    if not report_dir.is_dir():
        return ()
    identifiers: list[str] = []
    for report_path in sorted(report_dir.glob("*.xml")):
        try:
            tree = ET.parse(report_path)
        except ET.ParseError as exc:
            effective_logger.warning("junit.unparseable_report path=%s error=%s", report_path, exc)
            continue
        for case in tree.getroot().iter("testcase"):
            if not any(case.find(tag) is not None for tag in FAILURE_TAGS):
                continue
            classname = (case.get("classname") or "").strip()
            name = (case.get("name") or "").strip()
            if not name:
                effective_logger.warning("junit.nameless_testcase path=%s classname=%s", report_path, classname)
                continue
            identifiers.append(f"{classname}::{name}" if classname else name)
    return to_failure_set(identifiers)


def _output_tail(completed: subprocess.CompletedProcess[str]) -> str:
    combined = (completed.stdout or "") + (completed.stderr or "")
    return combined[-OUTPUT_TAIL_CHARS:]


@dataclass(slots=True)
class CommandStepRunner:
    """Run configured commands through subprocess without a shell."""

    modules: Mapping[str, ModuleCommands]
    timeout_sec: float | None = None
    logger: logging.Logger = LOGGER

    def _command_for(self, commands: ModuleCommands, step_kind: StepKind, scope: frozenset[str] | None) -> str:
        if step_kind == "TEST" and scope and commands.test_rerun:
            return commands.test_rerun.replace(RERUN_PLACEHOLDER, ",".join(sorted(scope)))
        command = commands.steps.get(step_kind)
        if command is None:
            raise StepExecutionError(
                f"no {step_kind} command configured for module {commands.module_id}",
                module_id=commands.module_id,
                step_kind=step_kind,
            )
        return command

    def _clear_stale_reports(self, commands: ModuleCommands) -> None:
        """Remove failure reports left by an earlier run so a crashed step cannot reuse them."""

        stale: list[Path] = []
        if commands.failures_file is not None and commands.failures_file.exists():
            stale.append(commands.failures_file)
        if commands.junit_dir is not None and commands.junit_dir.is_dir():
            stale.extend(commands.junit_dir.glob("*.xml"))
        for path in stale:
            try:
                path.unlink()
            except OSError as exc:
                raise StepExecutionError(
                    f"could not remove stale report {path}: {exc}",
                    module_id=commands.module_id,
                    step_kind="TEST",
                ) from exc
        if stale:
            self.logger.debug("step.stale_reports_removed module=%s count=%s", commands.module_id, len(stale))

    def _collect_failures(self, commands: ModuleCommands) -> FailureSet:
        collected: list[str] = []
        if commands.failures_file is not None:
            collected.extend(read_failures_file(commands.failures_file))
        if commands.junit_dir is not None:
            collected.extend(read_junit_failures(commands.junit_dir, logger=self.logger))
        return to_failure_set(collected)

    def run_step(self, module_id: str, step_kind: StepKind, scope: frozenset[str] | None) -> StepResult:
        commands = self.modules.get(module_id)
        if commands is None:
            raise StepExecutionError(f"unknown module {module_id}", module_id=module_id, step_kind=step_kind)

        command = self._command_for(commands, step_kind, scope)
        if step_kind == "TEST":
            self._clear_stale_reports(commands)

        self.logger.info("step.exec module=%s step=%s command=%s", module_id, step_kind, command)
        try:
            completed = subprocess.run(
                shlex.split(command),
                cwd=commands.workdir,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise StepTimeoutError(module_id, step_kind, float(exc.timeout)) from exc
        except OSError as exc:
            raise StepExecutionError(
                f"could not start {step_kind} for module {module_id}: {exc}",
                module_id=module_id,
                step_kind=step_kind,
            ) from exc

        failures = self._collect_failures(commands) if step_kind == "TEST" else ()
        return StepResult(exit_code=completed.returncode, failures=failures, output_tail=_output_tail(completed))
