"""Shared fixtures: scripted step runners and a small registry."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

import pytest

from flakeguard.orchestrate.models import StepResult
from flakeguard.registry.models import FlakyTestRegistry


@dataclass
class ScriptedRunner:
    """Replays queued results per (module, step); unscripted steps succeed."""

    script: dict[tuple[str, str], list[Any]] = field(default_factory=dict)
    delays: dict[tuple[str, str], float] = field(default_factory=dict)
    calls: list[tuple[str, str, frozenset[str] | None]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def queue(self, module_id: str, step_kind: str, *results: Any) -> "ScriptedRunner":
        self.script.setdefault((module_id, step_kind), []).extend(results)
        return self

    def run_step(self, module_id: str, step_kind: str, scope: frozenset[str] | None) -> StepResult:
        with self._lock:
            self.calls.append((module_id, step_kind, scope))
            pending = self.script.get((module_id, step_kind), [])
            item = pending.pop(0) if pending else StepResult(exit_code=0)
        delay = self.delays.get((module_id, step_kind))
        if delay:
            time.sleep(delay)
        if isinstance(item, BaseException):
            raise item
        return item

    def steps_for(self, module_id: str) -> list[str]:
        return [step for called_module, step, _ in self.calls if called_module == module_id]


def failed(*identifiers: str) -> StepResult:
    return StepResult(exit_code=1, failures=tuple(identifiers))


@pytest.fixture
def registry() -> FlakyTestRegistry:
    return FlakyTestRegistry.from_mapping({"ModA::testFoo": "timing issue", "ModB::testBar": "port clash"})


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()
