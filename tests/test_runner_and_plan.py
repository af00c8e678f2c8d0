from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from flakeguard.errors import BuildPlanError, StepExecutionError
from flakeguard.orchestrate import (
    CommandStepRunner,
    load_build_plan,
    parse_build_plan,
    read_failures_file,
    read_junit_failures,
)

JUNIT_REPORT = """<?xml version="1.0" encoding="UTF-8"?>
<testsuite name="FooTest" tests="3">
  <testcase classname="org.xwiki.FooTest" name="testOk"/>
  <testcase classname="org.xwiki.FooTest" name="testFlaky"><failure message="boom"/></testcase>
  <testcase classname="org.xwiki.FooTest" name="testCrash"><error message="npe"/></testcase>
</testsuite>
"""


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_read_failures_file_skips_comments_and_repeats(tmp_path: Path) -> None:
    path = tmp_path / "failures.txt"
    path.write_text("# header\nModA::testFoo\n\n  ModB::testBar  \nModA::testFoo\nFoo#bar\n", encoding="utf-8")

    assert read_failures_file(path) == ("ModA::testFoo", "ModB::testBar", "Foo#bar")
    assert read_failures_file(tmp_path / "missing.txt") == ()


def test_read_junit_failures(tmp_path: Path) -> None:
    (tmp_path / "TEST-FooTest.xml").write_text(JUNIT_REPORT, encoding="utf-8")
    (tmp_path / "TEST-Broken.xml").write_text("<testsuite", encoding="utf-8")

    assert read_junit_failures(tmp_path) == (
        "org.xwiki.FooTest::testFlaky",
        "org.xwiki.FooTest::testCrash",
    )


def test_parse_build_plan_resolves_paths(tmp_path: Path) -> None:
    plan = parse_build_plan(
        {
            "modules": [
                {
                    "id": "core",
                    "workdir": "core",
                    "steps": {"compile": "make", "TEST": "make test"},
                    "test_rerun": "make test ONLY={tests}",
                    "failures_file": "out/failures.txt",
                }
            ]
        },
        base_dir=tmp_path,
    )

    assert [module.module_id for module in plan.modules] == ["core"]
    assert plan.modules[0].ordered_steps() == ("COMPILE", "TEST")
    commands = plan.commands["core"]
    assert commands.workdir == (tmp_path / "core").resolve()
    assert commands.failures_file == (tmp_path / "core" / "out" / "failures.txt").resolve()


@pytest.mark.parametrize(
    "document",
    [
        None,
        {"modules": "core"},
        {"modules": [{"steps": {"TEST": "x"}}]},
        {"modules": [{"id": "a", "steps": {"DEPLOY": "x"}}]},
        {"modules": [{"id": "a", "steps": {"TEST": ""}}]},
        {"modules": [{"id": "a", "steps": {"TEST": "x"}}, {"id": "a", "steps": {"TEST": "y"}}]},
        {"modules": [{"id": "a", "steps": {"TEST": "x"}, "test_rerun": "x --only"}]},
    ],
)
def test_invalid_plans_are_rejected(tmp_path: Path, document: object) -> None:
    with pytest.raises(BuildPlanError):
        parse_build_plan(document, base_dir=tmp_path)


def test_load_build_plan_reports_unreadable_file(tmp_path: Path) -> None:
    with pytest.raises(BuildPlanError):
        load_build_plan(tmp_path / "absent.yaml")


def test_command_runner_collects_failures_and_uses_rerun_template(tmp_path: Path) -> None:
    write_failures = "import sys, pathlib; pathlib.Path('failures.txt').write_text(sys.argv[1]); sys.exit(1)"
    plan = parse_build_plan(
        {
            "modules": [
                {
                    "id": "core",
                    "steps": {
                        "COMPILE": _python("pass"),
                        "TEST": _python(write_failures) + " ModA::testFoo",
                    },
                    "test_rerun": _python(write_failures) + " {tests}",
                    "failures_file": "failures.txt",
                }
            ]
        },
        base_dir=tmp_path,
    )
    runner = CommandStepRunner(modules=plan.commands, timeout_sec=30)

    compile_result = runner.run_step("core", "COMPILE", None)
    test_result = runner.run_step("core", "TEST", None)
    rerun_result = runner.run_step("core", "TEST", frozenset({"ModB::testBar"}))

    assert compile_result.exit_code == 0
    assert compile_result.failures == ()
    assert test_result.exit_code == 1
    assert test_result.failures == ("ModA::testFoo",)
    assert rerun_result.failures == ("ModB::testBar",)


def test_command_runner_errors(tmp_path: Path) -> None:
    plan = parse_build_plan(
        {"modules": [{"id": "core", "steps": {"COMPILE": "definitely-not-a-real-binary-xyz"}}]},
        base_dir=tmp_path,
    )
    runner = CommandStepRunner(modules=plan.commands)

    with pytest.raises(StepExecutionError):
        runner.run_step("core", "COMPILE", None)
    with pytest.raises(StepExecutionError):
        runner.run_step("core", "PACKAGE", None)
    with pytest.raises(StepExecutionError):
        runner.run_step("other", "COMPILE", None)


def test_command_runner_ignores_reports_from_an_earlier_run(tmp_path: Path) -> None:
    reports = tmp_path / "reports"
    reports.mkdir()
    (reports / "TEST-FooTest.xml").write_text(JUNIT_REPORT, encoding="utf-8")
    (tmp_path / "failures.txt").write_text("ModA::testFoo\n", encoding="utf-8")
    plan = parse_build_plan(
        {
            "modules": [
                {
                    "id": "core",
                    "steps": {"TEST": _python("import sys; sys.exit(1)")},
                    "failures_file": "failures.txt",
                    "junit_dir": "reports",
                }
            ]
        },
        base_dir=tmp_path,
    )
    runner = CommandStepRunner(modules=plan.commands, timeout_sec=30)

    result = runner.run_step("core", "TEST", None)

    assert result.exit_code == 1
    assert result.failures == ()
    assert list(reports.glob("*.xml")) == []
    assert not (tmp_path / "failures.txt").exists()


def test_rerun_template_keeps_other_braces(tmp_path: Path) -> None:
    echo_args = "import sys, pathlib; pathlib.Path('failures.txt').write_text(sys.argv[1] + '\\n' + sys.argv[2])"
    plan = parse_build_plan(
        {
            "modules": [
                {
                    "id": "core",
                    "steps": {"TEST": _python("pass")},
                    "test_rerun": _python(echo_args) + " {tests} ${env.HOME}",
                    "failures_file": "failures.txt",
                }
            ]
        },
        base_dir=tmp_path,
    )
    runner = CommandStepRunner(modules=plan.commands, timeout_sec=30)

    result = runner.run_step("core", "TEST", frozenset({"ModB::testBar", "ModA::testFoo"}))

    assert result.exit_code == 0
    assert result.failures == ("ModA::testFoo,ModB::testBar", "${env.HOME}")
