from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from infra_orchestrator.core.contracts import StageStatus
from infra_orchestrator.core.stages import (
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    StageOptions,
    StageRunner,
)


def py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


@pytest.mark.asyncio
async def test_success_captures_output_length_and_tail() -> None:
    runner = StageRunner(tail_lines=2)

    result = await runner.run("validate", py("for i in range(5): print(f'line {i}')"))

    assert result.status == StageStatus.SUCCESS
    assert result.exit_code == 0
    assert result.output_tail == "line 3\nline 4"
    assert result.output_length == len("".join(f"line {i}\n" for i in range(5)))


@pytest.mark.asyncio
async def test_nonzero_exit_is_failure_with_stderr_in_tail() -> None:
    result = await StageRunner().run(
        "plan", py("import sys; sys.stderr.write('boom\\n'); sys.exit(3)")
    )

    assert result.status == StageStatus.FAILURE
    assert result.exit_code == 3
    assert "boom" in result.output_tail


@pytest.mark.asyncio
async def test_missing_executable_reports_127() -> None:
    result = await StageRunner().run("initialize", ["definitely-not-a-real-binary-xyz"])

    assert result.exit_code == EXIT_NOT_FOUND
    assert result.status == StageStatus.FAILURE


@pytest.mark.asyncio
async def test_timeout_terminates_process() -> None:
    runner = StageRunner(terminate_grace_seconds=1)

    result = await runner.run(
        "test", py("import time; time.sleep(30)"), StageOptions(timeout_seconds=0.5)
    )

    assert result.exit_code == EXIT_TIMEOUT
    assert "timed out" in result.output_tail
    assert result.duration_ms < 10_000


@pytest.mark.asyncio
async def test_credentials_reach_the_child_only(monkeypatch) -> None:
    monkeypatch.delenv("STAGE_TOKEN", raising=False)

    result = await StageRunner().run(
        "plan",
        py("import os; print(os.environ['STAGE_TOKEN'])"),
        StageOptions(credentials={"STAGE_TOKEN": "t0k3n"}),
    )

    assert result.succeeded
    assert result.output_tail == "t0k3n"
    assert "STAGE_TOKEN" not in os.environ


@pytest.mark.asyncio
async def test_runs_in_working_directory(tmp_path: Path) -> None:
    result = await StageRunner().run(
        "validate", py("import os; print(os.getcwd())"), StageOptions(cwd=tmp_path)
    )

    assert Path(result.output_tail).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_string_commands_are_split() -> None:
    result = await StageRunner().run("test", f"{sys.executable} -c \"print('hi')\"")

    assert result.output_tail == "hi"


def test_terminate_without_process_is_a_no_op() -> None:
    StageRunner().terminate_current()
