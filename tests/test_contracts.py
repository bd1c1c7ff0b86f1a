from __future__ import annotations

import pytest

from infra_orchestrator.config import Environment
from infra_orchestrator.core.contracts import (
    EXIT_EXECUTE_FAILED,
    EXIT_FAILED,
    Action,
    FailureKind,
    RunReport,
    RunRequest,
    RunStatus,
)


def apply_report(**kwargs) -> RunReport:
    request = RunRequest(environment=Environment.STG, action=Action.APPLY, region="us-east-1")
    return RunReport(request=request, status=RunStatus.FAILED, **kwargs)


def test_execute_failure_after_start_exits_6() -> None:
    report = apply_report(failure=FailureKind.EXECUTE_FAILED, mutation_attempted=True)

    assert report.exit_code == EXIT_EXECUTE_FAILED
    assert "MAY HAVE CHANGED" in report.infrastructure_changed


def test_execute_that_never_ran_is_a_plain_failure() -> None:
    report = apply_report(failure=FailureKind.EXECUTE_FAILED, message="Execute did not run")

    assert report.exit_code == EXIT_FAILED
    assert report.infrastructure_changed == "Nothing was changed."


@pytest.mark.parametrize(
    "failure, mutation_attempted, exit_code",
    [
        (FailureKind.RUN_CANCELLED, False, 130),
        (FailureKind.RUN_CANCELLED, True, EXIT_EXECUTE_FAILED),
        (FailureKind.APPROVAL_DENIED, False, 5),
        (FailureKind.PLAN_FAILED, False, EXIT_FAILED),
    ],
)
def test_exit_code_six_only_when_execute_started(failure, mutation_attempted, exit_code) -> None:
    report = apply_report(failure=failure, mutation_attempted=mutation_attempted)

    assert report.exit_code == exit_code


def test_completed_run_exits_zero() -> None:
    report = apply_report(changes_applied=True, mutation_attempted=True).model_copy(
        update={"status": RunStatus.COMPLETED}
    )

    assert report.exit_code == 0
    assert report.infrastructure_changed == "Changes were APPLIED."
