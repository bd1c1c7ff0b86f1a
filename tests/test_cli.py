from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from infra_orchestrator.config import ApprovalChannelType, Environment
from infra_orchestrator.core.contracts import (
    Action,
    FailureKind,
    RunReport,
    RunRequest,
    RunStatus,
)
from infra_orchestrator.main import cli


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_settings(settings):
    with patch("infra_orchestrator.main.get_settings", return_value=settings), \
            patch("infra_orchestrator.main.configure_logging"):
        yield settings


@pytest.fixture
def orchestrator_cls():
    with patch("infra_orchestrator.core.graph.Orchestrator") as cls:
        yield cls


def report_for(status: RunStatus, failure=None) -> RunReport:
    request = RunRequest(environment=Environment.STG, action=Action.APPLY, region="us-east-1")
    return RunReport(request=request, status=status, failure=failure)


def test_run_exits_with_report_code(cli_runner, orchestrator_cls) -> None:
    orchestrator_cls.return_value.run.return_value = report_for(
        RunStatus.TIMED_OUT, FailureKind.APPROVAL_TIMEOUT
    )

    result = cli_runner.invoke(cli, ["run", "-e", "stg", "-a", "apply"])

    assert result.exit_code == 3
    assert "Nothing was changed." in result.output
    orchestrator_cls.return_value.run.assert_called_once_with("stg", "apply", region=None)


def test_run_success(cli_runner, orchestrator_cls) -> None:
    orchestrator_cls.return_value.run.return_value = report_for(RunStatus.COMPLETED)

    result = cli_runner.invoke(cli, ["run", "-e", "stg", "-a", "apply", "-r", "eu-west-1"])

    assert result.exit_code == 0
    orchestrator_cls.return_value.run.assert_called_once_with("stg", "apply", region="eu-west-1")


def test_run_overrides_settings(cli_runner, orchestrator_cls, tmp_path) -> None:
    orchestrator_cls.return_value.run.return_value = report_for(RunStatus.COMPLETED)

    cli_runner.invoke(
        cli,
        ["run", "-e", "dev", "--non-interactive", "--ref", "release-1", "--approval-timeout", "5"],
    )

    settings = orchestrator_cls.call_args.args[0]
    assert settings.approval_channel == ApprovalChannelType.DENY
    assert settings.repository_ref == "release-1"
    assert settings.approval_timeout_minutes == 5


def test_run_unknown_environment(cli_runner, orchestrator_cls) -> None:
    result = cli_runner.invoke(cli, ["run", "-e", "qa"])

    assert result.exit_code == 2
    assert "Unknown environment 'qa'" in result.output
    orchestrator_cls.assert_not_called()


def test_run_rejects_unknown_action(cli_runner) -> None:
    result = cli_runner.invoke(cli, ["run", "-e", "dev", "-a", "import"])

    assert result.exit_code != 0
    assert "import" in result.output


def test_run_interrupted_prints_the_cleanup_report(cli_runner, orchestrator_cls) -> None:
    interrupted = report_for(RunStatus.FAILED, FailureKind.RUN_CANCELLED).model_copy(
        update={"mutation_attempted": True}
    )
    orchestrator_cls.return_value.run.side_effect = KeyboardInterrupt
    orchestrator_cls.return_value.last_report = interrupted

    result = cli_runner.invoke(cli, ["run", "-e", "stg", "-a", "apply"])

    assert result.exit_code == 6
    assert "MAY HAVE CHANGED" in result.output


def test_run_interrupted_without_report(cli_runner, orchestrator_cls) -> None:
    orchestrator_cls.return_value.run.side_effect = KeyboardInterrupt
    orchestrator_cls.return_value.last_report = None

    result = cli_runner.invoke(cli, ["run", "-e", "dev"])

    assert result.exit_code == 130
    assert "No run report was produced" in result.output


def test_environments(cli_runner) -> None:
    result = cli_runner.invoke(cli, ["environments"])

    assert result.exit_code == 0
    for name in ("dev", "stg", "prod"):
        assert name in result.output


def test_stages_shows_second_gate_for_prod_destroy(cli_runner) -> None:
    result = cli_runner.invoke(cli, ["stages", "-e", "prod", "-a", "destroy"])

    assert result.exit_code == 0
    assert "approval (2 gate(s))" in result.output
    assert "test" not in result.output.split("destroy", 1)[1]


def test_artifacts_list_and_prune(cli_runner, cli_settings) -> None:
    cli_settings.plan_dir.mkdir(parents=True)
    for ts in range(1, 6):
        (cli_settings.plan_dir / f"tfplan-dev-{ts}.plan").write_text("plan")

    listed = cli_runner.invoke(cli, ["artifacts", "list", "-e", "dev"])
    pruned = cli_runner.invoke(cli, ["artifacts", "prune", "-e", "dev", "--keep", "2"])

    assert listed.exit_code == 0
    assert "tfplan-dev-5.plan" in listed.output
    assert pruned.exit_code == 0
    assert "Deleted 3 artifact(s)" in pruned.output
    assert len(list(cli_settings.plan_dir.glob("tfplan-dev-*.plan"))) == 2


def test_status(cli_runner) -> None:
    result = cli_runner.invoke(cli, ["status"])

    assert result.exit_code == 0
    assert "Orchestrator Status" in result.output


def test_version(cli_runner) -> None:
    result = cli_runner.invoke(cli, ["--version"])

    assert "0.1.0" in result.output
