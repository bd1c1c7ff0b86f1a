from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Optional, Union
from unittest.mock import MagicMock

import pytest

from infra_orchestrator.config import Settings
from infra_orchestrator.core.contracts import StageResult, StageStatus
from infra_orchestrator.core.credentials import EnvCredentialProvider
from infra_orchestrator.core.graph import Orchestrator
from infra_orchestrator.core.stages import StageOptions, StageRunner


class FakeRunner(StageRunner):
    """Records stage invocations instead of spawning processes.

    ``exit_codes`` maps a stage name to an exit code, or to a list of exit
    codes consumed one per attempt. A successful ``plan`` writes the file
    named by ``-out=`` so the artifact exists like a real plan would.
    """

    def __init__(self, exit_codes: Optional[Mapping[str, Union[int, Iterable[int]]]] = None):
        super().__init__()
        self.exit_codes = {
            name: list(code) if not isinstance(code, int) else code
            for name, code in (exit_codes or {}).items()
        }
        self.calls: list[tuple[str, list[str], StageOptions]] = []

    async def run(self, stage_name, command, options=None):
        argv = [str(c) for c in command]
        self.calls.append((stage_name, argv, options or StageOptions()))

        code = self.exit_codes.get(stage_name, 0)
        if isinstance(code, list):
            code = code.pop(0) if code else 0

        if stage_name == "plan" and code == 0:
            out = next(a for a in argv if a.startswith("-out="))[len("-out="):]
            Path(out).write_text("serialized plan")

        return StageResult(
            stage_name=stage_name,
            status=StageStatus.SUCCESS if code == 0 else StageStatus.FAILURE,
            exit_code=code,
        )

    @property
    def stage_names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def argv_for(self, stage_name: str) -> list[str]:
        return next(argv for name, argv, _ in self.calls if name == stage_name)

    def options_for(self, stage_name: str) -> StageOptions:
        return next(options for name, _, options in self.calls if name == stage_name)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "definitions"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, source_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        workspace_dir=tmp_path / "workspaces",
        plan_dir=tmp_path / "plans",
        source_dir=source_dir,
        format_check=False,
        approval_timeout_minutes=0.002,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def make_orchestrator(settings: Settings, notifier: MagicMock):
    def factory(runner: StageRunner, channel, **kwargs) -> Orchestrator:
        kwargs.setdefault("credentials", EnvCredentialProvider({}))
        return Orchestrator(
            kwargs.pop("settings", settings),
            runner=runner,
            approval_channel=channel,
            notifier=notifier,
            **kwargs,
        )

    return factory
