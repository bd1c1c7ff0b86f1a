"""Source checkout of infrastructure definitions."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol

from infra_orchestrator.core.errors import CheckoutFailed
from infra_orchestrator.core.stages import StageOptions, StageRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSource:
    """Where the definitions come from."""

    repository: str
    ref: str = "main"
    credential_ref: Optional[str] = None


class CheckoutCollaborator(Protocol):
    async def checkout(
        self,
        source: CheckoutSource,
        destination: Path,
        credentials: Mapping[str, str],
    ) -> Path:
        ...


class GitCheckout:
    """Shallow clone of one branch or tag with the git CLI."""

    def __init__(self, runner: StageRunner, git_binary: str = "git", timeout_seconds: float = 600):
        self._runner = runner
        self._git = git_binary
        self._timeout = timeout_seconds

    async def checkout(
        self,
        source: CheckoutSource,
        destination: Path,
        credentials: Mapping[str, str],
    ) -> Path:
        if not source.repository:
            raise CheckoutFailed("No repository configured (set INFRA_ORCH_REPOSITORY_URL or INFRA_ORCH_SOURCE_DIR)")
        if destination.exists():
            shutil.rmtree(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            self._git, "clone",
            "--depth", "1",
            "--branch", source.ref,
            source.repository,
            str(destination),
        ]
        env = {"GIT_TERMINAL_PROMPT": "0"}
        result = await self._runner.run(
            "checkout",
            cmd,
            StageOptions(credentials=credentials, env=env, timeout_seconds=self._timeout),
        )
        if not result.succeeded:
            raise CheckoutFailed(
                f"git clone of {source.repository}@{source.ref} exited {result.exit_code}",
                result=result,
            )
        return destination


class LocalCheckout:
    """Uses an existing directory as the checkout."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    async def checkout(
        self,
        source: CheckoutSource,
        destination: Path,
        credentials: Mapping[str, str],
    ) -> Path:
        if not self._directory.is_dir():
            raise CheckoutFailed(f"Source directory does not exist: {self._directory}")
        logger.info(f"Using local definitions at {self._directory}")
        return self._directory
