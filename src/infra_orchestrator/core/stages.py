"""Single-stage execution of external commands.

A stage is one external process. The runner captures its combined output
for diagnostics (length and tail only), enforces a timeout and converts
everything into a ``StageResult``. It never retries and never interprets
the tool's output.
"""

import asyncio
import logging
import os
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from infra_orchestrator.core.contracts import StageResult, StageStatus

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

Command = Union[str, Sequence[str]]


@dataclass(frozen=True)
class StageOptions:
    """Per-invocation options.

    ``credentials`` are merged into the child environment for this call only
    and are never logged.
    """

    cwd: Optional[Path] = None
    credentials: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    fail_fast: bool = True
    timeout_seconds: Optional[float] = None


class StageRunner:
    """Runs one named stage as an external process."""

    def __init__(
        self,
        default_timeout_seconds: float = 1800,
        tail_lines: int = 20,
        terminate_grace_seconds: float = 10.0,
    ):
        self._default_timeout = default_timeout_seconds
        self._tail_lines = tail_lines
        self._grace = terminate_grace_seconds
        self._current: Optional[asyncio.subprocess.Process] = None

    async def run(
        self,
        stage_name: str,
        command: Command,
        options: Optional[StageOptions] = None,
    ) -> StageResult:
        """Run ``command`` and report how it went."""
        options = options or StageOptions()
        argv = shlex.split(command) if isinstance(command, str) else [str(c) for c in command]
        timeout = options.timeout_seconds or self._default_timeout
        env = {**os.environ, **options.env, **options.credentials}

        logger.info(f"[{stage_name}] $ {shlex.join(argv)}")
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(options.cwd) if options.cwd else None,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            logger.error(f"[{stage_name}] executable not found: {e}")
            return self._result(stage_name, EXIT_NOT_FOUND, str(e), started)
        except PermissionError as e:
            logger.error(f"[{stage_name}] not executable: {e}")
            return self._result(stage_name, EXIT_NOT_EXECUTABLE, str(e), started)

        self._current = proc
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            message = f"timed out after {timeout:g}s"
            logger.error(f"[{stage_name}] {message}")
            return self._result(stage_name, EXIT_TIMEOUT, message, started)
        except asyncio.CancelledError:
            logger.warning(f"[{stage_name}] cancelled, terminating process {proc.pid}")
            await self._terminate(proc)
            raise
        finally:
            self._current = None

        output = (stdout or b"").decode("utf-8", errors="replace")
        result = self._result(stage_name, proc.returncode, output, started)
        if result.succeeded:
            logger.info(f"[{stage_name}] ok in {result.duration_ms}ms ({result.output_length} chars of output)")
        else:
            logger.error(f"[{stage_name}] exited {result.exit_code} after {result.duration_ms}ms")
            if result.output_tail:
                logger.error(f"[{stage_name}] output tail:\n{result.output_tail}")
        return result

    def terminate_current(self) -> None:
        """Ask the running process, if any, to stop. Does not wait."""
        proc = self._current
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            pass

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self._grace)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    def _result(self, stage_name: str, exit_code: Optional[int], output: str, started: float) -> StageResult:
        tail = "\n".join(output.rstrip().splitlines()[-self._tail_lines:]) if output else ""
        return StageResult(
            stage_name=stage_name,
            status=StageStatus.SUCCESS if exit_code == 0 else StageStatus.FAILURE,
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            output_length=len(output),
            output_tail=tail,
        )
