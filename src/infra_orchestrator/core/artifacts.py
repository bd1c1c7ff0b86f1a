"""Plan artifact naming, retention and run records.

Plan artifacts live flat in the plan directory as
``<prefix>-<environment>-<timestamp>.<ext>``; the creation time is the
timestamp embedded in the name, so listing and pruning never depend on
filesystem mtimes. Run records are written as YAML under ``runs/`` for the
audit trail.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

from infra_orchestrator.config import Environment
from infra_orchestrator.core.contracts import Action, PlanArtifact, RunReport
from infra_orchestrator.core.errors import ArtifactPruneWarning

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 3


class PlanArtifactManager:
    """Names, records and prunes plan artifacts per environment."""

    def __init__(
        self,
        plan_dir: Path,
        prefix: str = "tfplan",
        extension: str = "plan",
    ):
        """Initialize the artifact manager.

        Args:
            plan_dir: Directory holding plan artifacts and run records.
            prefix: File name prefix of every plan artifact.
            extension: File extension (without the dot).
        """
        self._plan_dir = Path(plan_dir)
        self._runs_dir = self._plan_dir / "runs"
        self._prefix = prefix
        self._extension = extension.lstrip(".")
        self._pattern = re.compile(
            rf"^{re.escape(self._prefix)}-(?P<environment>[a-z0-9_]+)-(?P<timestamp>\d+)\.{re.escape(self._extension)}$"
        )
        self._last_timestamp: dict[str, int] = {}
        self._active: Optional[PlanArtifact] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> Optional[PlanArtifact]:
        """The artifact bound to the current run, if any."""
        return self._active

    def name(self, environment: Environment, action: Action, timestamp: int) -> Path:
        """Return a collision-free artifact path for this environment.

        The embedded timestamp is strictly increasing per environment, both
        across calls on this manager and against artifacts already on disk.
        """
        env = _env_value(environment)
        with self._lock:
            floor = self._last_timestamp.get(env)
            if floor is None:
                existing = self.list_artifacts(env)
                floor = existing[0].created_at if existing else None
            stamp = int(timestamp)
            if floor is not None and stamp <= floor:
                stamp = floor + 1
            self._last_timestamp[env] = stamp
        return self._plan_dir / f"{self._prefix}-{env}-{stamp}.{self._extension}"

    def record(self, path: Path, run_id: str, action: Optional[Action] = None) -> PlanArtifact:
        """Mark ``path`` as the active artifact, replacing any previous one."""
        parsed = self._parse(Path(path))
        if parsed is None:
            raise ValueError(f"Not a plan artifact path: {path}")
        artifact = parsed.model_copy(update={"run_id": run_id, "action": action})
        previous = self._active
        self._active = artifact
        if previous is not None and previous.path != artifact.path:
            logger.debug(f"Released plan artifact {previous.path}")
        logger.info(f"Recorded plan artifact {artifact.path} for run {run_id}")
        return artifact

    def release(self) -> None:
        """Unbind the active artifact."""
        self._active = None

    def list_artifacts(self, environment: Environment | str) -> list[PlanArtifact]:
        """Artifacts on disk for one environment, newest first."""
        env = _env_value(environment)
        if not self._plan_dir.is_dir():
            return []
        artifacts = []
        for entry in self._plan_dir.iterdir():
            if not entry.is_file():
                continue
            parsed = self._parse(entry)
            if parsed is not None and parsed.environment.value == env:
                artifacts.append(parsed)
        return sorted(artifacts, key=lambda a: a.created_at, reverse=True)

    def prune(self, environment: Environment | str, keep: int = DEFAULT_RETENTION) -> list[Path]:
        """Delete all but the ``keep`` newest artifacts for an environment.

        Best-effort: deletion failures are logged and skipped.

        Returns:
            Paths that were actually deleted.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        stale = self.list_artifacts(environment)[keep:]
        deleted: list[Path] = []
        for artifact in stale:
            path = Path(artifact.path)
            try:
                path.unlink()
                deleted.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                warning = ArtifactPruneWarning(f"Could not delete plan artifact {path}: {e}")
                logger.warning(f"{type(warning).__name__}: {warning}")
        if deleted:
            logger.info(f"Pruned {len(deleted)} plan artifact(s) for {_env_value(environment)}")
        return deleted

    def save_run_record(self, report: RunReport) -> Path:
        """Write the run report as YAML for the audit trail."""
        self._runs_dir.mkdir(parents=True, exist_ok=True)
        request = report.request
        name = f"{request.environment.value}-{request.timestamp}-{request.run_id}" if request else "unknown"
        file_path = self._runs_dir / f"{name}.yaml"

        data = report.model_dump(mode="json")
        data["exit_code"] = report.exit_code
        data["infrastructure"] = report.infrastructure_changed

        self._write_yaml(file_path, data, header=f"# Run record: {name}")
        return file_path

    def load_run_record(self, path: Path) -> dict[str, Any]:
        return self._read_yaml(path)

    def _parse(self, path: Path) -> Optional[PlanArtifact]:
        match = self._pattern.match(path.name)
        if not match:
            return None
        try:
            environment = Environment(match.group("environment"))
        except ValueError:
            return None
        return PlanArtifact(
            path=str(path),
            created_at=int(match.group("timestamp")),
            environment=environment,
        )

    def _write_yaml(self, path: Path, data: dict[str, Any], header: str = "") -> None:
        """Write data to YAML file with optional header comment."""
        content = ""
        if header:
            content = header + "\n\n"

        content += yaml.safe_dump(
            data,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=120,
        )
        path.write_text(content)

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        """Read YAML file and return data."""
        content = path.read_text()
        return yaml.safe_load(content) or {}


def _env_value(environment: Environment | str) -> str:
    return environment.value if isinstance(environment, Environment) else str(environment)
