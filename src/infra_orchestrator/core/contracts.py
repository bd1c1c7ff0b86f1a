"""Contract definitions (Pydantic models) passed between orchestration stages.

These models are the data exchanged by the components of a run:
- RunRequest: what the operator asked for (immutable once the run starts)
- EnvironmentConfig: the resolved environment table entry
- PlanArtifact: the change-plan file produced and consumed by the run
- StageResult: outcome of a single external command
- ApprovalDecision: outcome of a single approval gate
- RunReport: terminal status of the whole run
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from infra_orchestrator.config import Environment


# =============================================================================
# Shared Types
# =============================================================================


class Action(str, Enum):
    """Requested effect of a run."""

    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"

    @property
    def is_mutating(self) -> bool:
        return self in (Action.APPLY, Action.DESTROY)


class Stage(str, Enum):
    """Named stages of the orchestration sequence, in execution order."""

    CHECKOUT = "checkout"
    INITIALIZE = "initialize"
    VALIDATE = "validate"
    PLAN = "plan"
    TEST = "test"
    APPROVAL = "approval"
    EXECUTE = "execute"


class StageStatus(str, Enum):
    """Status of a single stage."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Terminal status of a run."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureKind(str, Enum):
    """Why a run did not complete."""

    UNKNOWN_ENVIRONMENT = "UnknownEnvironment"
    CHECKOUT_FAILED = "CheckoutFailed"
    INIT_FAILED = "InitFailed"
    VALIDATION_FAILED = "ValidationFailed"
    PLAN_FAILED = "PlanFailed"
    TEST_FAILED = "TestFailed"
    APPROVAL_DENIED = "ApprovalDenied"
    APPROVAL_TIMEOUT = "ApprovalTimeout"
    EXECUTE_FAILED = "ExecuteFailed"
    RUN_CANCELLED = "RunCancelled"


# Exit codes reported by the CLI. EXIT_EXECUTE_FAILED is reserved for runs whose
# execute stage started and did not complete; every other code means the
# infrastructure was left untouched.
EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_UNKNOWN_ENVIRONMENT = 2
EXIT_APPROVAL_TIMEOUT = 3
EXIT_CHECKOUT_FAILED = 4
EXIT_APPROVAL_DENIED = 5
EXIT_EXECUTE_FAILED = 6
EXIT_CANCELLED = 130

_FAILURE_EXIT_CODES = {
    FailureKind.UNKNOWN_ENVIRONMENT: EXIT_UNKNOWN_ENVIRONMENT,
    FailureKind.CHECKOUT_FAILED: EXIT_CHECKOUT_FAILED,
    FailureKind.APPROVAL_TIMEOUT: EXIT_APPROVAL_TIMEOUT,
    FailureKind.APPROVAL_DENIED: EXIT_APPROVAL_DENIED,
    FailureKind.RUN_CANCELLED: EXIT_CANCELLED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Run inputs
# =============================================================================


class RunRequest(BaseModel):
    """What the operator asked for."""

    model_config = ConfigDict(frozen=True)

    environment: Environment
    action: Action
    region: str = Field(min_length=1)
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])


class EnvironmentConfig(BaseModel):
    """Static configuration for one deployment environment."""

    model_config = ConfigDict(frozen=True)

    name: Environment
    variable_file_path: str
    region: str
    requires_escalated_approval: bool = False
    credential_secrets: tuple[str, ...] = ()
    backend_config_path: Optional[str] = None
    # Per-stage override of the actions a conditional stage is active for
    stage_overrides: dict[Stage, tuple[Action, ...]] = Field(default_factory=dict)


# =============================================================================
# Stage outputs
# =============================================================================


class PlanArtifact(BaseModel):
    """A serialized change plan on disk."""

    model_config = ConfigDict(frozen=True)

    path: str
    created_at: int
    environment: Environment
    action: Optional[Action] = None
    run_id: str = ""


class StageResult(BaseModel):
    """Outcome of one stage invocation. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    stage_name: str
    status: StageStatus
    exit_code: Optional[int] = None
    duration_ms: int = 0
    output_length: int = 0
    output_tail: str = ""
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCESS

    @classmethod
    def skipped(cls, stage_name: str) -> "StageResult":
        return cls(stage_name=stage_name, status=StageStatus.SKIPPED, attempts=0)


class ApprovalDecision(BaseModel):
    """Outcome of a single approval gate."""

    model_config = ConfigDict(frozen=True)

    gate: str
    granted: bool
    responded_within_timeout: bool
    approver: Optional[str] = None
    decided_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Terminal report
# =============================================================================


class RunReport(BaseModel):
    """Terminal status of a run."""

    request: Optional[RunRequest] = None
    status: RunStatus
    failure: Optional[FailureKind] = None
    message: str = ""
    stage_results: list[StageResult] = Field(default_factory=list)
    approvals: list[ApprovalDecision] = Field(default_factory=list)
    plan_artifact: Optional[PlanArtifact] = None
    changes_applied: bool = False
    mutation_attempted: bool = False
    finished_at: datetime = Field(default_factory=_utcnow)

    @property
    def exit_code(self) -> int:
        if self.status == RunStatus.COMPLETED:
            return EXIT_COMPLETED
        if self.mutation_attempted:
            return EXIT_EXECUTE_FAILED
        if self.failure is None:
            return EXIT_FAILED
        return _FAILURE_EXIT_CODES.get(self.failure, EXIT_FAILED)

    @property
    def infrastructure_changed(self) -> str:
        """Human-readable statement about the state of the infrastructure."""
        if self.changes_applied:
            verb = "DESTROYED" if self.request and self.request.action == Action.DESTROY else "APPLIED"
            return f"Changes were {verb}."
        if self.mutation_attempted:
            return "Execute started and failed: infrastructure MAY HAVE CHANGED."
        return "Nothing was changed."

    def summary(self) -> str:
        """One-paragraph summary for logs and notifications."""
        target = "unknown run"
        if self.request:
            target = (
                f"{self.request.action.value} on {self.request.environment.value}"
                f" ({self.request.region}, run {self.request.run_id})"
            )
        status = self.status.value.upper()
        if self.failure:
            status = f"{status} [{self.failure.value}]"
        lines = [f"{target}: {status}", self.infrastructure_changed]
        if self.message:
            lines.append(self.message)
        return "\n".join(lines)
