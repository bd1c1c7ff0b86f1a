"""Run context and LangGraph state definitions."""

import operator
from dataclasses import dataclass
from typing import Annotated, Optional, TypedDict

from infra_orchestrator.core.contracts import (
    ApprovalDecision,
    EnvironmentConfig,
    FailureKind,
    PlanArtifact,
    RunReport,
    RunRequest,
    RunStatus,
    StageResult,
)
from infra_orchestrator.core.policy import StagePlan


@dataclass(frozen=True)
class RunContext:
    """Everything a stage needs to know about the run it belongs to.

    Passed explicitly to every stage instead of process-wide environment
    variables. ``credential_secrets`` are handles only; values are fetched
    per stage invocation.
    """

    request: RunRequest
    environment: EnvironmentConfig
    plan: StagePlan

    @property
    def credential_secrets(self) -> tuple[str, ...]:
        return self.environment.credential_secrets

    @property
    def label(self) -> str:
        return f"{self.request.action.value}/{self.request.environment.value}/{self.request.run_id}"


class RunState(TypedDict):
    """State schema for the orchestration graph."""

    context: RunContext

    # Stage bookkeeping
    current_stage: Optional[str]
    workdir: Optional[str]
    stage_results: Annotated[list[StageResult], operator.add]
    approvals: Annotated[list[ApprovalDecision], operator.add]

    # Plan artifact produced by this run
    plan_artifact: Optional[PlanArtifact]

    # Outcome
    failure: Optional[FailureKind]
    status: Optional[RunStatus]
    message: str
    mutation_attempted: bool
    changes_applied: bool

    # Set by the cleanup node
    report: Optional[RunReport]


def create_initial_state(context: RunContext) -> RunState:
    """Create initial graph state for a run."""
    return RunState(
        context=context,
        current_stage=None,
        workdir=None,
        stage_results=[],
        approvals=[],
        plan_artifact=None,
        failure=None,
        status=None,
        message="",
        mutation_attempted=False,
        changes_applied=False,
        report=None,
    )
