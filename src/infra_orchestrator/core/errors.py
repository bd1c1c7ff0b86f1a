"""Error taxonomy for orchestration runs."""

from typing import Optional

from infra_orchestrator.core.contracts import FailureKind, RunStatus, StageResult


class OrchestratorError(Exception):
    """Base class for failures that end a run."""

    kind: FailureKind = FailureKind.EXECUTE_FAILED
    status: RunStatus = RunStatus.FAILED

    def __init__(self, message: str, result: Optional[StageResult] = None):
        super().__init__(message)
        self.message = message
        self.result = result


class UnknownEnvironment(OrchestratorError):
    kind = FailureKind.UNKNOWN_ENVIRONMENT


class CheckoutFailed(OrchestratorError):
    kind = FailureKind.CHECKOUT_FAILED


class InitFailed(OrchestratorError):
    kind = FailureKind.INIT_FAILED


class ValidationFailed(OrchestratorError):
    kind = FailureKind.VALIDATION_FAILED


class PlanFailed(OrchestratorError):
    kind = FailureKind.PLAN_FAILED


class TestFailed(OrchestratorError):
    # not a test case
    __test__ = False
    kind = FailureKind.TEST_FAILED


class ApprovalDenied(OrchestratorError):
    kind = FailureKind.APPROVAL_DENIED


class ApprovalTimeout(OrchestratorError):
    kind = FailureKind.APPROVAL_TIMEOUT
    status = RunStatus.TIMED_OUT


class ExecuteFailed(OrchestratorError):
    kind = FailureKind.EXECUTE_FAILED


class RunCancelled(OrchestratorError):
    kind = FailureKind.RUN_CANCELLED


class ArtifactPruneWarning(UserWarning):
    """Non-fatal: a stale plan artifact could not be deleted."""


class CredentialError(Exception):
    """A credential collaborator could not resolve a secret."""
