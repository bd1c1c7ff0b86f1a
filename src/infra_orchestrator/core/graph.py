"""LangGraph state machine for a staged infrastructure run.

Run Flow:

    init
     │
     ▼
    CHECKOUT ─► INITIALIZE ─► VALIDATE? ─► PLAN ─► TEST?
                                                     │
                       ┌─────────────────────────────┘
                       ▼
    ┌───────────────────────────────────────────────┐
    │  APPROVAL? (apply/destroy only)               │
    │  - gate 1: every mutating action              │
    │  - gate 2: escalated environments, opened     │
    │    only after gate 1 is granted               │
    └───────────────────────────────────────────────┘
                       │ (all granted)
                       ▼
                   EXECUTE? (apply | destroy from the recorded plan)
                       │
                       ▼
                   CLEANUP (prune, run record, notification) ─► END

Which conditional stages run is decided once per run by the StagePlan
(core/policy.py). Any failure, denial, timeout or cancellation routes
straight to CLEANUP, which always runs and never changes the outcome.
"""

import asyncio
import logging
import signal
import threading
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from langgraph.graph import END, StateGraph

from infra_orchestrator.config import ApprovalChannelType, Settings, get_settings
from infra_orchestrator.core.approval import (
    ApprovalChannel,
    ApprovalGate,
    ConsoleApprovalChannel,
    DenyAllApprovalChannel,
)
from infra_orchestrator.core.archive import LocalRunArchive, RunArchive, S3RunArchive
from infra_orchestrator.core.artifacts import PlanArtifactManager
from infra_orchestrator.core.checkout import (
    CheckoutCollaborator,
    CheckoutSource,
    GitCheckout,
    LocalCheckout,
)
from infra_orchestrator.core.commands import ToolCommands
from infra_orchestrator.core.contracts import (
    Action,
    ApprovalDecision,
    RunReport,
    RunRequest,
    RunStatus,
    Stage,
    StageResult,
    StageStatus,
)
from infra_orchestrator.core.credentials import CredentialProvider, get_credential_provider
from infra_orchestrator.core.environments import EnvironmentResolver, get_resolver
from infra_orchestrator.core.errors import (
    ApprovalDenied,
    ApprovalTimeout,
    CheckoutFailed,
    CredentialError,
    ExecuteFailed,
    InitFailed,
    OrchestratorError,
    PlanFailed,
    RunCancelled,
    TestFailed,
    UnknownEnvironment,
    ValidationFailed,
)
from infra_orchestrator.core.notifications import (
    LogNotifier,
    Notifier,
    SnsNotifier,
    report_subject,
    send_safely,
)
from infra_orchestrator.core.policy import StagePolicy
from infra_orchestrator.core.stages import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    Command,
    StageOptions,
    StageRunner,
)
from infra_orchestrator.core.state import RunContext, RunState, create_initial_state

logger = logging.getLogger(__name__)

STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)

# Stages that receive the environment's scoped credentials
CREDENTIALED_STAGES = frozenset({Stage.INITIALIZE, Stage.PLAN, Stage.TEST, Stage.EXECUTE})

CLEANUP = "cleanup"


def route_after(stage: Stage):
    """Router: next active stage after ``stage``, or cleanup on failure/end."""
    later = STAGE_ORDER[STAGE_ORDER.index(stage) + 1:]

    def route(state: RunState) -> str:
        if state.get("failure"):
            return CLEANUP
        plan = state["context"].plan
        for candidate in later:
            if plan.is_active(candidate):
                return candidate.value
        return CLEANUP

    route.__name__ = f"route_from_{stage.value}"
    return route


def _path_map(stage: Stage) -> dict[str, str]:
    later = STAGE_ORDER[STAGE_ORDER.index(stage) + 1:]
    paths = {s.value: s.value for s in later}
    paths[CLEANUP] = CLEANUP
    return paths


def _failure(error: OrchestratorError, stage: Stage) -> dict[str, Any]:
    logger.error(f"{stage.value}: {error.kind.value}: {error.message}")
    return {
        "current_stage": stage.value,
        "failure": error.kind,
        "status": error.status,
        "message": error.message,
    }


class Orchestrator:
    """Runs the full stage sequence for one (environment, action, region)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        resolver: Optional[EnvironmentResolver] = None,
        artifacts: Optional[PlanArtifactManager] = None,
        runner: Optional[StageRunner] = None,
        approval_channel: Optional[ApprovalChannel] = None,
        checkout: Optional[CheckoutCollaborator] = None,
        credentials: Optional[CredentialProvider] = None,
        notifier: Optional[Notifier] = None,
        archive: Optional[RunArchive] = None,
        commands: Optional[ToolCommands] = None,
        policy: Optional[StagePolicy] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.resolver = resolver or get_resolver(s.environments_file)
        self.artifacts = artifacts or PlanArtifactManager(s.plan_dir, s.plan_prefix, s.plan_extension)
        self.runner = runner or StageRunner(default_timeout_seconds=s.stage_timeout_seconds)
        self.gate = ApprovalGate(approval_channel or _default_channel(s))
        self.checkout = checkout or _default_checkout(s, self.runner)
        self.credentials = credentials or get_credential_provider(s)
        self.notifier = notifier or _default_notifier(s)
        self.archive = archive or _default_archive(s, self.artifacts)
        self.commands = commands or ToolCommands.from_settings(s)
        self.policy = policy or StagePolicy.from_settings(s.escalated_actions)

        self._graph = None
        self._cancel_requested = threading.Event()
        self._cancel_waiter: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.last_report: Optional[RunReport] = None

    @property
    def graph(self):
        """Lazy-load the compiled graph."""
        if self._graph is None:
            self._graph = self._build_graph()
        return self._graph

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def arun(
        self,
        environment: str,
        action: str,
        region: Optional[str] = None,
        timestamp: Optional[int] = None,
        handle_signals: bool = False,
    ) -> RunReport:
        """Execute one run and return its terminal report.

        With ``handle_signals``, SIGINT and SIGTERM cancel the run
        cooperatively so cleanup still writes the run record. If the calling
        task itself is cancelled, the run is cancelled the same way and
        cleanup finishes before the cancellation propagates; the report is
        then available as ``last_report``.
        """
        self.last_report = None
        self._cancel_requested.clear()
        self._loop = asyncio.get_running_loop()
        self._cancel_waiter = asyncio.Event()

        try:
            env_config = self.resolver.resolve(environment)
        except UnknownEnvironment as e:
            logger.error(e.message)
            self.last_report = RunReport(status=RunStatus.FAILED, failure=e.kind, message=e.message)
            return self.last_report

        request_fields: dict[str, Any] = {
            "environment": env_config.name,
            "action": Action(action),
            "region": region or env_config.region,
        }
        if timestamp is not None:
            request_fields["timestamp"] = timestamp
        request = RunRequest(**request_fields)

        context = RunContext(
            request=request,
            environment=env_config,
            plan=self.policy.plan_for(request.action, env_config),
        )
        logger.info(
            f"Run {request.run_id}: {request.action.value} on {request.environment.value} "
            f"({request.region}); stages: {', '.join(s.value for s in context.plan.stages)}"
        )

        installed = self._install_signal_handlers() if handle_signals else []
        run_task = asyncio.ensure_future(self.graph.ainvoke(create_initial_state(context)))
        try:
            final_state = await asyncio.shield(run_task)
        except asyncio.CancelledError:
            if run_task.done():
                raise
            logger.warning(f"Run {request.run_id} interrupted; cancelling and cleaning up")
            self.cancel()
            final_state = await run_task
            self.last_report = final_state["report"]
            raise
        finally:
            for sig in installed:
                self._loop.remove_signal_handler(sig)

        self.last_report = final_state["report"]
        return self.last_report

    def run(
        self,
        environment: str,
        action: str,
        region: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> RunReport:
        """Synchronous wrapper around :meth:`arun`."""
        return asyncio.run(
            self.arun(environment, action, region=region, timestamp=timestamp, handle_signals=True)
        )

    def cancel(self) -> None:
        """Abort the run before its next stage. Safe to call from any thread.

        A running stage process is asked to terminate; a pending approval
        gate is abandoned.
        """
        logger.warning("Cancellation requested")
        self._cancel_requested.set()
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.runner.terminate_current)
        if self._cancel_waiter is not None:
            loop.call_soon_threadsafe(self._cancel_waiter.set)

    def _install_signal_handlers(self) -> list[int]:
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self.cancel)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # not the main thread, or no signal support on this platform
                logger.debug(f"Cannot handle {sig.name} for this run: {e}")
                continue
            installed.append(sig)
        return installed

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def get_graph_visualization(self) -> str:
        """Get a Mermaid diagram of the graph."""
        return self.graph.get_graph().draw_mermaid()

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _cancelled(self, stage: Stage) -> Optional[dict[str, Any]]:
        if self._cancel_requested.is_set():
            return _failure(RunCancelled(f"Run cancelled before {stage.value}"), stage)
        return None

    def _stage_credentials(self, context: RunContext, stage: Stage) -> Mapping[str, str]:
        if stage not in CREDENTIALED_STAGES or not context.credential_secrets:
            return {}
        return self.credentials.fetch(context.credential_secrets)

    async def _run_stage(
        self,
        context: RunContext,
        stage: Stage,
        command: Command,
        workdir: Optional[str],
        name: Optional[str] = None,
        fail_fast: bool = True,
    ) -> StageResult:
        """Run one stage command, honouring the plan's explicit retry count."""
        attempts = context.plan.attempts_for(stage)
        result: Optional[StageResult] = None
        for attempt in range(1, attempts + 1):
            options = StageOptions(
                cwd=Path(workdir) if workdir else None,
                credentials=self._stage_credentials(context, stage),
                fail_fast=fail_fast,
                timeout_seconds=self.settings.stage_timeout_seconds,
            )
            result = await self.runner.run(name or stage.value, command, options)
            if result.succeeded or attempt == attempts or self._cancel_requested.is_set():
                break
            logger.warning(f"{stage.value}: attempt {attempt}/{attempts} failed, retrying")
        return result.model_copy(update={"attempts": attempt})

    def _stage_outcome(
        self,
        stage: Stage,
        results: list[StageResult],
        error_cls: type[OrchestratorError],
        halted: bool,
    ) -> dict[str, Any]:
        update: dict[str, Any] = {"current_stage": stage.value, "stage_results": results}
        if self._cancel_requested.is_set():
            update.update(_failure(RunCancelled(f"Run cancelled during {stage.value}"), stage))
        elif halted:
            failed = results[-1]
            update.update(_failure(
                error_cls(f"{failed.stage_name} exited {failed.exit_code}", result=failed),
                stage,
            ))
        return update

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _build_graph(self):
        """Build the StateGraph for a run.

        Returns:
            Compiled LangGraph workflow
        """
        settings = self.settings
        graph = StateGraph(RunState)

        async def checkout_node(state: RunState) -> dict[str, Any]:
            """Populate a working directory with the definitions."""
            cancelled = self._cancelled(Stage.CHECKOUT)
            if cancelled:
                return cancelled
            context = state["context"]
            request = context.request
            source = CheckoutSource(
                repository=settings.repository_url or "",
                ref=settings.repository_ref,
                credential_ref=settings.repository_credential_secret,
            )
            destination = settings.workspace_dir / f"{request.environment.value}-{request.run_id}"
            started = time.monotonic()
            try:
                credentials = (
                    self.credentials.fetch([source.credential_ref]) if source.credential_ref else {}
                )
                path = await self.checkout.checkout(source, destination, credentials)
            except (CheckoutFailed, CredentialError, OSError) as e:
                error = e if isinstance(e, CheckoutFailed) else CheckoutFailed(str(e))
                result = error.result or StageResult(
                    stage_name=Stage.CHECKOUT.value,
                    status=StageStatus.FAILURE,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                return {"stage_results": [result], **_failure(error, Stage.CHECKOUT)}

            workdir = Path(path) / settings.definitions_subdir if settings.definitions_subdir else Path(path)
            result = StageResult(
                stage_name=Stage.CHECKOUT.value,
                status=StageStatus.SUCCESS,
                exit_code=0,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            if not workdir.is_dir():
                return {
                    "stage_results": [result],
                    **_failure(CheckoutFailed(f"Definitions directory not found: {workdir}"), Stage.CHECKOUT),
                }
            logger.info(f"Definitions checked out at {workdir}")
            return {"current_stage": Stage.CHECKOUT.value, "workdir": str(workdir), "stage_results": [result]}

        async def initialize_node(state: RunState) -> dict[str, Any]:
            cancelled = self._cancelled(Stage.INITIALIZE)
            if cancelled:
                return cancelled
            context = state["context"]
            try:
                result = await self._run_stage(
                    context,
                    Stage.INITIALIZE,
                    self.commands.init(context.environment.backend_config_path),
                    state["workdir"],
                )
            except CredentialError as e:
                return _failure(InitFailed(f"Credentials unavailable: {e}"), Stage.INITIALIZE)
            return self._stage_outcome(Stage.INITIALIZE, [result], InitFailed, not result.succeeded)

        async def validate_node(state: RunState) -> dict[str, Any]:
            cancelled = self._cancelled(Stage.VALIDATE)
            if cancelled:
                return cancelled
            context = state["context"]
            results: list[StageResult] = []
            if settings.format_check:
                fmt = await self._run_stage(
                    context,
                    Stage.VALIDATE,
                    self.commands.format_check(),
                    state["workdir"],
                    name="validate:format",
                    fail_fast=settings.format_check_strict,
                )
                results.append(fmt)
                if not fmt.succeeded and settings.format_check_strict:
                    return self._stage_outcome(Stage.VALIDATE, results, ValidationFailed, True)
                if not fmt.succeeded:
                    logger.warning("validate:format reported unformatted files; continuing")
                if self._cancel_requested.is_set():
                    return self._stage_outcome(Stage.VALIDATE, results, ValidationFailed, False)
            result = await self._run_stage(
                context, Stage.VALIDATE, self.commands.validate(), state["workdir"]
            )
            results.append(result)
            return self._stage_outcome(Stage.VALIDATE, results, ValidationFailed, not result.succeeded)

        async def plan_node(state: RunState) -> dict[str, Any]:
            """Compute the change plan into a fresh, recorded artifact."""
            cancelled = self._cancelled(Stage.PLAN)
            if cancelled:
                return cancelled
            context = state["context"]
            request = context.request
            artifact_path = self.artifacts.name(request.environment, request.action, request.timestamp)
            artifact_path.parent.mkdir(parents=True, exist_ok=True)
            artifact_path = artifact_path.resolve()

            try:
                result = await self._run_stage(
                    context,
                    Stage.PLAN,
                    self.commands.plan(
                        artifact_path,
                        region=request.region,
                        var_file=context.environment.variable_file_path,
                        destroy=request.action == Action.DESTROY,
                    ),
                    state["workdir"],
                )
            except CredentialError as e:
                return _failure(PlanFailed(f"Credentials unavailable: {e}"), Stage.PLAN)

            update = self._stage_outcome(Stage.PLAN, [result], PlanFailed, not result.succeeded)
            if update.get("failure"):
                return update
            if not artifact_path.is_file():
                update.update(_failure(
                    PlanFailed(f"Plan exited 0 but wrote no artifact at {artifact_path}"), Stage.PLAN
                ))
                return update

            update["plan_artifact"] = self.artifacts.record(artifact_path, request.run_id, request.action)
            return update

        async def test_node(state: RunState) -> dict[str, Any]:
            cancelled = self._cancelled(Stage.TEST)
            if cancelled:
                return cancelled
            context = state["context"]
            try:
                result = await self._run_stage(context, Stage.TEST, self.commands.test(), state["workdir"])
            except CredentialError as e:
                return _failure(TestFailed(f"Credentials unavailable: {e}"), Stage.TEST)
            return self._stage_outcome(Stage.TEST, [result], TestFailed, not result.succeeded)

        async def approval_node(state: RunState) -> dict[str, Any]:
            """Open one gate, or two in sequence for escalated environments."""
            cancelled = self._cancelled(Stage.APPROVAL)
            if cancelled:
                return cancelled
            context = state["context"]
            messages = self._approval_messages(context, state.get("plan_artifact"))
            send_safely(
                self.notifier,
                f"[infra-orchestrator] approval needed: {context.label}",
                messages[0],
            )

            decisions = await self._await_approvals(messages)
            if decisions is None:
                return _failure(RunCancelled("Run cancelled while awaiting approval"), Stage.APPROVAL)

            update: dict[str, Any] = {"current_stage": Stage.APPROVAL.value, "approvals": decisions}
            last = decisions[-1]
            if not last.responded_within_timeout:
                update.update(_failure(
                    ApprovalTimeout(f"Approval gate '{last.gate}' timed out"), Stage.APPROVAL
                ))
            elif not last.granted:
                update.update(_failure(
                    ApprovalDenied(f"Approval gate '{last.gate}' denied by {last.approver or 'unknown'}"),
                    Stage.APPROVAL,
                ))
            elif len(decisions) != context.plan.approval_gates:
                update.update(_failure(
                    ApprovalDenied(
                        f"Expected {context.plan.approval_gates} approvals, got {len(decisions)}"
                    ),
                    Stage.APPROVAL,
                ))
            return update

        async def execute_node(state: RunState) -> dict[str, Any]:
            """Apply the recorded plan artifact. The only mutating stage."""
            cancelled = self._cancelled(Stage.EXECUTE)
            if cancelled:
                return cancelled
            context = state["context"]
            refusal = self._execute_precondition(context, state)
            if refusal:
                return _failure(ExecuteFailed(f"Refusing to execute: {refusal}"), Stage.EXECUTE)

            artifact = state["plan_artifact"]
            logger.warning(
                f"Executing {context.request.action.value} on {context.request.environment.value} "
                f"from {Path(artifact.path).name}"
            )
            try:
                result = await self._run_stage(
                    context, Stage.EXECUTE, self.commands.apply(Path(artifact.path)), state["workdir"]
                )
            except CredentialError as e:
                return _failure(ExecuteFailed(f"Credentials unavailable: {e}"), Stage.EXECUTE)
            finally:
                # The saved plan is consumed at most once
                self.artifacts.release()

            started = result.exit_code not in (EXIT_NOT_FOUND, EXIT_NOT_EXECUTABLE)
            update = {
                "current_stage": Stage.EXECUTE.value,
                "stage_results": [result],
                "mutation_attempted": started,
                "changes_applied": result.succeeded,
            }
            if not result.succeeded and self._cancel_requested.is_set():
                update.update(_failure(
                    RunCancelled(
                        f"Run cancelled during {context.request.action.value}; "
                        "infrastructure may be partially changed",
                        result=result,
                    ),
                    Stage.EXECUTE,
                ))
            elif not result.succeeded:
                consequence = (
                    "infrastructure may be partially changed" if started
                    else "the tool never started; nothing was changed"
                )
                update.update(_failure(
                    ExecuteFailed(
                        f"{context.request.action.value} exited {result.exit_code}; {consequence}",
                        result=result,
                    ),
                    Stage.EXECUTE,
                ))
            return update

        async def cleanup_node(state: RunState) -> dict[str, Any]:
            """Best-effort housekeeping and the terminal report."""
            context = state["context"]
            env = context.request.environment
            try:
                self.artifacts.prune(env, keep=settings.plan_retention)
            except Exception as e:
                logger.warning(f"Plan artifact pruning for {env.value} failed: {e}")
            if self.artifacts.active is not None and self.artifacts.active.run_id == context.request.run_id:
                self.artifacts.release()

            report = self._build_report(state)
            try:
                self.archive.archive(report)
            except Exception as e:
                logger.warning(f"Run record archive failed: {e}")
            send_safely(self.notifier, report_subject(report), report.summary())

            log = logger.info if report.status == RunStatus.COMPLETED else logger.error
            log(report.summary())
            return {"report": report}

        graph.add_node(Stage.CHECKOUT.value, checkout_node)
        graph.add_node(Stage.INITIALIZE.value, initialize_node)
        graph.add_node(Stage.VALIDATE.value, validate_node)
        graph.add_node(Stage.PLAN.value, plan_node)
        graph.add_node(Stage.TEST.value, test_node)
        graph.add_node(Stage.APPROVAL.value, approval_node)
        graph.add_node(Stage.EXECUTE.value, execute_node)
        graph.add_node(CLEANUP, cleanup_node)

        graph.set_entry_point(Stage.CHECKOUT.value)

        for stage in STAGE_ORDER:
            graph.add_conditional_edges(stage.value, route_after(stage), _path_map(stage))

        graph.add_edge(CLEANUP, END)

        return graph.compile()

    # ------------------------------------------------------------------
    # Approval and execute guards
    # ------------------------------------------------------------------

    def _approval_messages(self, context: RunContext, artifact) -> list[str]:
        request = context.request
        plan_name = Path(artifact.path).name if artifact else "(no plan)"
        messages = [
            f"{request.action.value.upper()} {request.environment.value} in {request.region} "
            f"using plan {plan_name} (run {request.run_id})."
        ]
        if context.plan.approval_gates > 1:
            messages.append(
                f"SECOND CONFIRMATION: {request.action.value.upper()} on "
                f"{request.environment.value.upper()} ({request.region}). "
                f"This cannot be undone. Plan {plan_name}."
            )
        return messages

    async def _await_approvals(self, messages: list[str]) -> Optional[list[ApprovalDecision]]:
        """Run the gate sequence, abandoning it if the run is cancelled."""
        gate_task = asyncio.ensure_future(
            self.gate.open_sequence(messages, self.settings.approval_timeout_minutes)
        )
        cancel_task = asyncio.ensure_future(self._cancel_waiter.wait())
        try:
            await asyncio.wait({gate_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (gate_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(gate_task, cancel_task, return_exceptions=True)

        if gate_task.cancelled() or self._cancel_requested.is_set():
            return None
        return gate_task.result()

    def _execute_precondition(self, context: RunContext, state: RunState) -> Optional[str]:
        """Why execute must not run, or None if every guard holds."""
        request: RunRequest = context.request
        if not request.action.is_mutating:
            return f"action '{request.action.value}' does not mutate"

        artifact = state.get("plan_artifact")
        active = self.artifacts.active
        if artifact is None or active is None:
            return "no plan artifact recorded"
        if artifact.run_id != request.run_id or active.path != artifact.path:
            return f"plan artifact {artifact.path} does not belong to run {request.run_id}"
        if not Path(artifact.path).is_file():
            return f"plan artifact {artifact.path} is missing"

        approvals = state.get("approvals") or []
        if len(approvals) != context.plan.approval_gates or not all(d.granted for d in approvals):
            return "required approvals were not all granted"
        return None

    def _build_report(self, state: RunState) -> RunReport:
        context = state["context"]
        request = context.request

        executed = list(state.get("stage_results") or [])
        ordered: list[StageResult] = []
        for stage in STAGE_ORDER:
            matching = [r for r in executed if r.stage_name.split(":")[0] == stage.value]
            if matching:
                ordered.extend(matching)
            elif stage == Stage.APPROVAL and state.get("approvals"):
                continue
            else:
                ordered.append(StageResult.skipped(stage.value))

        failure = state.get("failure")
        status = state.get("status") or RunStatus.FAILED
        message = state.get("message") or ""
        if failure is None:
            if request.action.is_mutating and not state.get("changes_applied"):
                failure = ExecuteFailed.kind
                status = RunStatus.FAILED
                message = "Execute did not run"
            else:
                status = RunStatus.COMPLETED
                message = (
                    f"{request.action.value} completed"
                    if request.action.is_mutating
                    else "Plan computed; no changes made"
                )

        return RunReport(
            request=request,
            status=status,
            failure=failure,
            message=message,
            stage_results=ordered,
            approvals=list(state.get("approvals") or []),
            plan_artifact=state.get("plan_artifact"),
            changes_applied=bool(state.get("changes_applied")),
            mutation_attempted=bool(state.get("mutation_attempted")),
        )


def _default_channel(settings: Settings) -> ApprovalChannel:
    if settings.approval_channel == ApprovalChannelType.CONSOLE:
        return ConsoleApprovalChannel()
    return DenyAllApprovalChannel()


def _default_checkout(settings: Settings, runner: StageRunner) -> CheckoutCollaborator:
    if settings.source_dir:
        return LocalCheckout(settings.source_dir)
    return GitCheckout(runner)


def _default_notifier(settings: Settings) -> Notifier:
    if settings.notify_topic_arn:
        return SnsNotifier(settings.notify_topic_arn, region=settings.aws_region)
    return LogNotifier()


def _default_archive(settings: Settings, artifacts: PlanArtifactManager) -> RunArchive:
    if settings.archive_bucket:
        return S3RunArchive(artifacts, settings.archive_bucket, region=settings.aws_region)
    return LocalRunArchive(artifacts)
