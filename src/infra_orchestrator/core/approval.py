"""Time-bounded human approval gates.

A gate presents an ``ApprovalRequest`` on an ``ApprovalChannel`` and suspends
the run on the request's future until a human responds or the deadline
passes. Channels may resolve requests from any thread; resolution is handed
back to the event loop with ``call_soon_threadsafe``.

Timing out is never the same as a denial: the decision records
``responded_within_timeout=False`` so the run can end as ApprovalTimeout.
"""

import asyncio
import getpass
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from infra_orchestrator.core.contracts import ApprovalDecision

logger = logging.getLogger(__name__)


class ApprovalRequest:
    """One pending confirmation with a deadline."""

    def __init__(
        self,
        gate: str,
        message: str,
        timeout_seconds: float,
        loop: asyncio.AbstractEventLoop,
    ):
        self.request_id = uuid.uuid4().hex[:8]
        self.gate = gate
        self.message = message
        self.timeout_seconds = timeout_seconds
        self.deadline = datetime.now(timezone.utc) + timedelta(seconds=timeout_seconds)
        self._loop = loop
        self._future: asyncio.Future = loop.create_future()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def future(self) -> asyncio.Future:
        return self._future

    @property
    def pending(self) -> bool:
        return not self._closed

    def respond(self, granted: bool, approver: Optional[str] = None) -> bool:
        """Record a human decision. Safe to call from any thread.

        Returns:
            False if the request was already answered or has expired.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True
        self._loop.call_soon_threadsafe(self._resolve, bool(granted), approver)
        return True

    def expire(self) -> None:
        with self._lock:
            self._closed = True

    def _resolve(self, granted: bool, approver: Optional[str]) -> None:
        if not self._future.done():
            self._future.set_result((granted, approver))


class ApprovalChannel(Protocol):
    """Delivers approval requests to a human."""

    def present(self, request: ApprovalRequest) -> None:
        ...

    def withdraw(self, request: ApprovalRequest) -> None:
        ...


class ApprovalGate:
    """Blocks a run until an approval request is answered or times out."""

    def __init__(self, channel: ApprovalChannel):
        self._channel = channel

    async def open(self, message: str, timeout_minutes: float, gate: str = "approval") -> ApprovalDecision:
        """Present ``message`` and wait at most ``timeout_minutes`` for an answer."""
        timeout_seconds = timeout_minutes * 60
        request = ApprovalRequest(gate, message, timeout_seconds, asyncio.get_running_loop())
        logger.info(f"Approval gate '{gate}' opened ({timeout_minutes:g} min): request {request.request_id}")

        try:
            self._channel.present(request)
        except Exception as e:
            request.expire()
            logger.error(f"Approval gate '{gate}': channel failed to present request: {e}")
            return ApprovalDecision(gate=gate, granted=False, responded_within_timeout=True)

        try:
            granted, approver = await asyncio.wait_for(request.future, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            request.expire()
            logger.warning(f"Approval gate '{gate}' timed out after {timeout_minutes:g} min")
            return ApprovalDecision(gate=gate, granted=False, responded_within_timeout=False)
        finally:
            self._channel.withdraw(request)

        outcome = "granted" if granted else "denied"
        logger.info(f"Approval gate '{gate}' {outcome} by {approver or 'unknown'}")
        return ApprovalDecision(
            gate=gate,
            granted=granted,
            responded_within_timeout=True,
            approver=approver,
        )

    async def open_sequence(self, messages: Sequence[str], timeout_minutes: float) -> list[ApprovalDecision]:
        """Open escalating gates in order, each with its own timeout.

        Stops at the first gate that is not granted, so a later gate never
        opens after an earlier denial or timeout.
        """
        decisions: list[ApprovalDecision] = []
        for index, message in enumerate(messages, start=1):
            gate = "approval" if index == 1 else f"approval-escalation-{index - 1}"
            decision = await self.open(message, timeout_minutes, gate=gate)
            decisions.append(decision)
            if not decision.granted:
                break
        return decisions


class InMemoryApprovalChannel:
    """Keeps requests in memory for programmatic responses.

    ``responder``, when given, is called with every presented request and
    may answer it immediately, later from another thread, or never.
    """

    def __init__(self, responder: Optional[Callable[[ApprovalRequest], None]] = None):
        self._responder = responder
        self._pending: dict[str, ApprovalRequest] = {}
        self.presented: list[ApprovalRequest] = []

    def present(self, request: ApprovalRequest) -> None:
        self._pending[request.request_id] = request
        self.presented.append(request)
        if self._responder is not None:
            self._responder(request)

    def withdraw(self, request: ApprovalRequest) -> None:
        self._pending.pop(request.request_id, None)

    def pending(self) -> list[ApprovalRequest]:
        return list(self._pending.values())

    def respond(self, request_id: str, granted: bool, approver: Optional[str] = None) -> bool:
        request = self._pending.get(request_id)
        if request is None:
            return False
        return request.respond(granted, approver)


class DenyAllApprovalChannel:
    """Non-interactive channel: every request is denied immediately."""

    def present(self, request: ApprovalRequest) -> None:
        logger.warning(f"No interactive approval channel; denying '{request.gate}'")
        request.respond(False, approver="non-interactive")

    def withdraw(self, request: ApprovalRequest) -> None:
        pass


class ConsoleApprovalChannel:
    """Prompts on the terminal from a daemon thread."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    def present(self, request: ApprovalRequest) -> None:
        deadline = request.deadline.astimezone().strftime("%H:%M:%S")
        self._console.print(Panel.fit(
            f"[bold yellow]{request.message}[/bold yellow]\n\n"
            f"Respond before [bold]{deadline}[/bold] or the run stops.",
            title=f"[bold]Approval required: {request.gate}[/bold]",
            border_style="yellow",
        ))
        thread = threading.Thread(
            target=self._ask,
            args=(request,),
            name=f"approval-{request.request_id}",
            daemon=True,
        )
        thread.start()

    def withdraw(self, request: ApprovalRequest) -> None:
        if request.future.done() and not request.future.cancelled():
            return
        self._console.print(f"\n[red]Approval window for '{request.gate}' closed.[/red]")

    def _ask(self, request: ApprovalRequest) -> None:
        try:
            approved = Confirm.ask("[bold]Approve?[/bold]", default=False, console=self._console)
        except (EOFError, KeyboardInterrupt):
            approved = False
        if not request.respond(approved, approver=getpass.getuser()):
            self._console.print("[dim]Response ignored: the request is no longer pending.[/dim]")
