"""
Remote task polling: adaptive scheduler, activation reconciliation and the
reinstall monitor built on top of them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .client import BuildStatus, PanelClient, lookup_server_ip
from .state import Credentials, PollerState, TimelineEvent
from .status import BASELINE_PERCENT, CanonicalStatus, estimate_percent, normalize_status
from .store import TaskStore

logger = logging.getLogger(__name__)

FetchStatus = Callable[[str], Awaitable[BuildStatus]]
Listener = Callable[[PollerState], Any]


class PollMode(str, Enum):
    STOPPED = "not-polling"
    FAST = "polling-fast"
    SLOW = "polling-slow"


@dataclass(frozen=True)
class TaskMessages:
    """Human wording used for timeline entries and errors."""

    started: str = "Task started"
    complete: str = "Task complete"
    failed: str = "Task failed"
    error: str = "The remote operation encountered an error."


@dataclass
class PollSession:
    """One timer chain. Superseded sessions must not touch poller state."""

    generation: int
    fast_ticks: int
    tick_count: int = 0
    task: Optional[asyncio.Task] = None


class TaskPoller:
    """Tracks one remote task for one resource by polling its status.

    Ticks run at ``fast_interval`` for the first ``fast_ticks`` ticks of a
    chain and at ``slow_interval`` afterwards. Every chain carries a
    generation number; a tick whose fetch resolves after its chain was
    replaced or cancelled is dropped.
    """

    def __init__(
        self,
        resource_id: str,
        fetch_status: FetchStatus,
        store: TaskStore,
        messages: Optional[TaskMessages] = None,
        fast_interval: float = 2.0,
        slow_interval: float = 5.0,
        fast_ticks: int = 15,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.resource_id = resource_id
        self.fetch_status = fetch_status
        self.store = store
        self.messages = messages or TaskMessages()
        self.fast_interval = fast_interval
        self.slow_interval = slow_interval
        self.fast_ticks = fast_ticks
        self._sleep = sleep
        self._clock = clock
        self._generation = 0
        self._session: Optional[PollSession] = None
        self._reconciled = False
        self._listeners: List[Listener] = []
        self._pending_credentials: Optional[Credentials] = None

        self.state = PollerState.from_snapshot(store.load(resource_id))
        if self.state.is_active and not self.state.timeline:
            self.state.record(self.state.status, self._now())

    def _now(self) -> int:
        return int(self._clock() * 1000)

    @property
    def mode(self) -> PollMode:
        session = self._session
        if session is None:
            return PollMode.STOPPED
        if session.tick_count < session.fast_ticks:
            return PollMode.FAST
        return PollMode.SLOW

    @property
    def is_polling(self) -> bool:
        return self._session is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the state after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("State listener failed for %s", self.resource_id)

    # Chain management

    def _launch(self, fast_ticks: int) -> None:
        self._generation += 1
        session = PollSession(generation=self._generation, fast_ticks=fast_ticks)
        session.task = asyncio.get_running_loop().create_task(self._run(session))
        self._session = session
        logger.debug("Polling %s (generation %d)", self.resource_id, session.generation)

    def _stop(self) -> None:
        self._generation += 1
        session, self._session = self._session, None
        if session is None or session.task is None or session.task.done():
            return
        # A chain stopping itself from inside a tick just falls out of its loop.
        if session.task is not asyncio.current_task():
            session.task.cancel()

    def _is_current(self, session: PollSession) -> bool:
        return session.generation == self._generation and self._session is session

    async def _run(self, session: PollSession) -> None:
        try:
            while self._is_current(session):
                if session.tick_count < session.fast_ticks:
                    delay = self.fast_interval
                else:
                    delay = self.slow_interval
                await self._sleep(delay)
                if not self._is_current(session):
                    return
                session.tick_count += 1
                await self._tick(session)
        finally:
            if self._session is session:
                self._session = None

    async def _tick(self, session: PollSession) -> None:
        try:
            remote = await self.fetch_status(self.resource_id)
        except Exception as e:
            logger.warning("Failed to poll status for %s: %s", self.resource_id, e)
            return
        if not self._is_current(session):
            logger.debug("Discarding stale poll result for %s", self.resource_id)
            return
        self.apply(remote)

    async def wait(self) -> PollerState:
        """Wait until no chain is running any more and return the final state."""
        while self._session is not None and self._session.task is not None:
            await asyncio.wait({self._session.task})
        return self.state

    # State transitions

    def apply(self, remote: BuildStatus) -> None:
        """Fold one remote status report into the tracked state."""
        if not self.state.is_running:
            return
        if remote.is_error:
            self._fail(remote.message)
            return
        if remote.is_complete:
            self._complete()
            return

        status = self.state.status
        if remote.is_building:
            phase_status = normalize_status(remote.phase)
            if phase_status == CanonicalStatus.COMPLETE:
                self._complete()
                return
            if phase_status == CanonicalStatus.FAILED:
                self._fail(remote.message)
                return
            if phase_status != CanonicalStatus.IDLE:
                status = phase_status

        self.state.record(status, self._now())
        self.state.status = status
        self.state.percent = estimate_percent(status, remote.percent, previous=self.state.percent)
        self.store.save(self.resource_id, self.state)
        self._notify()

    def _complete(self) -> None:
        self.state.status = CanonicalStatus.COMPLETE
        self.state.percent = 100
        self.state.error = None
        self.state.record(CanonicalStatus.COMPLETE, self._now(), self.messages.complete)
        self._finish()

    def _fail(self, message: Optional[str] = None) -> None:
        self.state.status = CanonicalStatus.FAILED
        self.state.error = message or self.messages.error
        self.state.record(CanonicalStatus.FAILED, self._now(), self.messages.failed)
        self._finish()

    def _finish(self) -> None:
        logger.info("Task for %s finished: %s", self.resource_id, self.state.status.value)
        self._stop()
        self.store.clear(self.resource_id)
        self.on_terminal(self.state)
        self._notify()

    def on_terminal(self, state: PollerState) -> None:
        """Hook for subclasses; runs once when a task reaches a terminal status."""

    # Actions

    def start(self, task_id: Optional[str] = None, message: Optional[str] = None) -> PollerState:
        """Begin tracking a new task. Must be called from within the event loop."""
        self._stop()
        now = self._now()
        self.state = PollerState(
            is_active=True,
            task_id=task_id or None,
            status=CanonicalStatus.QUEUED,
            percent=BASELINE_PERCENT[CanonicalStatus.QUEUED],
            timeline=[TimelineEvent(CanonicalStatus.QUEUED, now, message or self.messages.started)],
            last_recorded=CanonicalStatus.QUEUED,
        )
        self.store.save(self.resource_id, self.state)
        self._launch(fast_ticks=self.fast_ticks)
        self._notify()
        return self.state

    def reset(self) -> None:
        """Stop tracking and forget the task, in memory and in the store."""
        self._stop()
        self.store.clear(self.resource_id)
        self.state = PollerState.idle()
        self._notify()

    def deactivate(self) -> None:
        """Stop polling but keep the persisted state for a later resume."""
        self._stop()

    def release_credentials(self) -> Optional[Credentials]:
        """Hand credentials held for completion to a caller that detaches now.

        They are forgotten afterwards, so a later completion reveals nothing.
        """
        credentials, self._pending_credentials = self._pending_credentials, None
        return credentials

    async def reconcile(self) -> None:
        """Confirm locally tracked state against the remote side once."""
        if not self.state.is_running:
            return
        generation = self._generation
        try:
            remote = await self.fetch_status(self.resource_id)
        except Exception as e:
            logger.warning("Failed to verify task state for %s: %s", self.resource_id, e)
            return
        if generation != self._generation or not self.state.is_running:
            return

        if remote.is_complete:
            logger.info("Task for %s completed while detached", self.resource_id)
            self._complete()
        elif not remote.has_signal:
            logger.info("No remote task for %s; discarding stale local state", self.resource_id)
            self.reset()

    async def activate(self) -> PollerState:
        """Reconcile on first use, then resume polling if the task is still running."""
        if not self._reconciled:
            self._reconciled = True
            await self.reconcile()
        if self.state.is_running and self._session is None:
            # A resumed task already spent its fast window before the restart.
            self._launch(fast_ticks=0)
        return self.state


class ReinstallMonitor(TaskPoller):
    """Tracks an OS reinstall of one server."""

    NAMESPACE = "reinstallTask"
    MESSAGES = TaskMessages(
        started="Reinstall started",
        complete="Installation complete",
        failed="Installation failed",
        error="Server reinstallation encountered an error.",
    )

    def __init__(self, server_id: str, client: PanelClient, storage: Any, **poll_options):
        self.client = client
        super().__init__(
            server_id,
            client.get_build_status,
            TaskStore(storage, self.NAMESPACE),
            messages=self.MESSAGES,
            **poll_options,
        )

    async def begin(self, os_id: int, hostname: str) -> PollerState:
        """Request the reinstall and start tracking it.

        API errors propagate so the caller can report them immediately.
        """
        result = await self.client.reinstall_server(self.resource_id, os_id, hostname)
        if not isinstance(result, dict):
            result = {}
        data = result.get("data")
        if not isinstance(data, dict):
            data = {}
        password = data.get("generatedPassword")
        task_id = data.get("taskId") or result.get("taskId")

        pending = None
        if password:
            server_ip = await lookup_server_ip(self.client, self.resource_id)
            pending = Credentials(server_ip=server_ip, username="root", password=password)

        self.start(str(task_id) if task_id else None)
        self._pending_credentials = pending
        return self.state

    def on_terminal(self, state: PollerState) -> None:
        if state.status == CanonicalStatus.COMPLETE:
            state.credentials = self._pending_credentials
        self._pending_credentials = None

    def start(self, task_id: Optional[str] = None, message: Optional[str] = None) -> PollerState:
        self._pending_credentials = None
        return super().start(task_id, message)

    def reset(self) -> None:
        self._pending_credentials = None
        super().reset()
