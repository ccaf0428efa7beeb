"""
Rescue mode monitor: enable/disable rescue mode and follow the transition.
"""

from __future__ import annotations

from typing import Any, Optional

from .client import BuildStatus, PanelClient, RescueStatus, lookup_server_ip
from .state import Credentials, PollerState
from .status import CanonicalStatus
from .store import TaskStore
from .task import TaskMessages, TaskPoller


ENABLE = "enable"
DISABLE = "disable"


def rescue_to_build_status(rescue: RescueStatus, target: str) -> BuildStatus:
    """Express a rescue status report in build-status terms for ``target``."""
    if not rescue.is_supported:
        return BuildStatus(is_error=True, message="Rescue mode is not supported for this server.")
    if rescue.error:
        return BuildStatus(is_error=True, message=rescue.error)
    if rescue.is_enabling:
        return BuildStatus(is_building=True, phase="provisioning rescue environment")
    if rescue.is_disabling:
        return BuildStatus(is_building=True, phase="rebooting from primary disk")
    if rescue.is_active == (target == ENABLE):
        return BuildStatus(is_complete=True)
    return BuildStatus()


class RescueMonitor(TaskPoller):
    """Tracks a rescue mode toggle of one server.

    The task id records the direction of the toggle so a resumed monitor
    knows which end state to wait for.
    """

    NAMESPACE = "rescueTask"
    MESSAGES = TaskMessages(
        started="Rescue mode change requested",
        complete="Rescue mode change complete",
        failed="Rescue mode change failed",
        error="Rescue mode change encountered an error.",
    )

    def __init__(self, server_id: str, client: PanelClient, storage: Any, **poll_options):
        self.client = client
        super().__init__(
            server_id,
            self._fetch_rescue_status,
            TaskStore(storage, self.NAMESPACE),
            messages=self.MESSAGES,
            **poll_options,
        )

    @property
    def target(self) -> str:
        return DISABLE if self.state.task_id == DISABLE else ENABLE

    async def _fetch_rescue_status(self, server_id: str) -> BuildStatus:
        rescue = await self.client.get_rescue_status(server_id)
        return rescue_to_build_status(rescue, self.target)

    async def refresh(self) -> RescueStatus:
        """Current rescue status straight from the panel."""
        return await self.client.get_rescue_status(self.resource_id)

    async def enable(self) -> PollerState:
        """Ask the panel to boot the rescue system and follow it.

        API errors propagate to the caller.
        """
        result = await self.client.enable_rescue(self.resource_id)
        pending = None
        creds = result.get("credentials") if isinstance(result, dict) else None
        if isinstance(creds, dict) and creds.get("password"):
            server_ip = await lookup_server_ip(self.client, self.resource_id)
            pending = Credentials(
                server_ip=server_ip,
                username=str(creds.get("username") or "root"),
                password=str(creds["password"]),
            )
        self.start(ENABLE, message="Rescue mode requested")
        self._pending_credentials = pending
        return self.state

    async def disable(self) -> PollerState:
        """Leave rescue mode. Credentials are dropped before the request is sent."""
        self._pending_credentials = None
        self.state.credentials = None
        await self.client.disable_rescue(self.resource_id)
        self.start(DISABLE, message="Rescue mode disable requested")
        return self.state

    def clear_error(self) -> None:
        """Dismiss a failed toggle."""
        if self.state.status == CanonicalStatus.FAILED:
            self.reset()

    def on_terminal(self, state: PollerState) -> None:
        if state.status == CanonicalStatus.COMPLETE and self.target == ENABLE:
            state.credentials = self._pending_credentials
        self._pending_credentials = None

    def start(self, task_id: Optional[str] = None, message: Optional[str] = None) -> PollerState:
        self._pending_credentials = None
        return super().start(task_id, message)

    def reset(self) -> None:
        self._pending_credentials = None
        super().reset()
