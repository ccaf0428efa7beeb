"""Tests for the rescue mode monitor."""

import json

import pytest

from provision_cli.client import ApiError, RescueStatus
from provision_cli.rescue import DISABLE, ENABLE, RescueMonitor, rescue_to_build_status
from provision_cli.state import Credentials, PollerState
from provision_cli.status import CanonicalStatus, normalize_status

ENABLING = RescueStatus(is_enabling=True)
DISABLING = RescueStatus(is_active=True, is_disabling=True)
ACTIVE = RescueStatus(is_active=True)
INACTIVE = RescueStatus(is_active=False)


def make_monitor(panel_client, storage, clock) -> RescueMonitor:
    return RescueMonitor("srv-7", panel_client, storage, sleep=clock.sleep, clock=clock.time)


class TestRescueToBuildStatus:
    def test_transitions_are_building(self):
        enabling = rescue_to_build_status(ENABLING, ENABLE)
        assert enabling.is_building
        assert normalize_status(enabling.phase) == CanonicalStatus.PROVISIONING

        disabling = rescue_to_build_status(DISABLING, DISABLE)
        assert disabling.is_building
        assert normalize_status(disabling.phase) == CanonicalStatus.REBOOTING

    def test_target_reached_is_complete(self):
        assert rescue_to_build_status(ACTIVE, ENABLE).is_complete
        assert rescue_to_build_status(INACTIVE, DISABLE).is_complete

    def test_target_not_reached_has_no_signal(self):
        assert not rescue_to_build_status(INACTIVE, ENABLE).has_signal
        assert not rescue_to_build_status(ACTIVE, DISABLE).has_signal

    def test_errors(self):
        failed = rescue_to_build_status(RescueStatus(error="Hypervisor busy"), ENABLE)
        assert failed.is_error
        assert failed.message == "Hypervisor busy"

        unsupported = rescue_to_build_status(RescueStatus(is_supported=False), ENABLE)
        assert unsupported.is_error
        assert "not supported" in unsupported.message


class TestRescueMonitor:
    @pytest.mark.asyncio
    async def test_enable_reveals_credentials_after_completion(self, panel_client, storage, clock):
        panel_client.enable_rescue.return_value = {"credentials": {"username": "rescue", "password": "r3scue"}}
        panel_client.get_rescue_status.side_effect = [ENABLING, ENABLING, ACTIVE]
        monitor = make_monitor(panel_client, storage, clock)
        raw_snapshots = []
        monitor.subscribe(lambda state: raw_snapshots.append(storage.get_item("rescueTask:srv-7")))

        state = await monitor.enable()
        assert state.task_id == ENABLE
        assert state.credentials is None
        assert state.timeline[0].message == "Rescue mode requested"

        state = await monitor.wait()

        assert state.status == CanonicalStatus.COMPLETE
        assert state.credentials == Credentials("203.0.113.10", "rescue", "r3scue")
        assert [e.status for e in state.timeline] == [
            CanonicalStatus.QUEUED,
            CanonicalStatus.PROVISIONING,
            CanonicalStatus.COMPLETE,
        ]
        assert all("r3scue" not in (raw or "") for raw in raw_snapshots)
        assert storage.get_item("rescueTask:srv-7") is None

    @pytest.mark.asyncio
    async def test_enable_failure_propagates(self, panel_client, storage, clock):
        panel_client.enable_rescue.side_effect = ApiError(409, "Server is busy")
        monitor = make_monitor(panel_client, storage, clock)

        with pytest.raises(ApiError):
            await monitor.enable()

        assert monitor.state == PollerState.idle()

    @pytest.mark.asyncio
    async def test_disable_clears_credentials(self, panel_client, storage, clock):
        panel_client.enable_rescue.return_value = {"credentials": {"username": "root", "password": "pw"}}
        panel_client.get_rescue_status.side_effect = [ACTIVE, DISABLING, INACTIVE]
        monitor = make_monitor(panel_client, storage, clock)

        await monitor.enable()
        await monitor.wait()
        assert monitor.state.credentials is not None

        state = await monitor.disable()
        assert state.credentials is None
        assert state.task_id == DISABLE

        state = await monitor.wait()
        assert state.status == CanonicalStatus.COMPLETE
        assert state.credentials is None
        panel_client.disable_rescue.assert_awaited_once_with("srv-7")

    @pytest.mark.asyncio
    async def test_remote_error_fails_and_clear_error_resets(self, panel_client, storage, clock):
        panel_client.get_rescue_status.side_effect = [ENABLING, RescueStatus(error="Rescue image unavailable")]
        monitor = make_monitor(panel_client, storage, clock)

        await monitor.enable()
        state = await monitor.wait()

        assert state.status == CanonicalStatus.FAILED
        assert state.error == "Rescue image unavailable"
        assert state.credentials is None

        monitor.clear_error()
        assert monitor.state == PollerState.idle()

    @pytest.mark.asyncio
    async def test_clear_error_leaves_running_toggle_alone(self, panel_client, storage, clock):
        panel_client.get_rescue_status.side_effect = [ENABLING, ACTIVE]
        monitor = make_monitor(panel_client, storage, clock)

        await monitor.enable()
        monitor.clear_error()

        assert monitor.state.is_running
        assert monitor.is_polling
        state = await monitor.wait()
        assert state.status == CanonicalStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_resumed_disable_waits_for_inactive(self, panel_client, storage, clock):
        panel_client.get_rescue_status.side_effect = [ACTIVE, INACTIVE]
        first = make_monitor(panel_client, storage, clock)
        first.start(DISABLE)
        first.deactivate()
        assert json.loads(storage.get_item("rescueTask:srv-7"))["taskId"] == DISABLE

        resumed = make_monitor(panel_client, storage, clock)
        assert resumed.target == DISABLE
        state = await resumed.activate()
        # ACTIVE is "not there yet" for a disable, which looks like an orphan
        assert state == PollerState.idle()

    @pytest.mark.asyncio
    async def test_resumed_enable_completes_on_reconcile(self, panel_client, storage, clock):
        panel_client.get_rescue_status.return_value = ACTIVE
        first = make_monitor(panel_client, storage, clock)
        first.start(ENABLE)
        first.deactivate()

        resumed = make_monitor(panel_client, storage, clock)
        state = await resumed.activate()

        assert state.status == CanonicalStatus.COMPLETE
        assert state.credentials is None
        assert storage.get_item("rescueTask:srv-7") is None
