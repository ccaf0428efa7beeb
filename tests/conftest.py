"""Shared fixtures for the provisioning CLI tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from provision_cli.store import MemoryStorage, TaskStore


class FakeClock:
    """Virtual time: sleeping advances the clock instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.delays: list[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage) -> TaskStore:
    return TaskStore(storage, "reinstallTask")


@pytest.fixture
def panel_client() -> MagicMock:
    """PanelClient stand-in with async API methods."""
    client = MagicMock()
    client.get_build_status = AsyncMock()
    client.get_server = AsyncMock(return_value={"primaryIp": "203.0.113.10"})
    client.reinstall_server = AsyncMock(return_value={"success": True})
    client.get_rescue_status = AsyncMock()
    client.enable_rescue = AsyncMock(return_value={})
    client.disable_rescue = AsyncMock(return_value={})
    return client
