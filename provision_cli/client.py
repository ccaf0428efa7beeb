"""
Control panel API client used by the CLI and the task monitors.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import Config

logger = logging.getLogger(__name__)


class PanelError(Exception):
    """Base class for control panel failures."""


class TransportError(PanelError):
    """The request did not produce a usable answer (network, timeout, 5xx)."""


class ApiError(PanelError):
    """The panel answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class BuildStatus:
    """Remote view of a provisioning task."""

    is_building: bool = False
    is_complete: bool = False
    is_error: bool = False
    phase: Optional[str] = None
    percent: Optional[float] = None
    message: Optional[str] = None

    @property
    def has_signal(self) -> bool:
        return self.is_building or self.is_complete or self.is_error

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BuildStatus":
        percent = payload.get("percent")
        if isinstance(percent, bool) or not isinstance(percent, (int, float)):
            percent = None
        phase = payload.get("phase")
        return cls(
            is_building=bool(payload.get("isBuilding")),
            is_complete=bool(payload.get("isComplete")),
            is_error=bool(payload.get("isError") or payload.get("buildFailed")),
            phase=str(phase) if phase else None,
            percent=percent,
            message=payload.get("error") or None,
        )


@dataclass(frozen=True)
class RescueStatus:
    """Remote view of a server's rescue mode."""

    is_supported: bool = True
    is_active: bool = False
    is_enabling: bool = False
    is_disabling: bool = False
    error: Optional[str] = None

    @property
    def is_transitioning(self) -> bool:
        return self.is_enabling or self.is_disabling

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RescueStatus":
        return cls(
            is_supported=bool(payload.get("isSupported", True)),
            is_active=bool(payload.get("isActive")),
            is_enabling=bool(payload.get("isEnabling")),
            is_disabling=bool(payload.get("isDisabling")),
            error=payload.get("error") or None,
        )


class PanelClient:
    """Async wrapper around the control panel REST API."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _verify_param(self) -> Any:
        if not self.config.verify_ssl:
            return False
        if self.config.ca_cert_path:
            return self.config.ca_cert_path
        return True

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.config.api_token:
                headers["Authorization"] = f"Bearer {self.config.api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                headers=headers,
                verify=self._verify_param(),
                timeout=httpx.Timeout(self.config.read_timeout, connect=self.config.connect_timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PanelClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def retry(
        self,
        func: Callable[[], Awaitable[Any]],
        attempts: int = 3,
        base_delay: float = 0.5,
    ) -> Any:
        """Retry a read with exponential backoff and jitter.

        API errors are not retried unless they are server-side (5xx).
        """
        delay = base_delay
        last_exc: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                return await func()
            except ApiError as e:
                if e.status_code < 500:
                    raise
                last_exc = e
            except TransportError as e:
                last_exc = e
            if attempt == attempts - 1:
                break
            jitter = delay * 0.1
            await asyncio.sleep(delay + random.uniform(-jitter, jitter))
            delay = min(delay * 2, 2.0)
        if isinstance(last_exc, ApiError):
            raise TransportError(f"Server error {last_exc.status_code}: {last_exc.message}") from last_exc
        if last_exc:
            raise last_exc
        raise TransportError("Retry attempts exhausted")

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._get_client().request(method, path, json=json_body)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(f"{method} {path} returned invalid JSON") from e

        message = response.reason_phrase or "Request failed"
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
        except ValueError:
            pass
        raise ApiError(response.status_code, message)

    async def get_build_status(self, server_id: str, attempts: int = 2) -> BuildStatus:
        payload = await self.retry(
            lambda: self._request("GET", f"/servers/{server_id}/build-status"),
            attempts=attempts,
        )
        return BuildStatus.from_payload(payload or {})

    async def get_server(self, server_id: str) -> Dict[str, Any]:
        payload = await self.retry(lambda: self._request("GET", f"/servers/{server_id}"))
        return payload if isinstance(payload, dict) else {}

    async def reinstall_server(self, server_id: str, os_id: int, hostname: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/servers/{server_id}/reinstall",
            json_body={"osId": os_id, "hostname": hostname},
        )

    async def get_rescue_status(self, server_id: str, attempts: int = 2) -> RescueStatus:
        payload = await self.retry(
            lambda: self._request("GET", f"/servers/{server_id}/rescue"),
            attempts=attempts,
        )
        return RescueStatus.from_payload(payload or {})

    async def enable_rescue(self, server_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/servers/{server_id}/rescue/enable")

    async def disable_rescue(self, server_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/servers/{server_id}/rescue/disable")


async def lookup_server_ip(client: PanelClient, server_id: str) -> str:
    """Primary address of a server, or an empty string when it cannot be resolved."""
    try:
        server = await client.get_server(server_id)
    except PanelError as e:
        logger.warning("Could not look up address of server %s: %s", server_id, e)
        return ""
    return str(server.get("primaryIp") or server.get("ip") or "")
