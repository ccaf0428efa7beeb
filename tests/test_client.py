"""Tests for the control panel API client."""

import json

import httpx
import pytest

from provision_cli.client import (
    ApiError,
    BuildStatus,
    PanelClient,
    RescueStatus,
    TransportError,
    lookup_server_ip,
)
from provision_cli.config import Config


def make_client(handler) -> PanelClient:
    config = Config(base_url="https://panel.example.com/api/", api_token="tok")
    return PanelClient(config, transport=httpx.MockTransport(handler))


class TestPayloadParsing:
    def test_build_status_from_payload(self):
        status = BuildStatus.from_payload(
            {"isBuilding": True, "isComplete": False, "isError": False, "phase": "building", "percent": 42}
        )
        assert status == BuildStatus(is_building=True, phase="building", percent=42)
        assert status.has_signal

    def test_build_failed_counts_as_error(self):
        assert BuildStatus.from_payload({"buildFailed": True}).is_error

    def test_non_numeric_percent_is_dropped(self):
        assert BuildStatus.from_payload({"percent": "50%"}).percent is None
        assert BuildStatus.from_payload({"percent": True}).percent is None

    def test_empty_payload_has_no_signal(self):
        assert not BuildStatus.from_payload({}).has_signal

    def test_rescue_status_from_payload(self):
        status = RescueStatus.from_payload({"isActive": True, "isEnabling": False, "isDisabling": True})
        assert status.is_active
        assert status.is_transitioning
        assert status.is_supported


class TestPanelClient:
    @pytest.mark.asyncio
    async def test_get_build_status(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"isBuilding": True, "phase": "Imaging", "percent": 40})

        async with make_client(handler) as client:
            status = await client.get_build_status("42")

        assert seen["url"] == "https://panel.example.com/api/servers/42/build-status"
        assert seen["auth"] == "Bearer tok"
        assert status.is_building
        assert status.phase == "Imaging"
        assert status.percent == 40

    @pytest.mark.asyncio
    async def test_reinstall_posts_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "data": {"generatedPassword": "x"}})

        async with make_client(handler) as client:
            result = await client.reinstall_server("42", 7, "web1")

        assert seen == {"method": "POST", "path": "/api/servers/42/reinstall", "body": {"osId": 7, "hostname": "web1"}}
        assert result["data"]["generatedPassword"] == "x"

    @pytest.mark.asyncio
    async def test_api_error_carries_server_message(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Server has a pending cancellation"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.reinstall_server("42", 7, "web1")

        assert excinfo.value.status_code == 400
        assert excinfo.value.message == "Server has a pending cancellation"

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(404, json={"error": "Server not found"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError):
                await client.get_build_status("42")

        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_server_errors_become_transport_errors(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Failed to fetch build status"})

        async with make_client(handler) as client:
            with pytest.raises(TransportError):
                await client.get_build_status("42", attempts=1)

    @pytest.mark.asyncio
    async def test_retry_recovers_from_transient_failures(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"isComplete": True})

        async with make_client(handler) as client:
            payload = await client.retry(lambda: client._request("GET", "/servers/42/build-status"), base_delay=0.0)

        assert payload == {"isComplete": True}
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_network_errors_become_transport_errors(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TransportError):
                await client.retry(lambda: client._request("GET", "/servers/42"), attempts=2, base_delay=0.0)

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_transport_error(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>gateway</html>")

        async with make_client(handler) as client:
            with pytest.raises(TransportError):
                await client.get_build_status("42", attempts=1)

    @pytest.mark.asyncio
    async def test_empty_success_body(self):
        def handler(request):
            return httpx.Response(204)

        async with make_client(handler) as client:
            assert await client.disable_rescue("42") == {}

    @pytest.mark.asyncio
    async def test_rescue_endpoints(self):
        paths = []

        def handler(request):
            paths.append((request.method, request.url.path))
            if request.url.path.endswith("/rescue"):
                return httpx.Response(200, json={"isActive": False, "isEnabling": True})
            return httpx.Response(200, json={"credentials": {"username": "root", "password": "pw"}})

        async with make_client(handler) as client:
            result = await client.enable_rescue("42")
            status = await client.get_rescue_status("42")

        assert result["credentials"]["password"] == "pw"
        assert status.is_enabling
        assert paths == [("POST", "/api/servers/42/rescue/enable"), ("GET", "/api/servers/42/rescue")]


class TestLookupServerIp:
    @pytest.mark.asyncio
    async def test_primary_ip(self):
        async with make_client(lambda request: httpx.Response(200, json={"primaryIp": "198.51.100.4"})) as client:
            assert await lookup_server_ip(client, "42") == "198.51.100.4"

    @pytest.mark.asyncio
    async def test_lookup_failure_is_empty(self):
        async with make_client(lambda request: httpx.Response(403, json={"error": "Forbidden"})) as client:
            assert await lookup_server_ip(client, "42") == ""
