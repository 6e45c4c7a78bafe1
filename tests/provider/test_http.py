import json

import httpx
import pytest
import respx

from usageprobe.errors import (
    AuthenticationError,
    FetchTimeoutError,
    MalformedResponseError,
    NetworkError,
    ServerError,
)
from usageprobe.provider.http import get_json, post_json

URL = "https://example.test/usage"


class TestGetJSON:
    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_decoded_body(self) -> "None":
        route = respx.get(URL).mock(return_value=httpx.Response(200, json={"ok": True}))
        async with httpx.AsyncClient() as client:
            body = await get_json(client, URL, "Test", headers={"X-Trace": "1"})
        assert body == {"ok": True}
        assert route.calls.last.request.headers["X-Trace"] == "1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized_carries_hint(self) -> "None":
        respx.get(URL).mock(return_value=httpx.Response(401, text="expired"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(AuthenticationError) as excinfo:
                await get_json(client, URL, "Test", auth_hint="Log in again.")
        assert "HTTP 401" in str(excinfo.value)
        assert "expired" in str(excinfo.value)
        assert str(excinfo.value).endswith("Log in again.")

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_keeps_status(self) -> "None":
        respx.get(URL).mock(return_value=httpx.Response(503, text="overloaded"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(ServerError) as excinfo:
                await get_json(client, URL, "Test")
        assert excinfo.value.status_code == 503
        assert excinfo.value.kind == "server"
        assert "overloaded" in str(excinfo.value)

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout(self) -> "None":
        respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(FetchTimeoutError):
                await get_json(client, URL, "Test")

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_failure(self) -> "None":
        respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(NetworkError):
                await get_json(client, URL, "Test")

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json(self) -> "None":
        respx.get(URL).mock(return_value=httpx.Response(200, text="<html>"))
        async with httpx.AsyncClient() as client:
            with pytest.raises(MalformedResponseError):
                await get_json(client, URL, "Test")


class TestPostJSON:
    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_json_body(self) -> "None":
        route = respx.post(URL).mock(return_value=httpx.Response(200, json={"data": {}}))
        async with httpx.AsyncClient() as client:
            body = await post_json(client, URL, "Test", {"query": "q"})
        assert body == {"data": {}}
        assert route.calls.last.request.method == "POST"
        assert json.loads(route.calls.last.request.content) == {"query": "q"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_forbidden(self) -> "None":
        respx.post(URL).mock(return_value=httpx.Response(403))
        async with httpx.AsyncClient() as client:
            with pytest.raises(AuthenticationError):
                await post_json(client, URL, "Test", {})
