from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from task_market_service.clients.push_client import HttpPushClient, LogPushClient, PushSendError

TOKEN = "device-token-" + "x" * 60


def _make_client(
    mock_response: httpx.Response | None = None,
    side_effect: Exception | None = None,
) -> HttpPushClient:
    """Create an HttpPushClient with a mock HTTP transport."""
    client = HttpPushClient(
        base_url="http://mock-push:9000",
        send_path="/v1/messages:send",
        server_key="server-key",
        timeout_seconds=5,
    )

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.post = AsyncMock(return_value=mock_response, side_effect=side_effect)
    client._client = mock_http
    return client


def _mock_response(status_code: int, json_body: dict[str, Any] | None = None) -> httpx.Response:
    """Create a mock httpx.Response."""
    request = httpx.Request("POST", "http://mock-push:9000/v1/messages:send")
    if json_body is None:
        return httpx.Response(status_code=status_code, content=b"not json", request=request)
    return httpx.Response(status_code=status_code, json=json_body, request=request)


@pytest.mark.unit
async def test_send_posts_message_and_returns_id() -> None:
    client = _make_client(_mock_response(200, {"name": "projects/p/messages/1"}))

    message_id = await client.send(TOKEN, "Hello", "World", {"taskId": "t-1"})

    assert message_id == "projects/p/messages/1"
    call = client._client.post.call_args
    assert call.args[0] == "/v1/messages:send"
    message = call.kwargs["json"]["message"]
    assert message["token"] == TOKEN
    assert message["notification"] == {"title": "Hello", "body": "World"}
    assert message["data"] == {"taskId": "t-1"}


@pytest.mark.unit
async def test_send_non_json_success_returns_empty_id() -> None:
    client = _make_client(_mock_response(200))
    assert await client.send(TOKEN, "t", "b", {}) == ""


@pytest.mark.unit
@pytest.mark.parametrize("status_code", [404, 410])
async def test_send_unregistered_token(status_code: int) -> None:
    client = _make_client(_mock_response(status_code, {"error": "UNREGISTERED"}))

    with pytest.raises(PushSendError) as exc_info:
        await client.send(TOKEN, "t", "b", {})

    assert exc_info.value.unregistered is True


@pytest.mark.unit
async def test_send_server_error_is_not_unregistered() -> None:
    client = _make_client(_mock_response(500, {"error": "INTERNAL"}))

    with pytest.raises(PushSendError) as exc_info:
        await client.send(TOKEN, "t", "b", {})

    assert exc_info.value.unregistered is False
    assert "500" in str(exc_info.value)


@pytest.mark.unit
async def test_send_connection_error() -> None:
    client = _make_client(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(PushSendError, match="Cannot connect"):
        await client.send(TOKEN, "t", "b", {})


@pytest.mark.unit
async def test_send_timeout() -> None:
    client = _make_client(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(PushSendError, match="Cannot connect"):
        await client.send(TOKEN, "t", "b", {})


@pytest.mark.unit
async def test_client_sets_authorization_header() -> None:
    client = HttpPushClient(
        base_url="http://mock-push:9000",
        send_path="/send",
        server_key="secret",
        timeout_seconds=5,
    )
    assert client._client.headers["Authorization"] == "key=secret"
    await client.close()


@pytest.mark.unit
async def test_log_push_client_counts_messages() -> None:
    client = LogPushClient()
    assert await client.send(TOKEN, "t", "b", {}) == "log-1"
    assert await client.send(TOKEN, "t", "b", {}) == "log-2"
    await client.close()
