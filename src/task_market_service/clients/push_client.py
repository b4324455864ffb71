"""Push notification clients: HTTP push gateway and a log-only backend."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from task_market_service.logging import get_logger


class PushSendError(Exception):
    """
    A single push delivery failed.

    ``unregistered`` is set when the provider reports that the device token
    is no longer valid, so the caller can stop targeting it.
    """

    def __init__(self, message: str, *, unregistered: bool = False) -> None:
        super().__init__(message)
        self.unregistered = unregistered


class PushClient(Protocol):
    """Sends one notification to one device token."""

    async def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str: ...

    async def close(self) -> None: ...


class HttpPushClient:
    """
    Client for an HTTP push gateway.

    Posts one JSON message per device token to ``send_path`` and returns the
    provider's message id. 404 and 410 mean the token is unregistered.
    """

    def __init__(
        self,
        base_url: str,
        send_path: str,
        server_key: str | None,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._send_path = send_path
        headers = {"Authorization": f"key={server_key}"} if server_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        """
        Deliver a notification to a single device.

        Raises:
            PushSendError: on connection errors, timeouts or non-2xx responses
        """
        logger = get_logger(__name__)
        payload: dict[str, Any] = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": data,
                "android": {
                    "notification": {"sound": "default", "channel_id": "task_notifications"}
                },
                "apns": {"payload": {"aps": {"sound": "default", "badge": 1}}},
            }
        }

        try:
            response = await self._client.post(self._send_path, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Push gateway connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise PushSendError("Cannot connect to push gateway") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Push gateway HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise PushSendError("Push gateway request failed") from exc

        if response.status_code in (404, 410):
            raise PushSendError("Token not registered", unregistered=True)

        if response.status_code >= 300:
            logger.warning(
                "Push gateway unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise PushSendError(f"Push gateway returned status {response.status_code}")

        try:
            result: dict[str, Any] = response.json()
        except ValueError:
            return ""
        return str(result.get("name", result.get("message_id", "")))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


class LogPushClient:
    """Backend that only logs notifications. Used in development."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)
        self._sent = 0

    async def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        """Log the notification instead of delivering it."""
        self._sent += 1
        self._logger.info(
            "Push notification (log backend)",
            extra={"token_suffix": token[-8:], "title": title, "body": body, "data": data},
        )
        return f"log-{self._sent}"

    async def close(self) -> None:
        """Nothing to close."""
