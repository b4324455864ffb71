"""Best-effort push notification fan-out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from task_market_service.clients.push_client import PushSendError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from task_market_service.clients.push_client import PushClient

MIN_TOKEN_LENGTH = 50


@dataclass(frozen=True)
class NotificationMessage:
    """One notification addressed to one device token."""

    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class NotificationResult:
    """Outcome of a notify() batch."""

    success_count: int = 0
    failure_details: list[dict[str, str]] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failure_details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failure_details": list(self.failure_details),
        }


def is_valid_push_token(token: object) -> bool:
    """Basic shape check: a long string without whitespace."""
    if not isinstance(token, str) or not token:
        return False
    return len(token) > MIN_TOKEN_LENGTH and not any(char.isspace() for char in token)


def messages_for_users(
    users: Sequence[dict[str, Any]],
    content: tuple[str, str],
    data: dict[str, str],
) -> list[NotificationMessage]:
    """Address ``(title, body)`` to every user with push enabled and a token."""
    title, body = content
    return [
        NotificationMessage(token=str(user["push_token"]), title=title, body=body, data=dict(data))
        for user in users
        if user.get("push_enabled") and user.get("push_token")
    ]


class NotificationDispatcher:
    """
    Sends notification batches through a push client.

    A batch never raises: invalid tokens are rejected up front, each send
    is isolated, and the whole batch is bounded by ``timeout_seconds``.
    ``dispatch`` schedules a batch in the background so request handlers
    do not wait on delivery; ``drain`` waits for those background sends.
    """

    def __init__(
        self,
        push_client: PushClient,
        timeout_seconds: float,
        on_unregistered: Callable[[list[str]], object] | None = None,
    ) -> None:
        self._push_client = push_client
        self._timeout_seconds = timeout_seconds
        self._on_unregistered = on_unregistered
        self._background: set[asyncio.Task[NotificationResult]] = set()
        self._logger = get_logger(__name__)

    def set_push_client(self, push_client: PushClient) -> None:
        """Replace the push client."""
        self._push_client = push_client

    @property
    def pending_count(self) -> int:
        """Number of background batches still in flight."""
        return len(self._background)

    async def _send_one(self, message: NotificationMessage) -> tuple[str | None, bool]:
        try:
            await self._push_client.send(message.token, message.title, message.body, message.data)
        except PushSendError as exc:
            return str(exc), exc.unregistered
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "Push client raised unexpectedly",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return str(exc) or type(exc).__name__, False
        return None, False

    async def notify(self, messages: Sequence[NotificationMessage]) -> NotificationResult:
        """Send every message concurrently and report per-token failures."""
        result = NotificationResult()
        valid: list[NotificationMessage] = []
        for message in messages:
            if is_valid_push_token(message.token):
                valid.append(message)
            else:
                result.failure_details.append({"token": message.token, "error": "invalid_token"})

        if not valid:
            return result

        sends = [asyncio.ensure_future(self._send_one(message)) for message in valid]
        _, pending = await asyncio.wait(sends, timeout=self._timeout_seconds)
        for send in pending:
            send.cancel()

        unregistered: list[str] = []
        for message, send in zip(valid, sends, strict=True):
            if send in pending:
                result.failure_details.append({"token": message.token, "error": "timeout"})
                continue
            error, is_unregistered = send.result()
            if error is None:
                result.success_count += 1
            else:
                result.failure_details.append({"token": message.token, "error": error})
                if is_unregistered:
                    unregistered.append(message.token)

        if unregistered and self._on_unregistered is not None:
            try:
                self._on_unregistered(unregistered)
            except Exception:
                self._logger.exception(
                    "Failed to disable unregistered push tokens",
                    extra={"token_count": len(unregistered)},
                )

        return result

    async def _run(self, messages: list[NotificationMessage], event: str) -> NotificationResult:
        result = await self.notify(messages)
        log = self._logger.info if result.failure_count == 0 else self._logger.warning
        log(
            "Notifications sent",
            extra={
                "event": event,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
            },
        )
        return result

    def dispatch(self, messages: Sequence[NotificationMessage], event: str) -> None:
        """Schedule a batch in the background. Must be called from the event loop."""
        batch = list(messages)
        if not batch:
            self._logger.debug("No notification recipients", extra={"event": event})
            return
        task = asyncio.get_running_loop().create_task(self._run(batch, event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait until every background batch has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
