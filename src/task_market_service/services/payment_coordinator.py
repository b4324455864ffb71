"""Payment hold coordination for task lifecycle transitions."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger
from task_market_service.services.projections import now_iso
from task_market_service.services.task_store import DuplicateHoldError

if TYPE_CHECKING:
    from task_market_service.clients.payment_gateway import PaymentGateway
    from task_market_service.services.task_store import TaskStore


class PaymentCoordinator:
    """Keeps payment hold records in step with the payment gateway."""

    def __init__(self, payment_gateway: PaymentGateway, store: TaskStore) -> None:
        self._payment_gateway = payment_gateway
        self._store = store
        self._logger = get_logger(__name__)

    def set_payment_gateway(self, payment_gateway: PaymentGateway) -> None:
        """Replace the payment gateway."""
        self._payment_gateway = payment_gateway

    async def _gateway_call(self, operation: str, coro: Any) -> Any:
        try:
            return await coro
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "upstream_failure",
                f"Payment {operation} failed",
                502,
                {},
            ) from exc

    async def authorize_for_task(self, task: dict[str, Any]) -> dict[str, Any] | None:
        """
        Authorize a hold for the task price and record it.

        Clears the task's pending-authorization flag on success. When the
        task is no longer assigned to the same tasker by the time the hold is
        recorded, the hold is voided at once (or flagged for a void retry)
        and the voided hold is returned.
        Raises ServiceError("upstream_failure", ..., 502) on gateway failure.
        """
        task_id = str(task["task_id"])
        external_reference = await self._gateway_call(
            "authorization",
            self._payment_gateway.authorize(
                Decimal(str(task["price"])),
                task_id,
                str(task["customer_id"]),
                str(task["tasker_id"]),
            ),
        )

        hold: dict[str, Any] = {
            "hold_id": f"hold-{uuid.uuid4()}",
            "task_id": task_id,
            "amount": str(task["price"]),
            "status": "authorized",
            "external_reference": str(external_reference),
            "created_at": now_iso(),
            "released_at": None,
            "release_reason": None,
        }
        try:
            self._store.insert_hold(hold)
        except DuplicateHoldError:
            existing = self._store.get_authorized_hold(task_id)
            if existing is None:
                raise
            hold = existing

        cleared = self._store.update_task(
            task_id,
            {"payment_action_pending": None},
            expected_status="assigned",
            expected_tasker_id=str(task["tasker_id"]),
        )
        if cleared == 0:
            # Task left the assignment while the gateway call was in flight
            self._logger.warning(
                "Task no longer assigned after authorization, voiding hold",
                extra={"task_id": task_id, "hold_id": hold["hold_id"]},
            )
            return await self._void_orphaned_hold(task_id)

        self._logger.info(
            "Payment hold authorized",
            extra={"task_id": task_id, "hold_id": hold["hold_id"], "amount": hold["amount"]},
        )
        return hold

    async def _void_orphaned_hold(self, task_id: str) -> dict[str, Any] | None:
        try:
            return await self.void_for_task(task_id, "task_cancelled")
        except ServiceError:
            self._store.update_task(
                task_id, {"payment_action_pending": "void"}, expected_status=None
            )
            self._logger.warning(
                "Voiding orphaned hold failed, void pending",
                extra={"task_id": task_id},
            )
            return self._store.get_latest_hold(task_id)

    async def capture_hold(self, hold: dict[str, Any]) -> None:
        """
        Capture a hold at the gateway without touching the store.

        Raises ServiceError("upstream_failure", ..., 502) on gateway failure.
        """
        await self._gateway_call("capture", self._payment_gateway.capture(hold["external_reference"]))

    async def void_hold(self, hold: dict[str, Any]) -> None:
        """
        Void a hold at the gateway without touching the store.

        Raises ServiceError("upstream_failure", ..., 502) on gateway failure.
        """
        await self._gateway_call("void", self._payment_gateway.void(hold["external_reference"]))

    async def capture_for_task(self, task_id: str, reason: str) -> dict[str, Any] | None:
        """
        Capture the task's authorized hold and mark it captured.

        A task without an authorized hold is a no-op that returns the latest hold.
        """
        hold = self._store.get_authorized_hold(task_id)
        if hold is None:
            return self._store.get_latest_hold(task_id)

        await self.capture_hold(hold)
        self._store.release_hold(str(hold["hold_id"]), "captured", reason, now_iso())
        return self._store.get_latest_hold(task_id)

    async def void_for_task(self, task_id: str, reason: str) -> dict[str, Any] | None:
        """
        Void the task's authorized hold, mark it voided and clear the pending flag.

        A task without an authorized hold is a no-op that returns the latest hold.
        """
        hold = self._store.get_authorized_hold(task_id)
        if hold is not None:
            await self.void_hold(hold)
            self._store.release_hold(str(hold["hold_id"]), "voided", reason, now_iso())
            self._logger.info(
                "Payment hold voided",
                extra={"task_id": task_id, "hold_id": hold["hold_id"], "reason": reason},
            )
        self._store.update_task(task_id, {"payment_action_pending": None}, expected_status=None)
        return self._store.get_latest_hold(task_id)

    async def retry_pending_payment(self, task: dict[str, Any]) -> dict[str, Any]:
        """
        Retry a payment action left pending by an earlier failure.

        ``authorize`` is retried while the task is still assigned; ``void`` is
        retried for cancelled tasks. Failures are logged and the flag stays set.
        Returns the task as currently stored.
        """
        pending = task.get("payment_action_pending")
        if pending is None:
            return task

        task_id = str(task["task_id"])
        try:
            if pending == "authorize" and task["status"] == "assigned":
                await self.authorize_for_task(task)
            elif pending == "void":
                await self.void_for_task(task_id, "task_cancelled")
            else:
                self._store.update_task(
                    task_id, {"payment_action_pending": None}, expected_status=None
                )
        except ServiceError:
            self._logger.warning(
                "Pending payment action retry failed",
                extra={"task_id": task_id, "payment_action": pending},
            )
            return task

        refreshed = self._store.get_task(task_id)
        return refreshed if refreshed is not None else task
