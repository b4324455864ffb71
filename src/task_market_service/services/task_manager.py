"""Task lifecycle management: posting, first-come acceptance, execution and cancellation."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger
from task_market_service.services import notification_messages as messages
from task_market_service.services.notification_dispatcher import messages_for_users
from task_market_service.services.projections import (
    TASK_STATUSES,
    dispute_to_response,
    display_name,
    hold_to_response,
    now_iso,
    price_text,
    task_to_response,
    task_to_summary,
    tasker_to_response,
)
from task_market_service.services.task_store import (
    ACTIVE_STATUSES,
    TaskAlreadyClaimedError,
    TaskerUnavailableError,
)

if TYPE_CHECKING:
    from task_market_service.services.notification_dispatcher import NotificationDispatcher
    from task_market_service.services.payment_coordinator import PaymentCoordinator
    from task_market_service.services.task_store import TaskStore

_TASK_TYPES = frozenset({"on_demand", "scheduled"})
_CANCELLED_BY = frozenset({"customer", "tasker"})


class TaskManager:
    """
    Drives the task state machine.

    posted -> assigned -> in_progress -> pending_customer_approval, plus
    cancellation from the first three. Every transition is a conditional
    store write keyed on the expected status and the bound actor, so a
    precondition failure leaves the task untouched. Confirmation is handled
    by DisputeManager.
    """

    def __init__(
        self,
        store: TaskStore,
        payment_coordinator: PaymentCoordinator,
        notification_dispatcher: NotificationDispatcher,
        max_title_length: int,
        max_description_length: int,
        max_reason_length: int,
    ) -> None:
        self._store = store
        self._payment_coordinator = payment_coordinator
        self._notifications = notification_dispatcher
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._max_reason_length = max_reason_length
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _require_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("not_found", "Task not found", 404, {"task_id": task_id})
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _check_text(self, field: str, value: str, max_length: int, *, required: bool) -> str:
        text = value.strip()
        if required and not text:
            raise ServiceError("invalid_input", f"Field '{field}' must not be empty", 400, {})
        if len(text) > max_length:
            raise ServiceError(
                "invalid_input",
                f"Field '{field}' must be at most {max_length} characters",
                400,
                {"max_length": max_length},
            )
        return text

    def _notify(
        self,
        user_ids: list[str | None],
        content: tuple[str, str],
        task: dict[str, Any],
        event: str,
    ) -> None:
        users = self._store.get_users(user_id for user_id in user_ids if user_id)
        data = {"type": event, "taskId": str(task["task_id"]), "status": str(task["status"])}
        self._notifications.dispatch(messages_for_users(users, content, data), event)

    def _transition_failed(self, task_id: str, expected_status: str) -> ServiceError:
        return ServiceError(
            "not_found",
            f"Task not found, not bound to this caller, or not in '{expected_status}' status",
            404,
            {"task_id": task_id},
        )

    # ------------------------------------------------------------------
    # Public methods — called by routers
    # ------------------------------------------------------------------

    async def create_task(
        self,
        customer_id: str,
        title: str,
        description: str,
        task_address: str,
        price: Decimal,
        task_type: str | None,
        preferred_start_time: str | None,
        preferred_end_time: str | None,
    ) -> dict[str, Any]:
        """
        Post a new fixed-price task and tell eligible taskers about it.

        Raises:
            ServiceError: invalid_input (bad price, type or text), not_found (customer inactive)
        """
        if not price.is_finite() or price <= 0:
            raise ServiceError("invalid_input", "Price must be greater than 0", 400, {})
        if price.as_tuple().exponent < -2:  # type: ignore[operator]
            raise ServiceError(
                "invalid_input", "Price must have at most two decimal places", 400, {}
            )

        resolved_type = task_type if task_type is not None else "on_demand"
        if resolved_type not in _TASK_TYPES:
            raise ServiceError(
                "invalid_input",
                "taskType must be 'on_demand' or 'scheduled'",
                400,
                {"allowed": sorted(_TASK_TYPES)},
            )

        clean_title = self._check_text("title", title, self._max_title_length, required=True)
        clean_description = self._check_text(
            "description", description, self._max_description_length, required=True
        )
        clean_address = self._check_text(
            "taskAddress", task_address, self._max_description_length, required=True
        )

        customer = self._store.get_user(customer_id)
        if customer is None or not customer["is_active"]:
            raise ServiceError(
                "not_found",
                "Customer not found or inactive",
                404,
                {"customer_id": customer_id},
            )

        now = now_iso()
        task: dict[str, Any] = {
            "task_id": f"t-{uuid.uuid4()}",
            "customer_id": customer_id,
            "tasker_id": None,
            "title": clean_title,
            "description": clean_description,
            "task_address": clean_address,
            "task_type": resolved_type,
            "preferred_start_time": preferred_start_time,
            "preferred_end_time": preferred_end_time,
            "price": str(price.quantize(Decimal("0.01"))),
            "status": "posted",
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_task(task)
        self._logger.info(
            "Task posted",
            extra={"task_id": task["task_id"], "customer_id": customer_id, "price": str(price)},
        )

        stored = self._reload(task["task_id"])
        eligible = self._store.list_eligible_taskers(exclude_ids=[customer_id])
        content = messages.new_task_available(
            task_title=clean_title,
            price=price_text(price),
            task_address=clean_address,
        )
        data = {"type": "new_task", "taskId": str(stored["task_id"]), "status": "posted"}
        batch = messages_for_users(eligible, content, data)
        self._notifications.dispatch(batch, "new_task")

        return {
            "task": task_to_response(stored),
            "notifications": {"eligible_taskers": len(eligible), "queued": len(batch)},
        }

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """
        Get a task with its latest payment hold and dispute.

        A payment action left pending by an earlier failure is retried first.

        Raises:
            ServiceError: not_found
        """
        task = self._require_task(task_id)
        task = await self._payment_coordinator.retry_pending_payment(task)
        return {
            "task": task_to_response(task),
            "payment": hold_to_response(self._store.get_latest_hold(task_id)),
            "dispute": dispute_to_response(self._store.get_dispute_for_task(task_id)),
        }

    async def list_tasks(
        self,
        status: str | None,
        customer_id: str | None,
        tasker_id: str | None,
        offset: int | None,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        """List task summaries. All filters use AND logic."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "invalid_input",
                f"Invalid status filter: {status}",
                400,
                {"allowed": list(TASK_STATUSES)},
            )
        tasks = self._store.list_tasks(
            status=status,
            customer_id=customer_id,
            tasker_id=tasker_id,
            limit=limit,
            offset=offset,
        )
        return [task_to_summary(task) for task in tasks]

    async def accept_task(self, task_id: str, tasker_id: str) -> dict[str, Any]:
        """
        Claim a posted task for a tasker, first come first served, then authorize payment.

        The claim is one conditional write; every concurrent loser gets
        ``conflict``. Authorization happens only after a successful claim.
        If it fails the claim stands, the task is flagged payment-pending
        and ``upstream_failure`` is raised.

        Raises:
            ServiceError: not_found, forbidden, conflict, upstream_failure
        """
        accepted_at = now_iso()
        try:
            self._store.claim_task(task_id, tasker_id, accepted_at)
        except TaskerUnavailableError as exc:
            task = self._store.get_task(task_id)
            if task is not None and (task["status"] != "posted" or task["tasker_id"] is not None):
                raise ServiceError(
                    "conflict",
                    "Task has already been accepted",
                    409,
                    {"task_id": task_id},
                ) from exc
            raise ServiceError(
                "not_found",
                "Tasker not found, inactive or unavailable",
                404,
                {"tasker_id": tasker_id},
            ) from exc
        except TaskAlreadyClaimedError as exc:
            task = self._store.get_task(task_id)
            if task is None:
                raise ServiceError(
                    "not_found", "Task not found", 404, {"task_id": task_id}
                ) from exc
            if task["customer_id"] == tasker_id:
                raise ServiceError(
                    "forbidden", "Customers cannot accept their own task", 403, {}
                ) from exc
            self._logger.info(
                "Task acceptance lost",
                extra={"task_id": task_id, "tasker_id": tasker_id, "status": task["status"]},
            )
            raise ServiceError(
                "conflict",
                "Task has already been accepted by another tasker",
                409,
                {"task_id": task_id},
            ) from exc

        task = self._reload(task_id)
        self._logger.info("Task claimed", extra={"task_id": task_id, "tasker_id": tasker_id})

        tasker = self._store.get_user(tasker_id)
        tasker_name = display_name(tasker, "A tasker")
        self._notify(
            [task["customer_id"]],
            messages.task_accepted(tasker_name=tasker_name, task_title=task["title"]),
            task,
            "task_accepted",
        )
        others = self._store.list_eligible_taskers(exclude_ids=[tasker_id, task["customer_id"]])
        self._notifications.dispatch(
            messages_for_users(
                others,
                messages.task_no_longer_available(task_title=task["title"]),
                {"type": "task_unavailable", "taskId": task_id, "status": "assigned"},
            ),
            "task_unavailable",
        )

        try:
            hold = await self._payment_coordinator.authorize_for_task(task)
        except ServiceError as exc:
            self._logger.warning(
                "Payment authorization failed after claim, authorization pending",
                extra={"task_id": task_id, "tasker_id": tasker_id, "error": exc.message},
            )
            raise ServiceError(
                "upstream_failure",
                "Task claimed but payment authorization failed; authorization is pending",
                502,
                {"task_id": task_id, "payment_pending": True},
            ) from exc

        task = self._reload(task_id)
        if task["status"] != "assigned" or task["tasker_id"] != tasker_id:
            raise ServiceError(
                "conflict",
                "Task changed while payment was being authorized",
                409,
                {"task_id": task_id, "status": task["status"]},
            )
        return {
            "task": task_to_response(task),
            "tasker": tasker_to_response(tasker) if tasker is not None else None,
            "payment": hold_to_response(hold),
        }

    async def mark_arrived(self, task_id: str, tasker_id: str) -> dict[str, Any]:
        """
        Record that the assigned tasker arrived. Status stays ``assigned``.

        Raises:
            ServiceError: not_found
        """
        now = now_iso()
        updated = self._store.update_task(
            task_id,
            {"arrived_at": now, "updated_at": now},
            expected_status="assigned",
            expected_tasker_id=tasker_id,
        )
        if updated == 0:
            raise self._transition_failed(task_id, "assigned")

        task = self._reload(task_id)
        self._logger.info("Tasker arrived", extra={"task_id": task_id, "tasker_id": tasker_id})
        tasker = self._store.get_user(tasker_id)
        self._notify(
            [task["customer_id"]],
            messages.tasker_arrived(
                tasker_name=display_name(tasker, "Your tasker"), task_title=task["title"]
            ),
            task,
            "tasker_arrived",
        )
        return {"task": task_to_response(task)}

    async def start_task(self, task_id: str, tasker_id: str) -> dict[str, Any]:
        """
        Move an assigned task to ``in_progress``.

        A pending authorization is retried first; work cannot start on an
        unauthorized task.

        Raises:
            ServiceError: not_found, upstream_failure
        """
        task = self._store.get_task(task_id)
        if (
            task is not None
            and task["status"] == "assigned"
            and task["tasker_id"] == tasker_id
            and task["payment_action_pending"] == "authorize"
        ):
            task = await self._payment_coordinator.retry_pending_payment(task)
            if task["payment_action_pending"] == "authorize":
                raise ServiceError(
                    "upstream_failure",
                    "Payment authorization is still pending; task cannot start",
                    502,
                    {"task_id": task_id, "payment_pending": True},
                )

        now = now_iso()
        updated = self._store.update_task(
            task_id,
            {"status": "in_progress", "actual_start_time": now, "updated_at": now},
            expected_status="assigned",
            expected_tasker_id=tasker_id,
        )
        if updated == 0:
            raise self._transition_failed(task_id, "assigned")

        task = self._reload(task_id)
        self._logger.info("Task started", extra={"task_id": task_id, "tasker_id": tasker_id})
        tasker = self._store.get_user(tasker_id)
        self._notify(
            [task["customer_id"]],
            messages.task_started(
                tasker_name=display_name(tasker, "Your tasker"), task_title=task["title"]
            ),
            task,
            "task_started",
        )
        return {"task": task_to_response(task)}

    async def complete_task(
        self,
        task_id: str,
        tasker_id: str,
        notes: str | None,
    ) -> dict[str, Any]:
        """
        Mark work done and ask the customer for approval. Payment is not captured here.

        Raises:
            ServiceError: invalid_input, not_found
        """
        clean_notes = None
        if notes is not None:
            clean_notes = (
                self._check_text("notes", notes, self._max_description_length, required=False)
                or None
            )

        now = now_iso()
        updated = self._store.update_task(
            task_id,
            {
                "status": "pending_customer_approval",
                "actual_end_time": now,
                "completion_notes": clean_notes,
                "updated_at": now,
            },
            expected_status="in_progress",
            expected_tasker_id=tasker_id,
        )
        if updated == 0:
            raise self._transition_failed(task_id, "in_progress")

        task = self._reload(task_id)
        self._logger.info(
            "Task completed by tasker",
            extra={"task_id": task_id, "tasker_id": tasker_id},
        )
        tasker = self._store.get_user(tasker_id)
        price = price_text(task["price"])
        self._notify(
            [task["customer_id"]],
            messages.task_ready_for_review(
                tasker_name=display_name(tasker, "Your tasker"),
                task_title=task["title"],
                price=price,
            ),
            task,
            "task_ready_for_review",
        )
        self._notify(
            [tasker_id],
            messages.awaiting_customer_approval(task_title=task["title"], price=price),
            task,
            "awaiting_customer_approval",
        )
        return {
            "task": task_to_response(task),
            "payment": hold_to_response(self._store.get_latest_hold(task_id)),
        }

    async def cancel_task(
        self,
        task_id: str,
        user_id: str,
        reason: str,
        cancelled_by: str,
    ) -> dict[str, Any]:
        """
        Cancel a posted, assigned or in-progress task and void its hold.

        The cancellation stands even if the void fails; the task is then
        flagged and the void is retried on later reads.

        Raises:
            ServiceError: invalid_input, not_found, forbidden, invalid_state, conflict
        """
        if cancelled_by not in _CANCELLED_BY:
            raise ServiceError(
                "invalid_input", "cancelledBy must be 'customer' or 'tasker'", 400, {}
            )
        clean_reason = self._check_text("reason", reason, self._max_reason_length, required=True)

        task = self._require_task(task_id)

        if user_id == task["customer_id"]:
            role = "customer"
        elif task["tasker_id"] is not None and user_id == task["tasker_id"]:
            role = "tasker"
        else:
            raise ServiceError(
                "forbidden", "Only the customer or the assigned tasker can cancel", 403, {}
            )

        if cancelled_by != role:
            raise ServiceError(
                "invalid_input",
                f"cancelledBy '{cancelled_by}' does not match the caller's role '{role}'",
                400,
                {},
            )

        if task["status"] not in ACTIVE_STATUSES:
            raise ServiceError(
                "invalid_state",
                f"Cannot cancel task in '{task['status']}' status",
                409,
                {"status": task["status"]},
            )

        hold = self._store.get_authorized_hold(task_id)
        # An authorization may still be in flight; its hold must be voided once recorded
        authorizing = task["payment_action_pending"] == "authorize"
        now = now_iso()
        cancelled = self._store.cancel_task(
            task_id,
            {
                "cancelled_at": now,
                "cancelled_by": cancelled_by,
                "cancellation_reason": clean_reason,
                "updated_at": now,
                "payment_action_pending": "void" if hold is not None or authorizing else None,
            },
            expected_status=task["status"],
        )
        if cancelled == 0:
            raise ServiceError(
                "conflict",
                "Task changed while it was being cancelled",
                409,
                {"task_id": task_id},
            )
        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "cancelled_by": cancelled_by, "user_id": user_id},
        )

        void_pending = False
        payment = hold
        if hold is not None:
            try:
                payment = await self._payment_coordinator.void_for_task(task_id, "task_cancelled")
            except ServiceError:
                void_pending = True
                self._logger.warning(
                    "Payment void failed after cancellation, void pending",
                    extra={"task_id": task_id, "hold_id": hold["hold_id"]},
                )

        task = self._reload(task_id)
        counterparty = task["tasker_id"] if role == "customer" else task["customer_id"]
        canceller = self._store.get_user(user_id)
        fallback = "The customer" if role == "customer" else "Your tasker"
        self._notify(
            [counterparty],
            messages.task_cancelled(
                canceller_name=display_name(canceller, fallback),
                task_title=task["title"],
                reason=clean_reason,
            ),
            task,
            "task_cancelled",
        )

        payment_response = hold_to_response(payment)
        if payment_response is not None:
            payment_response["void_pending"] = void_pending
        return {"task": task_to_response(task), "payment": payment_response}

    # ------------------------------------------------------------------
    # Statistics — used by health endpoint
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task statistics for health reporting."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self.count_tasks_by_status(),
            "pending_payment_actions": self._store.count_pending_payment_actions(),
        }

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status. Returns all 7 statuses with 0 defaults."""
        counts: dict[str, int] = dict.fromkeys(TASK_STATUSES, 0)
        for status_val, count in self._store.count_tasks_by_status().items():
            if status_val in counts:
                counts[status_val] = int(count)
        return counts

    def close(self) -> None:
        """Close the database connection."""
        self._store.close()
