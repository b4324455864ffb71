"""Customer confirmation, reviews and dispute resolution."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, cast

from task_market_service.core.exceptions import ServiceError
from task_market_service.logging import get_logger
from task_market_service.services import notification_messages as messages
from task_market_service.services.notification_dispatcher import messages_for_users
from task_market_service.services.projections import (
    dispute_to_response,
    hold_to_response,
    now_iso,
    price_text,
    review_to_response,
    task_to_response,
)

if TYPE_CHECKING:
    from task_market_service.services.notification_dispatcher import NotificationDispatcher
    from task_market_service.services.payment_coordinator import PaymentCoordinator
    from task_market_service.services.task_store import TaskStore

DEFAULT_DISPUTE_REASON = "task_not_completed"
DEFAULT_DISPUTE_DESCRIPTION = "Customer rejected task completion"
_RESOLUTIONS = frozenset({"capture", "void"})


def is_valid_rating(value: object) -> bool:
    """Check if value is an integer 1-5 (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 5


class DisputeManager:
    """
    Terminal fork at ``pending_customer_approval``.

    Approval captures the hold and credits the tasker; rejection opens a
    dispute and leaves the hold authorized until an administrator resolves
    it by capturing or voiding.
    """

    def __init__(
        self,
        store: TaskStore,
        payment_coordinator: PaymentCoordinator,
        notification_dispatcher: NotificationDispatcher,
        admin_ids: list[str],
        max_description_length: int,
        max_reason_length: int,
    ) -> None:
        self._store = store
        self._payment_coordinator = payment_coordinator
        self._notifications = notification_dispatcher
        self._admin_ids = frozenset(admin_ids)
        self._max_description_length = max_description_length
        self._max_reason_length = max_reason_length
        self._logger = get_logger(__name__)

    def _notify(
        self,
        user_id: str | None,
        content: tuple[str, str],
        task: dict[str, Any],
        event: str,
    ) -> None:
        if not user_id:
            return
        users = self._store.get_users([user_id])
        data = {"type": event, "taskId": str(task["task_id"]), "status": str(task["status"])}
        self._notifications.dispatch(messages_for_users(users, content, data), event)

    def _pending_task(self, task_id: str, customer_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if (
            task is None
            or task["customer_id"] != customer_id
            or task["status"] != "pending_customer_approval"
        ):
            raise ServiceError(
                "not_found",
                "Task not found, not owned by this customer, or not awaiting approval",
                404,
                {"task_id": task_id},
            )
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _check_settled_hold(self, dispute_id: str, task_id: str, resolution: str) -> None:
        latest = self._store.get_latest_hold(task_id)
        if latest is None:
            return
        settled_as = "capture" if latest["status"] == "captured" else "void"
        if settled_as != resolution:
            self._logger.error(
                "Dispute resolution contradicts an already settled hold",
                extra={
                    "dispute_id": dispute_id,
                    "task_id": task_id,
                    "hold_status": latest["status"],
                    "resolution": resolution,
                },
            )
            raise ServiceError(
                "invalid_state",
                f"Payment hold is already {latest['status']}; cannot {resolution} it",
                409,
                {"dispute_id": dispute_id, "hold_status": latest["status"]},
            )

    async def confirm_completion(
        self,
        task_id: str,
        customer_id: str,
        approved: bool,
        rating: object | None,
        review_text: str | None,
        reason: str | None,
    ) -> dict[str, Any]:
        """
        Approve or reject the tasker's completion.

        Raises:
            ServiceError: invalid_input, not_found, conflict, upstream_failure
        """
        if rating is not None and not is_valid_rating(rating):
            raise ServiceError(
                "invalid_input", "Rating must be an integer between 1 and 5", 400, {}
            )
        text = review_text.strip() if review_text is not None else ""
        if len(text) > self._max_description_length:
            raise ServiceError(
                "invalid_input",
                f"Field 'review' must be at most {self._max_description_length} characters",
                400,
                {"max_length": self._max_description_length},
            )
        clean_reason = reason.strip() if reason is not None else ""
        if len(clean_reason) > self._max_reason_length:
            raise ServiceError(
                "invalid_input",
                f"Field 'reason' must be at most {self._max_reason_length} characters",
                400,
                {"max_length": self._max_reason_length},
            )

        if approved:
            return await self.approve(
                task_id, customer_id, cast("int | None", rating), text or None
            )
        return await self.reject(task_id, customer_id, clean_reason or None, text or None)

    async def approve(
        self,
        task_id: str,
        customer_id: str,
        rating: int | None,
        review_text: str | None,
    ) -> dict[str, Any]:
        """
        Capture payment and complete the task.

        The gateway capture happens first; the store then completes the
        task, marks the hold captured and credits the tasker in one
        transaction. A task that moved in between still gets its hold
        recorded as captured and the call fails with ``conflict``.
        """
        task = self._pending_task(task_id, customer_id)
        tasker_id = str(task["tasker_id"])
        hold = self._store.get_authorized_hold(task_id)
        if hold is not None:
            await self._payment_coordinator.capture_hold(hold)

        now = now_iso()
        review: dict[str, Any] | None = None
        if rating is not None:
            review = {
                "review_id": f"rev-{uuid.uuid4()}",
                "task_id": task_id,
                "reviewer_id": customer_id,
                "reviewee_id": tasker_id,
                "rating": rating,
                "review_text": review_text,
                "created_at": now,
            }

        finalized = self._store.finalize_approval(
            task_id,
            customer_id,
            now,
            hold["hold_id"] if hold is not None else None,
            review,
        )
        if finalized == 0:
            current = self._reload(task_id)
            disputed = current["status"] == "disputed"
            if hold is not None:
                # Money has moved at the gateway; record it so resolution cannot void it
                self._store.release_hold(
                    str(hold["hold_id"]),
                    "captured",
                    "captured_during_dispute" if disputed else "captured_before_concurrent_change",
                    now,
                )
            self._logger.error(
                "Payment captured but task changed before completion could be recorded",
                extra={
                    "task_id": task_id,
                    "hold_id": hold["hold_id"] if hold else None,
                    "status": current["status"],
                },
            )
            raise ServiceError(
                "conflict",
                "Task changed while completion was being confirmed",
                409,
                {"task_id": task_id},
            )

        task = self._reload(task_id)
        self._logger.info(
            "Task approved",
            extra={"task_id": task_id, "customer_id": customer_id, "rating": rating},
        )
        self._notify(
            tasker_id,
            messages.payment_released(task_title=task["title"], price=price_text(task["price"])),
            task,
            "payment_released",
        )
        self._notify(
            customer_id,
            messages.task_completed(task_title=task["title"]),
            task,
            "task_completed",
        )

        result: dict[str, Any] = {
            "task": task_to_response(task),
            "payment": hold_to_response(self._store.get_latest_hold(task_id)),
        }
        if review is not None:
            result["review"] = review_to_response(self._store.get_review(task_id, customer_id))
        return result

    async def reject(
        self,
        task_id: str,
        customer_id: str,
        reason: str | None,
        description: str | None,
    ) -> dict[str, Any]:
        """Open a dispute. The hold stays authorized; the tasker is freed."""
        task = self._pending_task(task_id, customer_id)
        now = now_iso()
        dispute: dict[str, Any] = {
            "dispute_id": f"disp-{uuid.uuid4()}",
            "task_id": task_id,
            "complainant_id": customer_id,
            "respondent_id": task["tasker_id"],
            "reason": reason or DEFAULT_DISPUTE_REASON,
            "description": description or DEFAULT_DISPUTE_DESCRIPTION,
            "status": "open",
            "created_at": now,
        }
        opened = self._store.open_dispute(task_id, customer_id, now, dispute)
        if opened == 0:
            raise ServiceError(
                "not_found",
                "Task not found, not owned by this customer, or not awaiting approval",
                404,
                {"task_id": task_id},
            )

        task = self._reload(task_id)
        self._logger.info(
            "Task disputed",
            extra={
                "task_id": task_id,
                "dispute_id": dispute["dispute_id"],
                "customer_id": customer_id,
            },
        )
        self._notify(
            task["tasker_id"],
            messages.completion_disputed(task_title=task["title"], reason=dispute["reason"]),
            task,
            "completion_disputed",
        )
        self._notify(
            customer_id,
            messages.dispute_opened(task_title=task["title"]),
            task,
            "dispute_opened",
        )
        return {
            "task": task_to_response(task),
            "payment": hold_to_response(self._store.get_latest_hold(task_id)),
            "dispute": dispute_to_response(self._store.get_dispute(dispute["dispute_id"])),
        }

    async def get_dispute(self, dispute_id: str) -> dict[str, Any]:
        """
        Get a dispute by ID.

        Raises:
            ServiceError: not_found
        """
        dispute = self._store.get_dispute(dispute_id)
        if dispute is None:
            raise ServiceError("not_found", "Dispute not found", 404, {"dispute_id": dispute_id})
        return {"dispute": dispute_to_response(dispute)}

    async def resolve_dispute(
        self,
        dispute_id: str,
        admin_id: str,
        resolution: str,
        notes: str | None,
    ) -> dict[str, Any]:
        """
        Settle an open dispute by capturing or voiding its hold.

        The task stays ``disputed``. Capture credits the tasker's earnings.

        A hold already settled at the gateway can only be confirmed: asking
        to void a captured hold (or capture a voided one) is ``invalid_state``
        and leaves the dispute open.

        Raises:
            ServiceError: invalid_input, forbidden, not_found, conflict,
                invalid_state, upstream_failure
        """
        if resolution not in _RESOLUTIONS:
            raise ServiceError(
                "invalid_input",
                "resolution must be 'capture' or 'void'",
                400,
                {"allowed": sorted(_RESOLUTIONS)},
            )
        clean_notes = notes.strip() if notes is not None else None
        if clean_notes is not None and len(clean_notes) > self._max_description_length:
            raise ServiceError(
                "invalid_input",
                f"Field 'notes' must be at most {self._max_description_length} characters",
                400,
                {"max_length": self._max_description_length},
            )
        if admin_id not in self._admin_ids:
            raise ServiceError("forbidden", "Only administrators can resolve disputes", 403, {})

        dispute = self._store.get_dispute(dispute_id)
        if dispute is None or dispute["status"] != "open":
            raise ServiceError(
                "not_found",
                "Dispute not found or already resolved",
                404,
                {"dispute_id": dispute_id},
            )

        task_id = str(dispute["task_id"])
        hold = self._store.get_authorized_hold(task_id)
        if hold is None:
            self._check_settled_hold(dispute_id, task_id, resolution)
        else:
            if resolution == "capture":
                await self._payment_coordinator.capture_hold(hold)
            else:
                await self._payment_coordinator.void_hold(hold)

        now = now_iso()
        resolved = self._store.resolve_dispute(
            dispute_id,
            resolution,
            admin_id,
            clean_notes or None,
            now,
            hold["hold_id"] if hold is not None else None,
        )
        if resolved == 0:
            if hold is not None:
                self._store.release_hold(
                    str(hold["hold_id"]),
                    "captured" if resolution == "capture" else "voided",
                    "settled_before_concurrent_change",
                    now,
                )
            self._logger.error(
                "Payment settled but dispute changed before resolution could be recorded",
                extra={"dispute_id": dispute_id, "task_id": task_id, "resolution": resolution},
            )
            raise ServiceError(
                "conflict",
                "Dispute changed while it was being resolved",
                409,
                {"dispute_id": dispute_id},
            )

        self._logger.info(
            "Dispute resolved",
            extra={
                "dispute_id": dispute_id,
                "task_id": task_id,
                "resolution": resolution,
                "admin_id": admin_id,
            },
        )
        task = self._reload(task_id)
        content = messages.dispute_resolved(task_title=task["title"], resolution=resolution)
        self._notify(dispute["respondent_id"], content, task, "dispute_resolved")
        self._notify(dispute["complainant_id"], content, task, "dispute_resolved")

        return {
            "dispute": dispute_to_response(self._store.get_dispute(dispute_id)),
            "payment": hold_to_response(self._store.get_latest_hold(task_id)),
        }
