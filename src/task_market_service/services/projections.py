"""Row-to-response conversions shared by the task and dispute managers."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

TASK_STATUSES: tuple[str, ...] = (
    "posted",
    "assigned",
    "in_progress",
    "pending_customer_approval",
    "completed",
    "cancelled",
    "disputed",
)


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def money(value: object) -> float:
    """Render a stored decimal amount as a JSON number."""
    return float(Decimal(str(value)))


def task_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a task row to the full task response."""
    return {
        "task_id": row["task_id"],
        "customer_id": row["customer_id"],
        "tasker_id": row["tasker_id"],
        "title": row["title"],
        "description": row["description"],
        "task_address": row["task_address"],
        "task_type": row["task_type"],
        "preferred_start_time": row["preferred_start_time"],
        "preferred_end_time": row["preferred_end_time"],
        "price": money(row["price"]),
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "accepted_at": row["accepted_at"],
        "arrived_at": row["arrived_at"],
        "actual_start_time": row["actual_start_time"],
        "actual_end_time": row["actual_end_time"],
        "completion_notes": row["completion_notes"],
        "completed_at": row["completed_at"],
        "disputed_at": row["disputed_at"],
        "cancelled_at": row["cancelled_at"],
        "cancelled_by": row["cancelled_by"],
        "cancellation_reason": row["cancellation_reason"],
        "payment_pending": row["payment_action_pending"] is not None,
        "payment_action_pending": row["payment_action_pending"],
    }


def task_to_summary(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a task row to the list-view summary."""
    return {
        "task_id": row["task_id"],
        "customer_id": row["customer_id"],
        "tasker_id": row["tasker_id"],
        "title": row["title"],
        "task_address": row["task_address"],
        "task_type": row["task_type"],
        "price": money(row["price"]),
        "status": row["status"],
        "created_at": row["created_at"],
        "payment_pending": row["payment_action_pending"] is not None,
    }


def hold_to_response(hold: dict[str, Any] | None) -> dict[str, Any] | None:
    if hold is None:
        return None
    return {
        "hold_id": hold["hold_id"],
        "task_id": hold["task_id"],
        "amount": money(hold["amount"]),
        "status": hold["status"],
        "external_reference": hold["external_reference"],
        "created_at": hold["created_at"],
        "released_at": hold["released_at"],
        "release_reason": hold["release_reason"],
    }


def dispute_to_response(dispute: dict[str, Any] | None) -> dict[str, Any] | None:
    if dispute is None:
        return None
    return dict(dispute)


def review_to_response(review: dict[str, Any] | None) -> dict[str, Any] | None:
    if review is None:
        return None
    return dict(review)


def tasker_to_response(user: dict[str, Any]) -> dict[str, Any]:
    """Public view of a tasker: no push token or earnings."""
    return {
        "tasker_id": user["user_id"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
        "average_rating": user["average_rating"],
        "total_tasks_completed": user["total_tasks_completed"],
    }


def display_name(user: dict[str, Any] | None, fallback: str) -> str:
    if user is None or not user.get("first_name"):
        return fallback
    return str(user["first_name"])


def price_text(value: object) -> str:
    """Format a stored price for message texts, e.g. 75 -> '75.00'."""
    return f"{Decimal(str(value)):.2f}"
