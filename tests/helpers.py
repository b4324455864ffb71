"""Shared test helpers: seeded users, task rows and request payloads."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from httpx import AsyncClient

    from task_market_service.services.task_store import TaskStore

CUSTOMER_ID = "u-customer"
TASKER_X_ID = "u-tasker-x"
TASKER_Y_ID = "u-tasker-y"
ADMIN_ID = "admin-1"


def make_push_token(user_id: str) -> str:
    """Build a token that passes the shape check (long, no whitespace)."""
    return f"fcm-{user_id}-" + "a" * 64


def seed_user(store: TaskStore, user_id: str, **overrides: Any) -> dict[str, Any]:
    """Insert an active, available user with push enabled."""
    user: dict[str, Any] = {
        "user_id": user_id,
        "first_name": user_id.split("-")[-1].capitalize(),
        "last_name": "Test",
        "is_active": True,
        "is_available": True,
        "push_token": make_push_token(user_id),
        "push_enabled": True,
    }
    user.update(overrides)
    store.upsert_user(user)
    stored = store.get_user(user_id)
    assert stored is not None
    return stored


def task_row(task_id: str, status: str = "posted", **overrides: Any) -> dict[str, Any]:
    """Build a full task row for direct store inserts."""
    timestamp = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    row: dict[str, Any] = {
        "task_id": task_id,
        "customer_id": CUSTOMER_ID,
        "tasker_id": None,
        "title": f"Task {task_id}",
        "description": "Assemble a bookshelf",
        "task_address": "12 Main St",
        "task_type": "on_demand",
        "preferred_start_time": None,
        "preferred_end_time": None,
        "price": "75.00",
        "status": status,
        "created_at": timestamp,
        "updated_at": timestamp,
        "accepted_at": None,
        "arrived_at": None,
        "actual_start_time": None,
        "actual_end_time": None,
        "completion_notes": None,
        "completed_at": None,
        "disputed_at": None,
        "cancelled_at": None,
        "cancelled_by": None,
        "cancellation_reason": None,
        "payment_action_pending": None,
    }
    row.update(overrides)
    return row


def task_payload(customer_id: str = CUSTOMER_ID, **overrides: Any) -> dict[str, Any]:
    """Build a valid POST /tasks body."""
    payload: dict[str, Any] = {
        "customerId": customer_id,
        "title": "Assemble a bookshelf",
        "description": "IKEA Billy, all parts on site",
        "taskAddress": "12 Main St",
        "fixedPrice": 75,
    }
    payload.update(overrides)
    return payload


async def create_task(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    """POST a task and return the created task projection."""
    response = await client.post("/tasks", json=task_payload(**overrides))
    assert response.status_code == 201, response.text
    task: dict[str, Any] = response.json()["data"]["task"]
    return task


async def accept(client: AsyncClient, task_id: str, tasker_id: str = TASKER_X_ID) -> Any:
    return await client.post("/tasks/accept", json={"taskId": task_id, "taskerId": tasker_id})


async def advance_to_in_progress(
    client: AsyncClient,
    tasker_id: str = TASKER_X_ID,
) -> dict[str, Any]:
    """Create a task, accept it and start it. Returns the task."""
    task = await create_task(client)
    response = await accept(client, task["task_id"], tasker_id)
    assert response.status_code == 200, response.text
    response = await client.post(
        "/tasks/start", json={"taskId": task["task_id"], "taskerId": tasker_id}
    )
    assert response.status_code == 200, response.text
    started: dict[str, Any] = response.json()["data"]["task"]
    return started


async def advance_to_pending_approval(
    client: AsyncClient,
    tasker_id: str = TASKER_X_ID,
) -> dict[str, Any]:
    """Drive a fresh task to pending_customer_approval. Returns the task."""
    task = await advance_to_in_progress(client, tasker_id)
    response = await client.post(
        "/tasks/complete",
        json={"taskId": task["task_id"], "taskerId": tasker_id, "notes": "All done"},
    )
    assert response.status_code == 200, response.text
    completed: dict[str, Any] = response.json()["data"]["task"]
    return completed
