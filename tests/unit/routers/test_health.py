"""Health endpoint tests for the task market service."""

from __future__ import annotations

import pytest

from tests.helpers import accept, create_task

EXPECTED_STATUSES = {
    "posted",
    "assigned",
    "in_progress",
    "pending_customer_approval",
    "completed",
    "cancelled",
    "disputed",
}


@pytest.mark.unit
async def test_health_returns_ok_with_correct_schema(client):
    """GET /health returns 200 with every status counted."""
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["uptime_seconds"], (int, float))
    assert data["started_at"].endswith("Z")
    assert data["total_tasks"] == 0
    assert data["pending_payment_actions"] == 0
    assert set(data["tasks_by_status"].keys()) == EXPECTED_STATUSES
    assert all(count == 0 for count in data["tasks_by_status"].values())


@pytest.mark.unit
async def test_health_task_counts_reflect_actual_data(client):
    first = await create_task(client)
    await create_task(client)
    await accept(client, first["task_id"])

    data = (await client.get("/health")).json()

    assert data["total_tasks"] == 2
    assert data["tasks_by_status"]["posted"] == 1
    assert data["tasks_by_status"]["assigned"] == 1


@pytest.mark.unit
@pytest.mark.usefixtures("gateway_authorize_fails")
async def test_health_counts_pending_payment_actions(client):
    task = await create_task(client)
    response = await accept(client, task["task_id"])
    assert response.status_code == 502

    data = (await client.get("/health")).json()
    assert data["pending_payment_actions"] == 1
