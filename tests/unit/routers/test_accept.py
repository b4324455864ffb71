"""First-come task acceptance and payment authorization tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from tests.helpers import (
    CUSTOMER_ID,
    TASKER_X_ID,
    TASKER_Y_ID,
    accept,
    create_task,
    make_push_token,
    seed_user,
)


@pytest.mark.unit
async def test_accept_assigns_task_and_authorizes_hold(client, store, gateway):
    task = await create_task(client, fixedPrice=42.5)

    response = await accept(client, task["task_id"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["task"]["status"] == "assigned"
    assert data["task"]["tasker_id"] == TASKER_X_ID
    assert data["task"]["accepted_at"] is not None
    assert data["task"]["payment_pending"] is False
    assert data["tasker"]["tasker_id"] == TASKER_X_ID
    assert "push_token" not in data["tasker"]
    assert data["payment"]["status"] == "authorized"
    assert data["payment"]["amount"] == 42.5
    assert data["payment"]["external_reference"].startswith("pi_test_")

    args = gateway.authorize.await_args.args
    assert str(args[0]) == "42.50"
    assert args[1:] == (task["task_id"], CUSTOMER_ID, TASKER_X_ID)
    assert store.get_user(TASKER_X_ID)["is_available"] is False


@pytest.mark.unit
async def test_concurrent_accepts_have_exactly_one_winner(client, store, gateway):
    """N taskers race for one task: one 200, everyone else 409, one authorization."""
    tasker_ids = [f"u-racer-{index}" for index in range(10)]
    for tasker_id in tasker_ids:
        seed_user(store, tasker_id)
    task = await create_task(client)

    responses = await asyncio.gather(
        *(accept(client, task["task_id"], tasker_id) for tasker_id in tasker_ids)
    )

    codes = sorted(response.status_code for response in responses)
    assert codes == [200] + [409] * (len(tasker_ids) - 1)
    for response in responses:
        if response.status_code == 409:
            assert response.json()["error"] == "conflict"
            assert response.json()["details"] == {"task_id": task["task_id"]}

    winner = next(r for r in responses if r.status_code == 200).json()["data"]["task"]["tasker_id"]
    assert store.get_task(task["task_id"])["tasker_id"] == winner
    assert gateway.authorize.await_count == 1
    assert len(store.list_holds(task["task_id"])) == 1
    for tasker_id in tasker_ids:
        assert store.get_user(tasker_id)["is_available"] is (tasker_id != winner)


@pytest.mark.unit
async def test_accept_already_assigned_returns_409(client):
    task = await create_task(client)
    assert (await accept(client, task["task_id"], TASKER_X_ID)).status_code == 200

    response = await accept(client, task["task_id"], TASKER_Y_ID)

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


@pytest.mark.unit
async def test_repeated_accept_by_winner_returns_409(client, store, gateway):
    task = await create_task(client)
    assert (await accept(client, task["task_id"])).status_code == 200

    response = await accept(client, task["task_id"])

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"
    assert response.json()["details"] == {"task_id": task["task_id"]}
    assert store.get_task(task["task_id"])["tasker_id"] == TASKER_X_ID
    gateway.authorize.assert_awaited_once()


@pytest.mark.unit
async def test_busy_tasker_accepting_claimed_task_returns_409(client):
    first = await create_task(client)
    second = await create_task(client)
    assert (await accept(client, first["task_id"], TASKER_X_ID)).status_code == 200
    assert (await accept(client, second["task_id"], TASKER_Y_ID)).status_code == 200

    response = await accept(client, second["task_id"], TASKER_X_ID)

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


@pytest.mark.unit
async def test_accept_unknown_task_returns_404(client):
    response = await accept(client, "t-missing")
    assert response.status_code == 404


@pytest.mark.unit
async def test_accept_by_busy_tasker_returns_404(client):
    first = await create_task(client)
    second = await create_task(client)
    assert (await accept(client, first["task_id"])).status_code == 200

    response = await accept(client, second["task_id"])

    assert response.status_code == 404
    assert response.json()["details"] == {"tasker_id": TASKER_X_ID}


@pytest.mark.unit
async def test_accept_by_unknown_tasker_returns_404(client):
    task = await create_task(client)
    response = await accept(client, task["task_id"], "u-nobody")
    assert response.status_code == 404


@pytest.mark.unit
async def test_customer_cannot_accept_own_task(client, store):
    store.upsert_user({"user_id": CUSTOMER_ID, "is_available": True})
    task = await create_task(client)

    response = await accept(client, task["task_id"], CUSTOMER_ID)

    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"
    assert store.get_task(task["task_id"])["status"] == "posted"
    assert store.get_user(CUSTOMER_ID)["is_available"] is True


@pytest.mark.unit
async def test_accept_notifies_customer_and_other_taskers(client, push, dispatcher):
    task = await create_task(client)
    await dispatcher.drain()
    push.send.reset_mock()

    await accept(client, task["task_id"])
    await dispatcher.drain()

    sent = {call.args[0]: call.args for call in push.send.await_args_list}
    assert set(sent) == {make_push_token(CUSTOMER_ID), make_push_token(TASKER_Y_ID)}
    assert sent[make_push_token(CUSTOMER_ID)][1].startswith("Task Accepted")
    assert sent[make_push_token(CUSTOMER_ID)][3]["type"] == "task_accepted"
    assert sent[make_push_token(TASKER_Y_ID)][1] == "Task No Longer Available"


@pytest.mark.unit
@pytest.mark.usefixtures("gateway_authorize_fails")
async def test_authorization_failure_keeps_claim_and_flags_payment(client, store):
    task = await create_task(client)

    response = await accept(client, task["task_id"])

    assert response.status_code == 502
    body = response.json()
    assert body["error"] == "upstream_failure"
    assert body["details"] == {"task_id": task["task_id"], "payment_pending": True}

    stored = store.get_task(task["task_id"])
    assert stored["status"] == "assigned"
    assert stored["tasker_id"] == TASKER_X_ID
    assert stored["payment_action_pending"] == "authorize"
    assert store.get_authorized_hold(task["task_id"]) is None


@pytest.mark.unit
@pytest.mark.usefixtures("gateway_authorize_fails")
async def test_pending_authorization_is_retried_on_read(client, store, gateway):
    task = await create_task(client)
    await accept(client, task["task_id"])

    # Still failing: the flag survives the read
    detail = (await client.get(f"/tasks/{task['task_id']}")).json()["data"]
    assert detail["task"]["payment_pending"] is True
    assert detail["payment"] is None

    gateway.authorize = AsyncMock(return_value="pi_recovered")
    detail = (await client.get(f"/tasks/{task['task_id']}")).json()["data"]

    assert detail["task"]["payment_pending"] is False
    assert detail["payment"]["external_reference"] == "pi_recovered"
    assert store.count_pending_payment_actions() == 0


@pytest.mark.unit
@pytest.mark.usefixtures("gateway_authorize_fails")
async def test_start_is_blocked_until_authorization_succeeds(client, store, gateway):
    task = await create_task(client)
    await accept(client, task["task_id"])
    body = {"taskId": task["task_id"], "taskerId": TASKER_X_ID}

    response = await client.post("/tasks/start", json=body)
    assert response.status_code == 502
    assert response.json()["details"]["payment_pending"] is True
    assert store.get_task(task["task_id"])["status"] == "assigned"

    gateway.authorize = AsyncMock(return_value="pi_late")
    response = await client.post("/tasks/start", json=body)

    assert response.status_code == 200
    assert response.json()["data"]["task"]["status"] == "in_progress"
    assert store.get_authorized_hold(task["task_id"])["external_reference"] == "pi_late"
