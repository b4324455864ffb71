"""Unit tests for PaymentCoordinator."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from task_market_service.core.exceptions import ServiceError
from task_market_service.services.payment_coordinator import PaymentCoordinator
from task_market_service.services.task_store import TaskStore
from tests.helpers import CUSTOMER_ID, TASKER_X_ID, task_row


def _assigned(store: TaskStore, task_id: str = "t-1", **overrides: object) -> dict[str, object]:
    store.insert_task(
        task_row(
            task_id,
            "assigned",
            tasker_id=TASKER_X_ID,
            payment_action_pending="authorize",
            **overrides,
        )
    )
    task = store.get_task(task_id)
    assert task is not None
    return task


def _gateway() -> AsyncMock:
    gateway = AsyncMock()
    gateway.authorize = AsyncMock(return_value="pi_123")
    gateway.capture = AsyncMock(return_value=True)
    gateway.void = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def store(tmp_path):
    task_store = TaskStore(db_path=str(tmp_path / "task-market.db"))
    yield task_store
    task_store.close()


@pytest.mark.unit
async def test_authorize_for_task_records_hold_and_clears_flag(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store, price="42.50")

    hold = await coordinator.authorize_for_task(task)

    gateway.authorize.assert_awaited_once_with(Decimal("42.50"), "t-1", CUSTOMER_ID, TASKER_X_ID)
    assert hold["status"] == "authorized"
    assert hold["external_reference"] == "pi_123"
    assert hold["amount"] == "42.50"
    assert store.get_authorized_hold("t-1")["hold_id"] == hold["hold_id"]
    assert store.get_task("t-1")["payment_action_pending"] is None


@pytest.mark.unit
async def test_authorize_twice_reuses_existing_hold(store) -> None:
    coordinator = PaymentCoordinator(payment_gateway=_gateway(), store=store)
    task = _assigned(store)

    first = await coordinator.authorize_for_task(task)
    second = await coordinator.authorize_for_task(task)

    assert second["hold_id"] == first["hold_id"]
    assert len(store.list_holds("t-1")) == 1


@pytest.mark.unit
async def test_authorize_failure_maps_to_upstream_failure(store) -> None:
    gateway = _gateway()
    gateway.authorize = AsyncMock(side_effect=ConnectionError("down"))
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)

    with pytest.raises(ServiceError) as exc_info:
        await coordinator.authorize_for_task(task)

    assert exc_info.value.error == "upstream_failure"
    assert exc_info.value.status_code == 502
    assert store.get_authorized_hold("t-1") is None
    assert store.get_task("t-1")["payment_action_pending"] == "authorize"


@pytest.mark.unit
async def test_gateway_service_error_propagates_unchanged(store) -> None:
    expected = ServiceError("upstream_failure", "processor said no", 502, {"x": 1})
    gateway = _gateway()
    gateway.capture = AsyncMock(side_effect=expected)
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)

    with pytest.raises(ServiceError) as exc_info:
        await coordinator.capture_hold({"external_reference": "pi_1"})

    assert exc_info.value is expected


@pytest.mark.unit
async def test_void_for_task_voids_and_clears_flag(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)
    await coordinator.authorize_for_task(task)
    store.update_task("t-1", {"payment_action_pending": "void"}, expected_status=None)

    hold = await coordinator.void_for_task("t-1", "task_cancelled")

    gateway.void.assert_awaited_once_with("pi_123")
    assert hold is not None
    assert hold["status"] == "voided"
    assert hold["release_reason"] == "task_cancelled"
    assert store.get_task("t-1")["payment_action_pending"] is None


@pytest.mark.unit
async def test_void_for_task_without_hold_is_noop(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    store.insert_task(task_row("t-1"))

    assert await coordinator.void_for_task("t-1", "task_cancelled") is None
    gateway.void.assert_not_awaited()


@pytest.mark.unit
async def test_capture_for_task_marks_captured(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    await coordinator.authorize_for_task(_assigned(store))

    hold = await coordinator.capture_for_task("t-1", "customer_approved")

    gateway.capture.assert_awaited_once_with("pi_123")
    assert hold["status"] == "captured"

    # Already captured: nothing left to capture
    again = await coordinator.capture_for_task("t-1", "customer_approved")
    assert again["hold_id"] == hold["hold_id"]
    gateway.capture.assert_awaited_once()


@pytest.mark.unit
async def test_retry_pending_authorization_succeeds(store) -> None:
    gateway = _gateway()
    gateway.authorize = AsyncMock(side_effect=[ConnectionError("down"), "pi_retry"])
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)

    with pytest.raises(ServiceError):
        await coordinator.authorize_for_task(task)

    refreshed = await coordinator.retry_pending_payment(store.get_task("t-1"))

    assert refreshed["payment_action_pending"] is None
    assert store.get_authorized_hold("t-1")["external_reference"] == "pi_retry"


@pytest.mark.unit
async def test_retry_failure_keeps_flag(store) -> None:
    gateway = _gateway()
    gateway.authorize = AsyncMock(side_effect=ConnectionError("down"))
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)

    result = await coordinator.retry_pending_payment(task)

    assert result["payment_action_pending"] == "authorize"
    assert store.get_task("t-1")["payment_action_pending"] == "authorize"


@pytest.mark.unit
async def test_retry_pending_void_after_cancellation(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    await coordinator.authorize_for_task(_assigned(store))
    store.update_task(
        "t-1", {"status": "cancelled", "payment_action_pending": "void"}, expected_status=None
    )

    refreshed = await coordinator.retry_pending_payment(store.get_task("t-1"))

    assert refreshed["payment_action_pending"] is None
    assert store.get_latest_hold("t-1")["status"] == "voided"


@pytest.mark.unit
async def test_stale_authorize_flag_on_cancelled_task_is_cleared(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    store.insert_task(
        task_row("t-1", "cancelled", tasker_id=TASKER_X_ID, payment_action_pending="authorize")
    )
    task = store.get_task("t-1")

    refreshed = await coordinator.retry_pending_payment(task)

    assert refreshed["payment_action_pending"] is None
    gateway.authorize.assert_not_awaited()


@pytest.mark.unit
async def test_set_payment_gateway_replaces_client(store) -> None:
    first = _gateway()
    second = _gateway()
    second.authorize = AsyncMock(return_value="pi_second")
    coordinator = PaymentCoordinator(payment_gateway=first, store=store)

    coordinator.set_payment_gateway(second)
    hold = await coordinator.authorize_for_task(_assigned(store))

    first.authorize.assert_not_awaited()
    assert hold["external_reference"] == "pi_second"


@pytest.mark.unit
async def test_hold_authorized_after_cancellation_is_voided(store) -> None:
    gateway = _gateway()
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)
    store.update_task(
        "t-1", {"status": "cancelled", "payment_action_pending": "void"}, expected_status=None
    )

    hold = await coordinator.authorize_for_task(task)

    assert hold["status"] == "voided"
    gateway.void.assert_awaited_once_with("pi_123")
    assert store.get_authorized_hold("t-1") is None
    assert store.get_task("t-1")["payment_action_pending"] is None


@pytest.mark.unit
async def test_failed_void_of_late_hold_stays_flagged(store) -> None:
    gateway = _gateway()
    gateway.void = AsyncMock(side_effect=TimeoutError("processor down"))
    coordinator = PaymentCoordinator(payment_gateway=gateway, store=store)
    task = _assigned(store)
    store.update_task("t-1", {"status": "cancelled"}, expected_status=None)

    hold = await coordinator.authorize_for_task(task)

    assert hold["status"] == "authorized"
    assert store.get_task("t-1")["payment_action_pending"] == "void"
    assert store.count_pending_payment_actions() == 1


@pytest.mark.unit
async def test_hold_timestamps_carry_microseconds(store) -> None:
    coordinator = PaymentCoordinator(payment_gateway=_gateway(), store=store)

    hold = await coordinator.authorize_for_task(_assigned(store))
    voided = await coordinator.void_for_task("t-1", "task_cancelled")

    assert hold["created_at"].endswith("Z")
    assert len(hold["created_at"]) == len("2026-03-01T10:15:00.000000Z")
    assert len(voided["released_at"]) == len("2026-03-01T10:15:00.000000Z")
