"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_market_service.clients.payment_gateway import StripePaymentGateway
from task_market_service.clients.push_client import HttpPushClient, LogPushClient
from task_market_service.config import get_settings
from task_market_service.core.state import init_app_state
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.dispute_manager import DisputeManager
from task_market_service.services.notification_dispatcher import NotificationDispatcher
from task_market_service.services.payment_coordinator import PaymentCoordinator
from task_market_service.services.task_manager import TaskManager
from task_market_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from task_market_service.clients.push_client import PushClient


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = TaskStore(db_path=settings.database.path)
    state.task_store = store

    # Payment processor (Stripe, manual capture)
    payment_gateway = StripePaymentGateway(
        api_key=settings.payments.api_key,
        currency=settings.payments.currency,
        timeout_seconds=settings.payments.timeout_seconds,
    )
    state.payment_gateway = payment_gateway
    payment_coordinator = PaymentCoordinator(payment_gateway=payment_gateway, store=store)
    state.payment_coordinator = payment_coordinator

    # Push backend is chosen once, here
    push_client: PushClient
    if settings.notifications.backend == "http":
        push_client = HttpPushClient(
            base_url=settings.notifications.base_url,
            send_path=settings.notifications.send_path,
            server_key=settings.notifications.server_key,
            timeout_seconds=settings.notifications.timeout_seconds,
        )
    else:
        push_client = LogPushClient()
    state.push_client = push_client
    notification_dispatcher = NotificationDispatcher(
        push_client=push_client,
        timeout_seconds=settings.notifications.timeout_seconds,
        on_unregistered=store.disable_push_tokens,
    )
    state.notification_dispatcher = notification_dispatcher

    task_manager = TaskManager(
        store=store,
        payment_coordinator=payment_coordinator,
        notification_dispatcher=notification_dispatcher,
        max_title_length=settings.limits.max_title_length,
        max_description_length=settings.limits.max_description_length,
        max_reason_length=settings.limits.max_reason_length,
    )
    state.task_manager = task_manager
    state.dispute_manager = DisputeManager(
        store=store,
        payment_coordinator=payment_coordinator,
        notification_dispatcher=notification_dispatcher,
        admin_ids=settings.disputes.admin_ids,
        max_description_length=settings.limits.max_description_length,
        max_reason_length=settings.limits.max_reason_length,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "payments_backend": settings.payments.backend,
            "notifications_backend": settings.notifications.backend,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Let in-flight notifications finish before closing clients
    await notification_dispatcher.drain()

    task_manager.close()

    if state.push_client is not None:
        await state.push_client.close()
    if state.payment_gateway is not None:
        await state.payment_gateway.close()
