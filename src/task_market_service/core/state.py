"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_market_service.clients.payment_gateway import PaymentGateway
    from task_market_service.clients.push_client import PushClient
    from task_market_service.services.dispute_manager import DisputeManager
    from task_market_service.services.notification_dispatcher import NotificationDispatcher
    from task_market_service.services.payment_coordinator import PaymentCoordinator
    from task_market_service.services.task_manager import TaskManager
    from task_market_service.services.task_store import TaskStore


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_store: TaskStore | None = None
    task_manager: TaskManager | None = None
    dispute_manager: DisputeManager | None = None
    payment_gateway: PaymentGateway | None = None
    payment_coordinator: PaymentCoordinator | None = None
    push_client: PushClient | None = None
    notification_dispatcher: NotificationDispatcher | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service dependency references in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        payment_coordinator = self.__dict__.get("payment_coordinator")
        if name == "payment_gateway" and payment_coordinator is not None:
            payment_coordinator.set_payment_gateway(value)
        elif name == "payment_coordinator":
            payment_gateway = self.__dict__.get("payment_gateway")
            if payment_gateway is not None:
                value.set_payment_gateway(payment_gateway)

        notification_dispatcher = self.__dict__.get("notification_dispatcher")
        if name == "push_client" and notification_dispatcher is not None:
            notification_dispatcher.set_push_client(value)
        elif name == "notification_dispatcher":
            push_client = self.__dict__.get("push_client")
            if push_client is not None:
                value.set_push_client(push_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
