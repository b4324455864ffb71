"""Service layer components."""

from task_market_service.services.dispute_manager import DisputeManager
from task_market_service.services.notification_dispatcher import NotificationDispatcher
from task_market_service.services.payment_coordinator import PaymentCoordinator
from task_market_service.services.task_manager import TaskManager
from task_market_service.services.task_store import TaskStore

__all__ = [
    "DisputeManager",
    "NotificationDispatcher",
    "PaymentCoordinator",
    "TaskManager",
    "TaskStore",
]
