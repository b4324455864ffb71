"""API routers."""

from task_market_service.routers import disputes, health, tasks

__all__ = ["disputes", "health", "tasks"]
