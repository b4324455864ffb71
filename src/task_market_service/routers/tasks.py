"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    envelope,
    optional_str,
    parse_json_body,
    parse_price,
    parse_query_int,
    require_bool,
    require_str,
)

if TYPE_CHECKING:
    from task_market_service.services.dispute_manager import DisputeManager
    from task_market_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def _dispute_manager() -> DisputeManager:
    state = get_app_state()
    if state.dispute_manager is None:
        msg = "DisputeManager not initialized"
        raise RuntimeError(msg)
    return state.dispute_manager


# ---------------------------------------------------------------------------
# POST /tasks — post a task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a fixed-price task and notify available taskers."""
    data = parse_json_body(await request.body())

    customer_id = require_str(data, "customerId")
    title = require_str(data, "title")
    description = require_str(data, "description")
    task_address = require_str(data, "taskAddress")
    price = parse_price(data, "fixedPrice")
    task_type = optional_str(data, "taskType")
    preferred_start_time = optional_str(data, "preferredStartTime")
    preferred_end_time = optional_str(data, "preferredEndTime")

    result = await _task_manager().create_task(
        customer_id=customer_id,
        title=title,
        description=description,
        task_address=task_address,
        price=price,
        task_type=task_type,
        preferred_start_time=preferred_start_time,
        preferred_end_time=preferred_end_time,
    )
    return envelope(result, status_code=201)


# ---------------------------------------------------------------------------
# GET /tasks — list tasks
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> JSONResponse:
    """List tasks with optional filters."""
    params = request.query_params
    offset = parse_query_int(params.get("offset"), "offset", 0)
    limit = parse_query_int(params.get("limit"), "limit", 1)

    tasks = await _task_manager().list_tasks(
        status=params.get("status"),
        customer_id=params.get("customer_id"),
        tasker_id=params.get("tasker_id"),
        offset=offset,
        limit=limit,
    )
    return envelope({"tasks": tasks})


# ---------------------------------------------------------------------------
# Lifecycle transitions (JSON body carries taskId and the caller's id)
# ---------------------------------------------------------------------------


@router.post("/tasks/accept")
async def accept_task(request: Request) -> JSONResponse:
    """Claim a posted task, first come first served."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    tasker_id = require_str(data, "taskerId")

    result = await _task_manager().accept_task(task_id, tasker_id)
    return envelope(result)


@router.post("/tasks/arrived")
async def mark_arrived(request: Request) -> JSONResponse:
    """Record the tasker's arrival."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    tasker_id = require_str(data, "taskerId")

    result = await _task_manager().mark_arrived(task_id, tasker_id)
    return envelope(result)


@router.post("/tasks/start")
async def start_task(request: Request) -> JSONResponse:
    """Start work on an assigned task."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    tasker_id = require_str(data, "taskerId")

    result = await _task_manager().start_task(task_id, tasker_id)
    return envelope(result)


@router.post("/tasks/complete")
async def complete_task(request: Request) -> JSONResponse:
    """Mark work done and request customer approval."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    tasker_id = require_str(data, "taskerId")
    notes = optional_str(data, "notes")

    result = await _task_manager().complete_task(task_id, tasker_id, notes)
    return envelope(result)


@router.post("/tasks/confirm")
async def confirm_task(request: Request) -> JSONResponse:
    """Approve (capture payment) or reject (open a dispute) a completed task."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    customer_id = require_str(data, "customerId")
    approved = require_bool(data, "approved")
    review = optional_str(data, "review")
    if review is None:
        review = optional_str(data, "feedback")
    reason = optional_str(data, "reason")

    result = await _dispute_manager().confirm_completion(
        task_id=task_id,
        customer_id=customer_id,
        approved=approved,
        rating=data.get("rating"),
        review_text=review,
        reason=reason,
    )
    return envelope(result)


@router.post("/tasks/cancel")
async def cancel_task(request: Request) -> JSONResponse:
    """Cancel a task and void its payment hold."""
    data = parse_json_body(await request.body())
    task_id = require_str(data, "taskId")
    user_id = require_str(data, "userId")
    reason = require_str(data, "reason")
    cancelled_by = require_str(data, "cancelledBy")

    result = await _task_manager().cancel_task(task_id, user_id, reason, cancelled_by)
    return envelope(result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id} — task detail (after the fixed /tasks/* paths)
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> JSONResponse:
    """Get task details with its payment hold and dispute."""
    result = await _task_manager().get_task(task_id)
    return envelope(result)
