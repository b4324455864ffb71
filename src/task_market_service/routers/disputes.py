"""Dispute endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    envelope,
    optional_str,
    parse_json_body,
    require_str,
)

if TYPE_CHECKING:
    from task_market_service.services.dispute_manager import DisputeManager

router = APIRouter()


def _dispute_manager() -> DisputeManager:
    state = get_app_state()
    if state.dispute_manager is None:
        msg = "DisputeManager not initialized"
        raise RuntimeError(msg)
    return state.dispute_manager


@router.get("/disputes/{dispute_id}")
async def get_dispute(dispute_id: str) -> JSONResponse:
    """Get a dispute by ID."""
    result = await _dispute_manager().get_dispute(dispute_id)
    return envelope(result)


@router.post("/disputes/{dispute_id}/resolve")
async def resolve_dispute(dispute_id: str, request: Request) -> JSONResponse:
    """Settle an open dispute by capturing or voiding the payment hold."""
    data = parse_json_body(await request.body())
    admin_id = require_str(data, "adminId")
    resolution = require_str(data, "resolution")
    notes = optional_str(data, "notes")

    result = await _dispute_manager().resolve_dispute(dispute_id, admin_id, resolution, notes)
    return envelope(result)
