"""Shared request validation helpers for task market routers."""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any

from fastapi.responses import JSONResponse

from task_market_service.core.exceptions import ServiceError


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "invalid_input",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "invalid_input",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_str(data: dict[str, Any], field_name: str) -> str:
    """Extract a required, non-empty string field."""
    if field_name not in data or data[field_name] is None:
        raise ServiceError(
            "invalid_input",
            f"Missing required field: {field_name}",
            400,
            {"field": field_name},
        )

    value = data[field_name]
    if not isinstance(value, str):
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must be a string",
            400,
            {"field": field_name},
        )

    if not value.strip():
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must not be empty",
            400,
            {"field": field_name},
        )

    return value


def optional_str(data: dict[str, Any], field_name: str) -> str | None:
    """Extract an optional string field. Missing and null both mean None."""
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must be a string",
            400,
            {"field": field_name},
        )
    return value


def require_bool(data: dict[str, Any], field_name: str) -> bool:
    """Extract a required boolean field."""
    value = data.get(field_name)
    if not isinstance(value, bool):
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must be a boolean",
            400,
            {"field": field_name},
        )
    return value


def parse_price(data: dict[str, Any], field_name: str) -> Decimal:
    """
    Extract a monetary amount as a Decimal.

    Accepts JSON numbers and numeric strings; booleans are rejected.
    Positivity is checked by the service layer.
    """
    if field_name not in data or data[field_name] is None:
        raise ServiceError(
            "invalid_input",
            f"Missing required field: {field_name}",
            400,
            {"field": field_name},
        )

    value = data[field_name]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must be a number",
            400,
            {"field": field_name},
        )

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ServiceError(
            "invalid_input",
            f"Field '{field_name}' must be a number",
            400,
            {"field": field_name},
        ) from exc
    return amount


def parse_query_int(raw: str | None, name: str, minimum: int) -> int | None:
    """Parse an optional integer query parameter with a lower bound."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("invalid_input", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("invalid_input", f"{name} must be >= {minimum}", 400, {})
    return value


def envelope(data: dict[str, Any], status_code: int = 200) -> JSONResponse:
    """Wrap a result in the success envelope."""
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})
