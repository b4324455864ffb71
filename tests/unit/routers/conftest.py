"""Router test fixtures with a mocked payment processor and push gateway."""

from __future__ import annotations

import itertools
import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_market_service.app import create_app
from task_market_service.config import clear_settings_cache
from task_market_service.core.lifespan import lifespan
from task_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import ADMIN_ID, CUSTOMER_ID, TASKER_X_ID, TASKER_Y_ID, seed_user

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from task_market_service.services.notification_dispatcher import NotificationDispatcher
    from task_market_service.services.task_store import TaskStore


@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    config_content = f"""\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
payments:
  backend: "stripe"
  api_key: "sk_test_unused"
  currency: "usd"
  timeout_seconds: 5
notifications:
  backend: "log"
  base_url: "http://localhost:9999"
  send_path: "/send"
  server_key: null
  timeout_seconds: 2
disputes:
  admin_ids:
    - "{ADMIN_ID}"
request:
  max_body_size: 4096
limits:
  max_title_length: 200
  max_description_length: 2000
  max_reason_length: 300
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock payment gateway — default: every operation succeeds
        references = itertools.count(1)
        mock_gateway = AsyncMock()
        mock_gateway.authorize = AsyncMock(side_effect=lambda *_args: f"pi_test_{next(references)}")
        mock_gateway.capture = AsyncMock(return_value=True)
        mock_gateway.void = AsyncMock(return_value=True)
        mock_gateway.close = AsyncMock()
        state.payment_gateway = mock_gateway

        # Mock push client — default: every send succeeds
        mock_push = AsyncMock()
        mock_push.send = AsyncMock(return_value="msg-1")
        mock_push.close = AsyncMock()
        state.push_client = mock_push

        assert state.task_store is not None
        seed_user(state.task_store, CUSTOMER_ID, is_available=False)
        seed_user(state.task_store, TASKER_X_ID)
        seed_user(state.task_store, TASKER_Y_ID)

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def store(app: Any) -> TaskStore:
    """The live TaskStore behind the app."""
    state = get_app_state()
    assert state.task_store is not None
    return state.task_store


@pytest.fixture
def gateway(app: Any) -> AsyncMock:
    """The mocked payment gateway."""
    mock: AsyncMock = get_app_state().payment_gateway  # type: ignore[assignment]
    return mock


@pytest.fixture
def push(app: Any) -> AsyncMock:
    """The mocked push client."""
    mock: AsyncMock = get_app_state().push_client  # type: ignore[assignment]
    return mock


@pytest.fixture
def dispatcher(app: Any) -> NotificationDispatcher:
    """The live notification dispatcher (drain() to wait for background sends)."""
    state = get_app_state()
    assert state.notification_dispatcher is not None
    return state.notification_dispatcher


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def gateway_authorize_fails(gateway: AsyncMock) -> None:
    """Make the payment processor reject authorizations."""
    gateway.authorize = AsyncMock(side_effect=ConnectionError("processor unreachable"))


@pytest.fixture
def gateway_void_fails(gateway: AsyncMock) -> None:
    """Make the payment processor fail voids."""
    gateway.void = AsyncMock(side_effect=TimeoutError("processor timed out"))


@pytest.fixture
def gateway_capture_fails(gateway: AsyncMock) -> None:
    """Make the payment processor fail captures."""
    gateway.capture = AsyncMock(side_effect=ConnectionError("processor unreachable"))
