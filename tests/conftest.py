"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files — pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.deps import (
    can_manage_payouts,
    can_read_or_manage_booking,
    get_current_user,
    get_payments_client,
)
from app.routers import booking, cron, host

from .factories import make_admin, make_guest, make_host

# ---------------------------------------------------------------------------
# Default no-op mocks — prevent real HTTP / Redis calls in tests
# ---------------------------------------------------------------------------


def _noop_payments_client():
    mock = MagicMock()
    mock.refund_booking = AsyncMock(return_value=True)
    return mock


@pytest.fixture(autouse=True)
def no_redis():
    """Every cache/lock helper behaves as if Redis were empty and free."""
    with (
        patch("app.routers.host.get_balance_cache", AsyncMock(return_value=None)),
        patch("app.routers.host.set_balance_cache", AsyncMock()),
        patch("app.routers.host.invalidate_balance_cache", AsyncMock()),
        patch("app.settlement.invalidate_balance_cache", AsyncMock()),
        patch("app.sweep.acquire_sweep_lock", AsyncMock(return_value=True)),
        patch("app.sweep.release_sweep_lock", AsyncMock()),
    ):
        yield


# ---------------------------------------------------------------------------
# App builder — used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, payments_client=None) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `payments_client` to inject a custom mock.
    """
    app = FastAPI()
    app.include_router(booking.router)
    app.include_router(cron.router)
    app.include_router(host.router)

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_manage_payouts,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    pc = payments_client if payments_client is not None else _noop_payments_client()
    app.dependency_overrides[get_payments_client] = lambda: pc

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def guest_client():
    return TestClient(build_app(make_guest()), raise_server_exceptions=True)


@pytest.fixture()
def host_client():
    return TestClient(build_app(make_host()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    app.include_router(booking.router)
    app.include_router(cron.router)
    app.include_router(host.router)
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, payments_client=None) -> TestClient:
        return TestClient(
            build_app(current_user, payments_client=payments_client),
            raise_server_exceptions=True,
        )

    return _make
