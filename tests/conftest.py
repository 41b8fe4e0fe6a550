"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files: pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from travel_bookings.deps import (
    can_approve_listing,
    can_read_booking,
    can_read_or_manage_booking,
    can_reschedule_booking,
    can_send_notifications,
    can_write_booking,
    can_write_listing,
    get_current_user,
    get_email_client,
    get_mpesa_client,
    get_now,
)
from travel_bookings.routers import booking, listings, notifications, payments, saved

from .factories import NOW, make_admin, make_customer, make_host, stk_push_response

ROUTERS = (
    listings.router,
    booking.router,
    payments.router,
    notifications.router,
    saved.router,
)

# ---------------------------------------------------------------------------
# Default no-op client mocks: prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_mpesa_client():
    mock = MagicMock()
    mock.stk_push = AsyncMock(return_value=stk_push_response())
    return mock


def _noop_email_client():
    mock = MagicMock()
    mock.send = AsyncMock(return_value={"id": "email_123"})
    return mock


def _include_routers(app: FastAPI) -> None:
    for router in ROUTERS:
        app.include_router(router)


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, mpesa_client=None, email_client=None, now=NOW) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally and the clock pinned to `now`.

    Pass `mpesa_client` / `email_client` to inject custom mocks.
    Defaults to no-op mocks that accept every call, avoiding real HTTP calls.
    """
    app = FastAPI()
    _include_routers(app)

    async def _user():
        return current_user

    for dep in (
        can_read_booking,
        can_read_or_manage_booking,
        can_write_booking,
        can_reschedule_booking,
        can_write_listing,
        can_approve_listing,
        can_send_notifications,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    mc = mpesa_client if mpesa_client is not None else _noop_mpesa_client()
    ec = email_client if email_client is not None else _noop_email_client()
    app.dependency_overrides[get_mpesa_client] = lambda: mc
    app.dependency_overrides[get_email_client] = lambda: ec
    app.dependency_overrides[get_now] = lambda: now

    return app


@pytest.fixture(autouse=True)
def availability_cache():
    """Keep redis out of every test; the mocks are returned for assertions."""
    with (
        patch(
            "travel_bookings.routers.booking.invalidate_availability_cache",
            new_callable=AsyncMock,
        ) as invalidate,
        patch(
            "travel_bookings.routers.listings.get_availability_cache",
            new_callable=AsyncMock,
            return_value=None,
        ) as get,
        patch(
            "travel_bookings.routers.listings.set_availability_cache",
            new_callable=AsyncMock,
        ) as set_,
    ):
        yield {"invalidate": invalidate, "get": get, "set": set_}


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


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
    _include_routers(app)
    return app


@pytest.fixture()
def client_factory():
    def _make(
        current_user,
        mpesa_client=None,
        email_client=None,
        now=NOW,
    ) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                mpesa_client=mpesa_client,
                email_client=email_client,
                now=now,
            ),
            raise_server_exceptions=True,
        )

    return _make
