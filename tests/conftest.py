"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files, pytest discovers this by convention.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from loguru import logger

from app.availability import AvailabilityChecker
from app.checkout import OrderCheckoutTransaction
from app.db import Database
from app.deps import (
    can_place_order,
    can_read_or_manage_booking,
    can_write_booking,
    get_availability_checker,
    get_checkout,
    get_current_user,
    get_state_machine,
    get_sweeper,
    require_admin,
)
from app.repository import Repository
from app.routers.booking import router as booking_router
from app.routers.orders import router as orders_router
from app.state_machine import BookingStateMachine
from app.sweeper import ExpirationSweeper

from .factories import FrozenClock, make_admin, make_customer, make_provider

# ---------------------------------------------------------------------------
# Core components against a fresh in-memory database
# ---------------------------------------------------------------------------


@pytest.fixture()
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture()
def repository(database):
    return Repository(database)


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def log_records():
    """Loguru records emitted while the test runs."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture()
def notifier():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=None)
    return mock


@pytest.fixture()
def availability(repository, clock):
    return AvailabilityChecker(repository, clock, default_max_daily=5)


@pytest.fixture()
def state_machine(repository, availability, notifier, clock):
    return BookingStateMachine(
        repository, availability, notifier, clock, pending_ttl=timedelta(hours=24)
    )


@pytest.fixture()
def sweeper(repository, state_machine, notifier, clock):
    return ExpirationSweeper(repository, state_machine, notifier, clock, batch_limit=500)


@pytest.fixture()
def checkout(repository, notifier):
    return OrderCheckoutTransaction(repository, notifier, timeout=5.0, retry_backoff=0)


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def _noop_components() -> dict:
    state_machine = MagicMock()
    state_machine.request_booking = AsyncMock()
    state_machine.transition = AsyncMock()
    state_machine.get_booking = AsyncMock()
    state_machine.get_history = AsyncMock(return_value=[])
    availability = MagicMock()
    availability.check = AsyncMock()
    sweeper = MagicMock()
    sweeper.run_once = AsyncMock(return_value=0)
    checkout = MagicMock()
    checkout.checkout = AsyncMock()
    return dict(
        state_machine=state_machine,
        availability=availability,
        sweeper=sweeper,
        checkout=checkout,
    )


def build_app(current_user, **components) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `state_machine` / `availability` / `sweeper` / `checkout` to inject
    custom mocks. Defaults to AsyncMock-backed no-ops.
    """
    app = FastAPI()
    app.include_router(booking_router)
    app.include_router(orders_router)

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_write_booking,
        can_place_order,
        require_admin,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    resolved = {**_noop_components(), **components}
    app.dependency_overrides[get_state_machine] = lambda: resolved["state_machine"]
    app.dependency_overrides[get_availability_checker] = lambda: resolved["availability"]
    app.dependency_overrides[get_sweeper] = lambda: resolved["sweeper"]
    app.dependency_overrides[get_checkout] = lambda: resolved["checkout"]

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def provider_client():
    return TestClient(build_app(make_provider()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO auth overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    app.include_router(booking_router)
    app.include_router(orders_router)
    components = _noop_components()
    app.dependency_overrides[get_state_machine] = lambda: components["state_machine"]
    app.dependency_overrides[get_availability_checker] = lambda: components["availability"]
    app.dependency_overrides[get_sweeper] = lambda: components["sweeper"]
    app.dependency_overrides[get_checkout] = lambda: components["checkout"]
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, **components) -> TestClient:
        return TestClient(
            build_app(current_user, **components),
            raise_server_exceptions=True,
        )

    return _make
