"""
Shared pytest fixtures available to every test file automatically.

Each test gets a fresh in-memory SQLite database; external clients are
MagicMocks so no test ever makes a real HTTP call.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketbridge.api.deps import get_current_actor, get_refund_service, get_ticketing_client
from ticketbridge.api.errors import install_error_handlers
from ticketbridge.api.v1.api import api_router
from ticketbridge.db.session import Base, get_db
from ticketbridge.services.refund_log_service import RefundLogService

# Register every table on Base.metadata
from ticketbridge.models import activity_log, booking, cancellation, download_log, refund_log  # noqa: F401

from .factories import make_admin

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


# ---------------------------------------------------------------------------
# External clients
# ---------------------------------------------------------------------------


@pytest.fixture()
def ticketing_client():
    mock = MagicMock()
    mock.create_reservation.return_value = {"reservation_id": "R-NEW"}
    mock.submit_guests.return_value = {}
    mock.create_booking.return_value = {
        "booking_id": "B-1",
        "booking_code": "CODE-1",
        "financial_status": "OPEN",
        "logistic_status": "COMPLETED",
    }
    mock.get_tickets.return_value = {"tickets": [], "zip_url": None, "checksums": []}
    return mock


@pytest.fixture()
def refund_processor():
    mock = MagicMock()
    mock.create_refund.return_value = {"refund_id": "CYBS-1", "status": "PENDING", "amount": "0.00", "currency": "EUR", "raw": {}}
    mock.get_refund.return_value = {"refund_id": "CYBS-1", "status": "TRANSMITTED", "raw": {}}
    mock.void_refund.return_value = {"refund_id": "CYBS-1", "status": "VOIDED", "raw": {}}
    return mock


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(db, actor, ticketing_client=None, refund_processor=None) -> FastAPI:
    """
    Fresh FastAPI app wired to the test session, with the bearer-token actor
    overridden to return `actor` unconditionally.
    """
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(api_router)

    def _db():
        yield db

    tc = ticketing_client if ticketing_client is not None else MagicMock()
    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_current_actor] = lambda: actor
    app.dependency_overrides[get_ticketing_client] = lambda: tc
    app.dependency_overrides[get_refund_service] = lambda: RefundLogService(db, processor=refund_processor or MagicMock())
    return app


@pytest.fixture()
def client_factory(db, ticketing_client, refund_processor):
    def _make(actor=None, **overrides) -> TestClient:
        return TestClient(
            build_app(
                db,
                actor or make_admin(),
                ticketing_client=overrides.get("ticketing_client", ticketing_client),
                refund_processor=overrides.get("refund_processor", refund_processor),
            ),
            raise_server_exceptions=True,
        )

    return _make
