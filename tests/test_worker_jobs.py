from __future__ import annotations

from ticketbridge.core.errors import TicketingProviderError
from ticketbridge.models.booking import Booking, ETicketStatus
from ticketbridge.tasks import worker_jobs

from .factories import make_booking, synced


def run_sync(session_factory, client, booking_id):
    return worker_jobs.sync_booking(booking_id, session_factory=session_factory, client_factory=lambda: client)


def test_sync_job_links_booking(db, session_factory, ticketing_client):
    b = make_booking(db, provider_reservation_id="R-1")
    result = run_sync(session_factory, ticketing_client, b.id)
    assert result == {"ok": True, "providerBookingId": "B-1", "alreadySynced": False}


def test_retryable_failure_requests_retry_until_cap(db, session_factory, ticketing_client, monkeypatch):
    monkeypatch.setattr(worker_jobs.settings, "SYNC_MAX_ATTEMPTS", 2)
    ticketing_client.create_booking.side_effect = TicketingProviderError("down")
    b = make_booking(db, provider_reservation_id="R-1")

    first = run_sync(session_factory, ticketing_client, b.id)
    second = run_sync(session_factory, ticketing_client, b.id)
    third = run_sync(session_factory, ticketing_client, b.id)

    assert first["retry"] is True and first["attempts"] == 1
    assert second["retry"] is False and second["attempts"] == 2
    assert third == {"ok": False, "error": "max_attempts", "attempts": 2}
    assert ticketing_client.create_booking.call_count == 2


def test_synced_booking_is_skipped(db, session_factory, ticketing_client):
    b = synced(db)
    result = run_sync(session_factory, ticketing_client, b.id)
    assert result["alreadySynced"] is True
    ticketing_client.create_booking.assert_not_called()


def test_find_unsynced_respects_attempt_cap(db, session_factory, monkeypatch):
    monkeypatch.setattr(worker_jobs.settings, "SYNC_MAX_ATTEMPTS", 3)
    due = make_booking(db, sync_attempts=1)
    make_booking(db, sync_attempts=3)
    synced(db)
    make_booking(db, payment_status="pending")

    assert worker_jobs.find_unsynced_bookings(session_factory=session_factory) == [due.id]


def test_poll_pending_etickets(db, session_factory, ticketing_client):
    ready = synced(db, provider_booking_id="B-READY", eticket_status=ETicketStatus.PROCESSING)
    waiting = synced(db, provider_booking_id="B-WAIT")
    synced(db, provider_booking_id="B-DONE", eticket_status=ETicketStatus.AVAILABLE, eticket_urls=[{"url": "u"}])

    def _tickets(provider_booking_id):
        if provider_booking_id == "B-READY":
            return {"tickets": [{"url": "t"}], "zip_url": None, "checksums": []}
        return {"tickets": [], "zip_url": None, "checksums": []}

    ticketing_client.get_tickets.side_effect = _tickets
    result = worker_jobs.poll_pending_etickets(session_factory=session_factory, client_factory=lambda: ticketing_client)

    assert result == {"checked": 2, "available": 1}
    db.expire_all()
    assert db.get(Booking, ready.id).eticket_status == ETicketStatus.AVAILABLE
    assert db.get(Booking, waiting.id).eticket_status == ETicketStatus.PROCESSING
