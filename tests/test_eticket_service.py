from __future__ import annotations

import pytest
from sqlalchemy import select

from ticketbridge.core.errors import InvalidStateError, NotFoundError, TicketingProviderError, ValidationError
from ticketbridge.models.booking import Booking, BookingStatus, ETicketStatus
from ticketbridge.models.download_log import TicketDownloadLog
from ticketbridge.services.eticket_service import ETicketAvailabilityService, ticket_filename, zip_filename
from ticketbridge.services.ticketing_client import DownloadedFile
from ticketbridge.stores.booking_store import BookingStore

from .factories import OTHER_CUSTOMER_ID, CUSTOMER_ID, make_booking, synced

TICKETS = [{"order_item_id": "OI-1", "url": "https://cdn/t1.pdf"}, {"order_item_id": "OI-2", "url": "https://cdn/t2.pdf"}]


def booking_row(db, booking_id) -> Booking:
    db.expire_all()
    return db.get(Booking, booking_id)


def downloads(db) -> list[TicketDownloadLog]:
    return db.execute(select(TicketDownloadLog).order_by(TicketDownloadLog.attempted_at)).scalars().all()


class TestCheckAvailability:
    def test_unsynced_booking_is_pending_without_network(self, db, ticketing_client):
        b = make_booking(db)
        r = ETicketAvailabilityService(db, ticketing_client).check_availability(b.id)

        assert r.status == ETicketStatus.PENDING
        assert r.available is False
        assert ticketing_client.method_calls == []

    def test_cached_urls_served_without_network(self, db, ticketing_client):
        b = synced(db, eticket_status=ETicketStatus.AVAILABLE, eticket_urls=TICKETS, zip_download_url="https://cdn/all.zip")
        r = ETicketAvailabilityService(db, ticketing_client).check_availability(b.id)

        assert r.available is True
        assert r.ticket_urls == TICKETS
        assert r.zip_url == "https://cdn/all.zip"
        ticketing_client.get_tickets.assert_not_called()

    def test_tickets_returned_are_persisted(self, db, ticketing_client):
        ticketing_client.get_tickets.return_value = {"tickets": TICKETS, "zip_url": "https://cdn/all.zip", "checksums": ["a", "b"]}
        b = synced(db)

        r = ETicketAvailabilityService(db, ticketing_client).check_availability(b.id)

        ticketing_client.get_tickets.assert_called_once_with("B123")
        assert r.status == ETicketStatus.AVAILABLE
        row = booking_row(db, b.id)
        assert row.eticket_status == ETicketStatus.AVAILABLE
        assert row.eticket_urls == TICKETS
        assert row.zip_download_url == "https://cdn/all.zip"
        assert row.ticket_checksums == ["a", "b"]
        assert row.eticket_available_at is not None

    def test_no_tickets_marks_processing_and_caches(self, db, ticketing_client):
        b = synced(db)
        svc = ETicketAvailabilityService(db, ticketing_client, check_ttl_seconds=300)

        first = svc.check_availability(b.id)
        second = svc.check_availability(b.id)

        assert first.status == second.status == ETicketStatus.PROCESSING
        assert ticketing_client.get_tickets.call_count == 1
        row = booking_row(db, b.id)
        assert row.eticket_status == ETicketStatus.PROCESSING
        assert row.eticket_checked_at is not None

    def test_expired_processing_window_queries_again(self, db, ticketing_client):
        b = synced(db)
        svc = ETicketAvailabilityService(db, ticketing_client, check_ttl_seconds=0)
        svc.check_availability(b.id)
        svc.check_availability(b.id)
        assert ticketing_client.get_tickets.call_count == 2

    def test_force_skips_processing_window(self, db, ticketing_client):
        b = synced(db)
        svc = ETicketAvailabilityService(db, ticketing_client, check_ttl_seconds=300)
        svc.check_availability(b.id)
        svc.check_availability(b.id, force=True)
        assert ticketing_client.get_tickets.call_count == 2

    def test_provider_error_is_cached_as_processing(self, db, ticketing_client):
        ticketing_client.get_tickets.side_effect = TicketingProviderError("502 from provider")
        b = synced(db)
        svc = ETicketAvailabilityService(db, ticketing_client, check_ttl_seconds=300)

        first = svc.check_availability(b.id)
        second = svc.check_availability(b.id)

        assert first.status == second.status == ETicketStatus.PROCESSING
        assert ticketing_client.get_tickets.call_count == 1
        row = booking_row(db, b.id)
        assert row.eticket_status == ETicketStatus.PROCESSING
        assert row.eticket_checked_at is not None

    def test_unknown_booking(self, db, ticketing_client):
        with pytest.raises(NotFoundError):
            ETicketAvailabilityService(db, ticketing_client).check_availability("missing")


class TestDownloadSingle:
    def test_success_logs_and_counts(self, db, ticketing_client):
        ticketing_client.download_ticket.return_value = DownloadedFile(content=b"%PDF-1.4", content_type=None)
        b = synced(db)

        f = ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "tok/en")

        ticketing_client.download_ticket.assert_called_once_with("B123", "OI-1", "tok/en")
        assert f.content == b"%PDF-1.4"
        assert f.size == 8
        assert f.content_type == "application/pdf"
        assert f.filename == ticket_filename(b.booking_ref, "OI-1") == f"ticket-{b.booking_ref}-OI-1.pdf"
        logs = downloads(db)
        assert [(l.kind, l.success, l.order_item_id) for l in logs] == [("single", True, "OI-1")]
        row = booking_row(db, b.id)
        assert row.download_count == 1
        assert row.first_downloaded_at is not None
        assert row.download_error is None

    def test_provider_content_type_is_kept(self, db, ticketing_client):
        ticketing_client.download_ticket.return_value = DownloadedFile(content=b"x", content_type="application/octet-stream")
        b = synced(db)
        f = ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "t")
        assert f.content_type == "application/octet-stream"

    def test_failure_is_logged_and_raised(self, db, ticketing_client):
        ticketing_client.download_ticket.side_effect = TicketingProviderError("Ticket download failed with status 404", status_code=404)
        b = synced(db)

        with pytest.raises(TicketingProviderError):
            ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "t")

        logs = downloads(db)
        assert len(logs) == 1
        assert logs[0].success is False
        assert "404" in logs[0].error_message
        row = booking_row(db, b.id)
        assert row.download_count == 0
        assert "404" in row.download_error
        assert row.last_download_attempt_at is not None

    def test_unsynced_booking_is_rejected_and_logged(self, db, ticketing_client):
        b = make_booking(db)
        with pytest.raises(InvalidStateError):
            ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "t")
        ticketing_client.download_ticket.assert_not_called()
        assert downloads(db)[0].success is False

    def test_token_required(self, db, ticketing_client):
        b = synced(db)
        with pytest.raises(ValidationError):
            ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "")

    def test_log_failure_never_blocks_download(self, db, ticketing_client, monkeypatch):
        def _boom(self, *args, **kwargs):
            raise RuntimeError("log table unavailable")

        monkeypatch.setattr(BookingStore, "log_download_attempt", _boom)
        ticketing_client.download_ticket.return_value = DownloadedFile(content=b"pdf", content_type="application/pdf")
        b = synced(db)

        f = ETicketAvailabilityService(db, ticketing_client).download_single(b.id, "OI-1", "t")

        assert f.content == b"pdf"


class TestDownloadZip:
    def test_uses_cached_zip_url(self, db, ticketing_client):
        ticketing_client.download_zip.return_value = DownloadedFile(content=b"PK", content_type=None)
        b = synced(db, eticket_status=ETicketStatus.AVAILABLE, eticket_urls=TICKETS, zip_download_url="https://cdn/all.zip")

        f = ETicketAvailabilityService(db, ticketing_client).download_zip(b.id)

        ticketing_client.get_zip_url.assert_not_called()
        ticketing_client.download_zip.assert_called_once_with("https://cdn/all.zip")
        assert f.content_type == "application/zip"
        assert f.filename == zip_filename(b.booking_ref) == f"tickets-{b.booking_ref}.zip"
        assert downloads(db)[0].kind == "zip"

    def test_fetches_and_caches_zip_url(self, db, ticketing_client):
        ticketing_client.get_zip_url.return_value = {"download_url": "https://cdn/fresh.zip"}
        ticketing_client.download_zip.return_value = DownloadedFile(content=b"PK", content_type="application/zip")
        b = synced(db, eticket_status=ETicketStatus.AVAILABLE, eticket_urls=TICKETS)

        ETicketAvailabilityService(db, ticketing_client).download_zip(b.id)

        ticketing_client.get_zip_url.assert_called_once_with("B123")
        assert booking_row(db, b.id).zip_download_url == "https://cdn/fresh.zip"

    def test_zip_url_cached_even_if_download_fails(self, db, ticketing_client):
        ticketing_client.get_zip_url.return_value = {"download_url": "https://cdn/fresh.zip"}
        ticketing_client.download_zip.side_effect = TicketingProviderError("timeout")
        b = synced(db, eticket_status=ETicketStatus.AVAILABLE, eticket_urls=TICKETS)

        with pytest.raises(TicketingProviderError):
            ETicketAvailabilityService(db, ticketing_client).download_zip(b.id)

        assert booking_row(db, b.id).zip_download_url == "https://cdn/fresh.zip"
        assert downloads(db)[0].success is False

    def test_requires_available_tickets(self, db, ticketing_client):
        b = synced(db, eticket_status=ETicketStatus.PROCESSING)
        with pytest.raises(InvalidStateError):
            ETicketAvailabilityService(db, ticketing_client).download_zip(b.id)
        ticketing_client.download_zip.assert_not_called()

    def test_missing_zip_url_from_provider(self, db, ticketing_client):
        ticketing_client.get_zip_url.return_value = {}
        b = synced(db, eticket_status=ETicketStatus.AVAILABLE, eticket_urls=TICKETS)
        with pytest.raises(NotFoundError):
            ETicketAvailabilityService(db, ticketing_client).download_zip(b.id)


def test_customer_ticket_list(db, ticketing_client):
    mine = synced(db)
    make_booking(db, status=BookingStatus.CANCELLED)
    make_booking(db, payment_status="pending")
    make_booking(db, customer_id=OTHER_CUSTOMER_ID)

    result = ETicketAvailabilityService(db, ticketing_client).list_customer_tickets(CUSTOMER_ID)

    assert [b.id for b in result] == [mine.id]
