from loguru import logger
from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from ticketbridge.core.config import settings
from ticketbridge.core.errors import BookingError, NotFoundError
from ticketbridge.db.session import SessionLocal
from ticketbridge.models.booking import ETicketStatus
from ticketbridge.services.booking_sync_service import BookingSyncOrchestrator
from ticketbridge.services.eticket_service import ETicketAvailabilityService
from ticketbridge.services.ticketing_client import ticketing_client_from_settings
from ticketbridge.stores.booking_store import BookingStore


def sync_booking(booking_id: str, *, session_factory=SessionLocal, client_factory=ticketing_client_from_settings) -> dict:
    """Run one sync attempt unless the booking has used up its attempts.

    ``retry`` in the result tells the task wrapper whether to re-enqueue.
    """
    db: Session = session_factory()
    try:
        b = BookingStore(db).get(booking_id)
        if not b:
            return {"ok": False, "error": "not_found"}
        if b.provider_booking_id:
            return {"ok": True, "providerBookingId": b.provider_booking_id, "alreadySynced": True}
        if (b.sync_attempts or 0) >= settings.SYNC_MAX_ATTEMPTS:
            logger.error("Booking {} reached {} sync attempts; needs manual re-sync", booking_id, b.sync_attempts)
            return {"ok": False, "error": "max_attempts", "attempts": b.sync_attempts}

        try:
            result = BookingSyncOrchestrator(db, client_factory()).sync_after_payment(booking_id, actor_id="worker")
        except NotFoundError:
            return {"ok": False, "error": "not_found"}
        except BookingError as e:
            attempts = BookingStore(db).get(booking_id).sync_attempts or 0
            retry = e.retryable and attempts < settings.SYNC_MAX_ATTEMPTS
            return {"ok": False, "error": e.code, "message": e.message, "attempts": attempts, "retry": retry}
        return {"ok": True, "providerBookingId": result.provider_booking_id, "alreadySynced": result.already_synced}
    finally:
        db.close()


def find_unsynced_bookings(limit: int = 50, *, session_factory=SessionLocal) -> list[str]:
    db: Session = session_factory()
    try:
        try:
            return [b.id for b in BookingStore(db).list_unsynced(settings.SYNC_MAX_ATTEMPTS, limit=limit)]
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return []
    finally:
        db.close()


def poll_pending_etickets(limit: int = 100, *, session_factory=SessionLocal, client_factory=ticketing_client_from_settings) -> dict:
    db: Session = session_factory()
    try:
        try:
            waiting = BookingStore(db).list_awaiting_tickets(limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        svc = ETicketAvailabilityService(db, client_factory())
        available = 0
        for b in waiting:
            try:
                r = svc.check_availability(b.id, force=True)
            except BookingError as e:
                db.rollback()
                logger.warning("Ticket poll failed for booking {}: {}", b.id, e)
                continue
            if r.status == ETicketStatus.AVAILABLE:
                available += 1
        return {"checked": len(waiting), "available": available}
    finally:
        db.close()
