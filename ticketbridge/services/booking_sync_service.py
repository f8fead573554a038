"""Turns a paid local booking into a confirmed booking at the ticketing provider.

Sequence: reservation -> guest data -> booking, then one atomic write of the
provider linkage onto the local row. Re-entry is always safe: a booking that
already carries a provider booking id short-circuits before any HTTP call, so
callers may retry freely after an ``UpstreamError``.
"""
from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import Session

from ticketbridge.core.errors import InvalidStateError, NotFoundError, TicketingProviderError
from ticketbridge.models.booking import Booking
from ticketbridge.services.activity_service import log_activity
from ticketbridge.services.provider_payload_service import (
    build_booking_payload,
    build_guest_payload,
    build_reservation_payload,
)
from ticketbridge.services.ticketing_client import TicketingClient
from ticketbridge.stores.booking_store import BookingStore, ProviderLinkage


@dataclass(frozen=True)
class ExistingReservation:
    reservation_id: str


@dataclass(frozen=True)
class NeedsNewReservation:
    pass


SyncPlan = ExistingReservation | NeedsNewReservation


def resolve_sync_plan(b: Booking) -> SyncPlan:
    # Checkout normally creates the reservation; the other branch is the legacy flow.
    if b.provider_reservation_id:
        return ExistingReservation(b.provider_reservation_id)
    return NeedsNewReservation()


@dataclass
class SyncResult:
    booking_id: str
    provider_booking_id: str
    already_synced: bool = False
    reservation_id: str | None = None
    booking_code: str | None = None
    financial_status: str | None = None
    logistic_status: str | None = None
    attempt: int | None = None


class BookingSyncOrchestrator:
    def __init__(self, db: Session, client: TicketingClient):
        self.db = db
        self.client = client
        self.bookings = BookingStore(db)

    def sync_after_payment(self, booking_id: str, actor_id: str | None = None) -> SyncResult:
        """Create the provider booking for a paid local booking.

        Raises NotFoundError for an unknown booking and TicketingProviderError
        (retryable) for any provider failure; the error text is persisted on the
        booking before raising.
        """
        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")

        existing = self.bookings.provider_booking_id(booking_id)
        if existing:
            logger.warning("Booking {} already synced with provider as {}", booking_id, existing)
            return SyncResult(booking_id=booking_id, provider_booking_id=existing, already_synced=True)

        # Persist the attempt before any network call so a crash mid-flight is visible
        attempt = self.bookings.increment_sync_attempt(booking_id)
        self.db.commit()
        log = logger.bind(booking_id=booking_id, attempt=attempt)
        log.info("Starting provider sync for booking {} (attempt {})", booking_id, attempt)

        try:
            plan = resolve_sync_plan(b)
            reservation_id = self._ensure_reservation(b, plan)

            response = self.client.create_booking(build_booking_payload(reservation_id, b))
            if not response.get("booking_id"):
                raise TicketingProviderError("Provider booking response did not include a booking_id", body=response)
            linkage = ProviderLinkage.from_provider_response(response, reservation_id)

            if not self.bookings.apply_provider_linkage(booking_id, linkage):
                # Another worker linked this booking between our check and our write
                self.db.rollback()
                winner = self.bookings.provider_booking_id(booking_id)
                log.error(
                    "Booking {} was linked concurrently to {}; provider booking {} is orphaned",
                    booking_id, winner, linkage.booking_id,
                )
                return SyncResult(booking_id=booking_id, provider_booking_id=winner, already_synced=True, attempt=attempt)

            log_activity(self.db, actor_id, "booking.synced", "booking", booking_id, {
                "provider_booking_id": linkage.booking_id,
                "reservation_id": reservation_id,
                "attempt": attempt,
            })
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self._record_failure(booking_id, attempt, e)
            raise

        log.info("Booking {} synced: provider booking {} ({})", booking_id, linkage.booking_id, linkage.booking_code)
        return SyncResult(
            booking_id=booking_id,
            provider_booking_id=linkage.booking_id,
            reservation_id=reservation_id,
            booking_code=linkage.booking_code,
            financial_status=linkage.financial_status,
            logistic_status=linkage.logistic_status,
            attempt=attempt,
        )

    def sync_status(self, booking_id: str, actor_id: str | None = None) -> SyncResult:
        """Re-fetch provider status for an already-linked booking (admin re-sync)."""
        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        provider_booking_id = b.provider_booking_id
        if not provider_booking_id:
            raise InvalidStateError("Booking is not synchronized with the ticketing provider")

        try:
            data = self.client.get_booking_status(provider_booking_id)
        except TicketingProviderError as e:
            logger.error("Status sync failed for booking {} ({}): {}", booking_id, provider_booking_id, e)
            raise

        self.bookings.apply_provider_status(booking_id, provider_booking_id, data)
        log_activity(self.db, actor_id, "booking.status_synced", "booking", booking_id, {
            "financial_status": data.get("financial_status"),
            "logistic_status": data.get("logistic_status"),
        })
        self.db.commit()
        return SyncResult(
            booking_id=booking_id,
            provider_booking_id=provider_booking_id,
            already_synced=True,
            reservation_id=b.provider_reservation_id,
            booking_code=b.provider_booking_code,
            financial_status=b.provider_financial_status,
            logistic_status=b.provider_logistic_status,
        )

    def _ensure_reservation(self, b: Booking, plan: SyncPlan) -> str:
        if isinstance(plan, ExistingReservation):
            logger.info("Using reservation {} from checkout for booking {}", plan.reservation_id, b.id)
            return plan.reservation_id

        logger.warning("No reservation on booking {}, creating one", b.id)
        reservation = self.client.create_reservation(build_reservation_payload(b))
        reservation_id = reservation.get("reservation_id")
        if not reservation_id:
            raise TicketingProviderError("Provider reservation response did not include a reservation_id", body=reservation)
        reservation_id = str(reservation_id)
        self.client.submit_guests(reservation_id, build_guest_payload(b))
        logger.info("Reservation {} created and guests submitted for booking {}", reservation_id, b.id)
        return reservation_id

    def _record_failure(self, booking_id: str, attempt: int, error: Exception) -> None:
        logger.error("Provider sync failed for booking {} (attempt {}): {}", booking_id, attempt, error)
        try:
            self.bookings.record_sync_error(booking_id, str(error))
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.opt(exception=True).error("Could not persist sync error for booking {}", booking_id)
