from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from loguru import logger
from sqlalchemy.orm import Session

from ticketbridge.core.clock import to_utc, utcnow
from ticketbridge.core.config import settings
from ticketbridge.core.errors import (
    BookingError,
    InvalidStateError,
    NotFoundError,
    TicketingProviderError,
    ValidationError,
)
from ticketbridge.models.booking import Booking, ETicketStatus
from ticketbridge.services.ticketing_client import TicketingClient
from ticketbridge.stores.booking_store import BookingStore

DEFAULT_TICKET_CONTENT_TYPE = "application/pdf"
DEFAULT_ZIP_CONTENT_TYPE = "application/zip"


@dataclass
class AvailabilityResult:
    booking_id: str
    status: str
    available: bool
    ticket_urls: list = field(default_factory=list)
    zip_url: str | None = None
    download_count: int = 0
    message: str | None = None


@dataclass
class TicketFile:
    content: bytes
    filename: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


def ticket_filename(booking_ref: str, order_item_id: str) -> str:
    return f"ticket-{booking_ref}-{order_item_id}.pdf"


def zip_filename(booking_ref: str) -> str:
    return f"tickets-{booking_ref}.zip"


class ETicketAvailabilityService:
    def __init__(self, db: Session, client: TicketingClient, check_ttl_seconds: int | None = None):
        self.db = db
        self.client = client
        self.bookings = BookingStore(db)
        ttl = settings.ETICKET_CHECK_TTL_SECONDS if check_ttl_seconds is None else check_ttl_seconds
        self.check_ttl = timedelta(seconds=ttl)

    def _get_booking(self, booking_id: str) -> Booking:
        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        return b

    def check_availability(self, booking_id: str, *, force: bool = False) -> AvailabilityResult:
        """Cached ticket state, refreshed from the provider when not yet available.

        ``force`` skips the processing-window cache (used by the polling job).
        """
        b = self._get_booking(booking_id)

        if not b.provider_booking_id:
            return AvailabilityResult(
                booking_id=booking_id,
                status=ETicketStatus.PENDING,
                available=False,
                message="Booking not yet synchronized with ticket system",
            )

        if b.eticket_status == ETicketStatus.AVAILABLE and b.eticket_urls:
            return self._available_result(b, b.eticket_urls, b.zip_download_url)

        if (
            not force
            and b.eticket_status == ETicketStatus.PROCESSING
            and b.eticket_checked_at
            and utcnow() - to_utc(b.eticket_checked_at) < self.check_ttl
        ):
            return self._processing_result(b)

        try:
            data = self.client.get_tickets(b.provider_booking_id)
        except TicketingProviderError as e:
            # Not ready yet: cached as processing, so the TTL window also throttles an outage
            logger.warning("Ticket lookup failed for booking {} ({}): {}", booking_id, b.provider_booking_id, e)
            data = {}

        tickets = data.get("tickets") or []
        if tickets:
            self.bookings.update_eticket_data(booking_id, tickets, data.get("zip_url"), data.get("checksums"))
            self.db.commit()
            logger.info("Tickets available for booking {}: {} ticket(s)", booking_id, len(tickets))
            return self._available_result(b, tickets, data.get("zip_url"))

        self.bookings.update_eticket_status(booking_id, ETicketStatus.PROCESSING)
        self.db.commit()
        return self._processing_result(b)

    def download_single(self, booking_id: str, order_item_id: str, download_token: str) -> TicketFile:
        if not order_item_id or not download_token:
            raise ValidationError("order_item_id and download token are required")
        b = self._get_booking(booking_id)
        try:
            if not b.provider_booking_id:
                raise InvalidStateError("Tickets not available - booking not synchronized")
            logger.info("Downloading ticket {} for booking {} ({})", order_item_id, booking_id, b.provider_booking_id)
            f = self.client.download_ticket(b.provider_booking_id, order_item_id, download_token)
        except BookingError as e:
            logger.error("Single ticket download failed for booking {} item {}: {}", booking_id, order_item_id, e)
            self._log_download_attempt(booking_id, False, kind="single", order_item_id=order_item_id, error_message=str(e))
            raise

        self._log_download_attempt(booking_id, True, kind="single", order_item_id=order_item_id)
        return TicketFile(
            content=f.content,
            filename=ticket_filename(b.booking_ref, order_item_id),
            content_type=f.content_type or DEFAULT_TICKET_CONTENT_TYPE,
        )

    def download_zip(self, booking_id: str) -> TicketFile:
        b = self._get_booking(booking_id)
        try:
            if not b.provider_booking_id:
                raise InvalidStateError("Tickets not available - booking not synchronized")
            if b.eticket_status != ETicketStatus.AVAILABLE:
                raise InvalidStateError("Tickets are not yet available for download")

            zip_url = b.zip_download_url
            if not zip_url:
                zip_url = (self.client.get_zip_url(b.provider_booking_id) or {}).get("download_url")
                if not zip_url:
                    raise NotFoundError("ZIP download URL not available")
                self.bookings.cache_zip_url(booking_id, zip_url)
                self.db.commit()

            logger.info("Downloading ticket ZIP for booking {} ({})", booking_id, b.provider_booking_id)
            f = self.client.download_zip(zip_url)
        except BookingError as e:
            logger.error("ZIP download failed for booking {}: {}", booking_id, e)
            self._log_download_attempt(booking_id, False, kind="zip", error_message=str(e))
            raise

        self._log_download_attempt(booking_id, True, kind="zip")
        return TicketFile(
            content=f.content,
            filename=zip_filename(b.booking_ref),
            content_type=f.content_type or DEFAULT_ZIP_CONTENT_TYPE,
        )

    def list_customer_tickets(self, customer_id: str) -> list[Booking]:
        return self.bookings.list_customer_ticket_bookings(customer_id)

    def _log_download_attempt(self, booking_id: str, success: bool, **kwargs) -> None:
        # Best effort: a logging failure must never change the download outcome
        try:
            self.bookings.log_download_attempt(booking_id, success, **kwargs)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.opt(exception=True).warning("Failed to log download attempt for booking {}", booking_id)

    def _available_result(self, b: Booking, urls: list, zip_url: str | None) -> AvailabilityResult:
        return AvailabilityResult(
            booking_id=b.id,
            status=ETicketStatus.AVAILABLE,
            available=True,
            ticket_urls=list(urls),
            zip_url=zip_url,
            download_count=int(b.download_count or 0),
        )

    def _processing_result(self, b: Booking) -> AvailabilityResult:
        return AvailabilityResult(
            booking_id=b.id,
            status=ETicketStatus.PROCESSING,
            available=False,
            download_count=int(b.download_count or 0),
            message="Tickets are being processed and will be available soon",
        )
