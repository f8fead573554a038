from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ticketbridge.models.booking import (
    DISTRIBUTION_CHANNEL,
    Booking,
    BookingStatus,
    CancellationStatus,
    ETicketStatus,
)
from ticketbridge.models.download_log import TicketDownloadLog


@dataclass(frozen=True)
class ProviderLinkage:
    """Everything the provider tells us about a booking, written in one UPDATE."""
    booking_id: str
    reservation_id: str
    booking_code: str | None = None
    financial_status: str | None = None
    logistic_status: str | None = None
    distribution_channel: str = DISTRIBUTION_CHANNEL
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_provider_response(cls, data: dict, reservation_id: str) -> "ProviderLinkage":
        return cls(
            booking_id=str(data["booking_id"]),
            reservation_id=reservation_id,
            booking_code=data.get("booking_code"),
            financial_status=data.get("financial_status") or "OPEN",
            logistic_status=data.get("logistic_status") or "COMPLETED",
            raw=data,
        )


class BookingStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: str) -> Booking | None:
        return self.db.get(Booking, booking_id)

    def get_for_update(self, booking_id: str) -> Booking | None:
        # Row lock; serialises read-then-write sequences on the same booking
        return self.db.execute(
            select(Booking).where(Booking.id == booking_id).with_for_update()
        ).scalar_one_or_none()

    def provider_booking_id(self, booking_id: str) -> str | None:
        """Read straight from the table, bypassing whatever the session has cached."""
        return self.db.execute(
            select(Booking.provider_booking_id).where(Booking.id == booking_id)
        ).scalar_one_or_none()

    # -------------------------
    # Provider linkage
    # -------------------------
    def increment_sync_attempt(self, booking_id: str) -> int:
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(sync_attempts=Booking.sync_attempts + 1)
            .execution_options(synchronize_session="fetch")
        )
        return int(self.db.execute(
            select(Booking.sync_attempts).where(Booking.id == booking_id)
        ).scalar_one())

    def record_sync_error(self, booking_id: str, message: str) -> None:
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(last_sync_error=message[:2000])
            .execution_options(synchronize_session="fetch")
        )

    def apply_provider_linkage(self, booking_id: str, linkage: ProviderLinkage) -> bool:
        """Compare-and-set on provider_booking_id IS NULL.

        Returns False when another worker linked the booking first; nothing is written then.
        """
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.provider_booking_id.is_(None))
            .values(
                provider_booking_id=linkage.booking_id,
                provider_reservation_id=linkage.reservation_id,
                provider_booking_code=linkage.booking_code,
                provider_financial_status=linkage.financial_status,
                provider_logistic_status=linkage.logistic_status,
                distribution_channel=linkage.distribution_channel,
                provider_response=linkage.raw,
                last_sync_error=None,
                synced_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def apply_provider_status(self, booking_id: str, provider_booking_id: str, data: dict) -> bool:
        """Refresh status fields for an already-linked booking; never touches the provider id."""
        values = {
            "provider_financial_status": data.get("financial_status") or "OPEN",
            "provider_logistic_status": data.get("logistic_status") or "COMPLETED",
            "distribution_channel": DISTRIBUTION_CHANNEL,
            "provider_response": data,
            "synced_at": datetime.now(timezone.utc),
        }
        if data.get("booking_code"):
            values["provider_booking_code"] = data["booking_code"]
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.provider_booking_id == provider_booking_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    # -------------------------
    # E-tickets
    # -------------------------
    def update_eticket_status(self, booking_id: str, status: str) -> None:
        now = datetime.now(timezone.utc)
        values = {"eticket_status": status, "eticket_checked_at": now}
        if status == ETicketStatus.AVAILABLE:
            values["eticket_available_at"] = now
        self.db.execute(
            update(Booking).where(Booking.id == booking_id).values(**values)
            .execution_options(synchronize_session="fetch")
        )

    def update_eticket_data(self, booking_id: str, ticket_urls: list, zip_url: str | None, checksums: list | None) -> None:
        now = datetime.now(timezone.utc)
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(
                eticket_status=ETicketStatus.AVAILABLE,
                eticket_urls=list(ticket_urls),
                zip_download_url=zip_url,
                ticket_checksums=list(checksums or []),
                eticket_available_at=now,
                eticket_checked_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )

    def cache_zip_url(self, booking_id: str, zip_url: str) -> None:
        self.db.execute(
            update(Booking).where(Booking.id == booking_id).values(zip_download_url=zip_url)
            .execution_options(synchronize_session="fetch")
        )

    def log_download_attempt(
        self,
        booking_id: str,
        success: bool,
        *,
        kind: str = "single",
        order_item_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        self.db.add(TicketDownloadLog(
            id=str(uuid.uuid4()),
            booking_id=booking_id,
            kind=kind,
            order_item_id=order_item_id,
            success=success,
            error_message=error_message,
            attempted_at=now,
        ))
        if success:
            values = {
                "download_count": Booking.download_count + 1,
                "first_downloaded_at": func.coalesce(Booking.first_downloaded_at, now),
                "last_download_attempt_at": now,
                "download_error": None,
            }
        else:
            values = {"last_download_attempt_at": now, "download_error": error_message}
        self.db.execute(
            update(Booking).where(Booking.id == booking_id).values(**values)
            .execution_options(synchronize_session="fetch")
        )

    # -------------------------
    # Cancellation
    # -------------------------
    def update_cancellation_status(self, booking_id: str, status: str, when: datetime | None = None) -> None:
        # cancellation_date keeps the original request time unless a new one is given
        values = {"cancellation_status": status}
        if when is not None:
            values["cancellation_date"] = when
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )

    def mark_cancelled(self, booking_id: str) -> None:
        # Both columns move together: a cancelled booking always has cancellation_status=cancelled
        self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(
                status=BookingStatus.CANCELLED,
                cancellation_status=CancellationStatus.CANCELLED,
                cancellation_date=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="fetch")
        )

    def update_payment_status(self, booking_id: str, payment_status: str) -> None:
        self.db.execute(
            update(Booking).where(Booking.id == booking_id).values(payment_status=payment_status)
            .execution_options(synchronize_session="fetch")
        )

    # -------------------------
    # Queries for workers / listings
    # -------------------------
    def list_customer_ticket_bookings(self, customer_id: str) -> list[Booking]:
        return list(self.db.execute(
            select(Booking)
            .where(
                Booking.customer_id == customer_id,
                Booking.payment_status == "paid",
                Booking.status != BookingStatus.CANCELLED,
            )
            .order_by(Booking.event_date.desc())
        ).scalars())

    def list_unsynced(self, max_attempts: int, limit: int = 100) -> list[Booking]:
        return list(self.db.execute(
            select(Booking)
            .where(
                Booking.payment_status == "paid",
                Booking.status != BookingStatus.CANCELLED,
                Booking.provider_booking_id.is_(None),
                Booking.sync_attempts < max_attempts,
            )
            .order_by(Booking.created_at.asc())
            .limit(limit)
        ).scalars())

    def list_awaiting_tickets(self, limit: int = 100) -> list[Booking]:
        return list(self.db.execute(
            select(Booking)
            .where(
                Booking.provider_booking_id.is_not(None),
                Booking.status != BookingStatus.CANCELLED,
                Booking.eticket_status != ETicketStatus.AVAILABLE,
            )
            .order_by(Booking.synced_at.asc())
            .limit(limit)
        ).scalars())
