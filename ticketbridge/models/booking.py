from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketbridge.db.session import Base


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CancellationStatus(StrEnum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class ETicketStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    AVAILABLE = "available"


# The provider never returns a distribution channel; we only ever issue e-tickets.
DISTRIBUTION_CHANNEL = "eticket"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_ref: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)

    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.CONFIRMED)
    payment_status: Mapped[str] = mapped_column(String(30), default="paid")  # pending, paid, refunded, partially_refunded
    payment_reference: Mapped[str] = mapped_column(String(120), nullable=True)  # processor payment id
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    # Event / order snapshot used to build provider payloads
    event_id: Mapped[str] = mapped_column(String(64), nullable=True)
    event_name: Mapped[str] = mapped_column(String(255), default="")
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    ticket_type_id: Mapped[str] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    customer_email: Mapped[str] = mapped_column(String(255), default="")
    customer_first_name: Mapped[str] = mapped_column(String(120), default="")
    customer_last_name: Mapped[str] = mapped_column(String(120), default="")
    customer_phone: Mapped[str] = mapped_column(String(40), default="")
    guest_details: Mapped[list] = mapped_column(JSON, default=list)

    # Provider linkage; provider_booking_id is written at most once
    provider_reservation_id: Mapped[str] = mapped_column(String(64), nullable=True)
    provider_booking_id: Mapped[str] = mapped_column(String(64), nullable=True, index=True)
    provider_booking_code: Mapped[str] = mapped_column(String(64), nullable=True)
    provider_financial_status: Mapped[str] = mapped_column(String(40), nullable=True)
    provider_logistic_status: Mapped[str] = mapped_column(String(40), nullable=True)
    distribution_channel: Mapped[str] = mapped_column(String(20), nullable=True)
    provider_response: Mapped[dict] = mapped_column(JSON, nullable=True)
    sync_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_error: Mapped[str] = mapped_column(Text, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_status: Mapped[str] = mapped_column(String(20), default=CancellationStatus.NONE)
    cancellation_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    eticket_status: Mapped[str] = mapped_column(String(20), default=ETicketStatus.PENDING)
    eticket_urls: Mapped[list] = mapped_column(JSON, default=list)
    zip_download_url: Mapped[str] = mapped_column(String(1024), nullable=True)
    ticket_checksums: Mapped[list] = mapped_column(JSON, default=list)
    eticket_available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    eticket_checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, default=0)
    first_downloaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    last_download_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    download_error: Mapped[str] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
