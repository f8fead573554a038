from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import DateTime, Index, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from ticketbridge.db.session import Base


class CancellationRequestStatus(StrEnum):
    PENDING = "pending"
    CANCELLED = "cancelled"  # withdrawn by the customer
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"


class RefundStatus(StrEnum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    PROCESSED = "processed"


ACTIVE_REQUEST_STATUSES = (CancellationRequestStatus.PENDING, CancellationRequestStatus.APPROVED)

_ACTIVE_WHERE = text("status IN ('pending', 'approved')")


class CancellationRequest(Base):
    __tablename__ = "cancellation_requests"
    __table_args__ = (
        # At most one active request per booking, enforced by the database as well
        Index(
            "uq_cancellation_requests_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)

    reason: Mapped[str] = mapped_column(String(500), default="")
    customer_notes: Mapped[str] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=CancellationRequestStatus.PENDING, index=True)

    admin_id: Mapped[str] = mapped_column(String(36), nullable=True)
    admin_notes: Mapped[str] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=True)
    refund_status: Mapped[str] = mapped_column(String(20), default=RefundStatus.NOT_APPLICABLE)
    refund_reference: Mapped[str] = mapped_column(String(64), nullable=True)
    refund_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
