from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketbridge.db.session import Base


class RefundType(StrEnum):
    FULL = "full"
    PARTIAL = "partial"


class RefundLogStatus(StrEnum):
    PROCESSED = "processed"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundLogEntry(Base):
    """One executed refund. Rows are only ever appended to, never deleted."""
    __tablename__ = "refund_logs"
    __table_args__ = (CheckConstraint("net_amount >= 0", name="ck_refund_logs_net_non_negative"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reference: Mapped[str] = mapped_column(String(40), unique=True, index=True)  # REF-{year}-{ts}{rand4}
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)

    requested_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    approved_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    processing_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    reason: Mapped[str] = mapped_column(String(500))
    refund_type: Mapped[str] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(20), default=RefundLogStatus.PROCESSED, index=True)

    processed_by: Mapped[str] = mapped_column(String(36), nullable=True)  # admin id
    admin_notes: Mapped[str] = mapped_column(Text, nullable=True)
    processor_reference: Mapped[str] = mapped_column(String(64), nullable=True, index=True)
    processor_status: Mapped[str] = mapped_column(String(40), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)  # set by processor confirmation only

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
