"""Time-tiered cancellation policy. Pure functions only: no session, no clock reads
unless ``now`` is omitted."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from ticketbridge.core.clock import to_utc, utcnow
from ticketbridge.core.config import settings
from ticketbridge.models.booking import Booking, BookingStatus, CancellationStatus

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CancellationPolicy:
    full_refund_days: int = 30
    partial_refund_days: int = 15
    partial_refund_percent: int = 50

    @classmethod
    def from_settings(cls) -> "CancellationPolicy":
        return cls(
            full_refund_days=settings.CANCEL_FULL_REFUND_DAYS,
            partial_refund_days=settings.CANCEL_PARTIAL_REFUND_DAYS,
            partial_refund_percent=settings.CANCEL_PARTIAL_REFUND_PERCENT,
        )


def days_until_event(event_date: datetime, now: datetime | None = None) -> int:
    # Whole days, floored: 29 days 23 hours counts as 29
    now = to_utc(now or utcnow())
    return (to_utc(event_date) - now).days


def refund_percentage(days: int, policy: CancellationPolicy | None = None) -> int:
    policy = policy or CancellationPolicy.from_settings()
    if days >= policy.full_refund_days:
        return 100
    if days >= policy.partial_refund_days:
        return policy.partial_refund_percent
    return 0


def calculate_refund_amount(
    total_amount,
    event_date: datetime | None,
    *,
    now: datetime | None = None,
    policy: CancellationPolicy | None = None,
) -> Decimal:
    total = Decimal(str(total_amount or 0))
    if event_date is None:
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)
    pct = refund_percentage(days_until_event(event_date, now), policy)
    return (total * pct / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class Eligibility:
    eligible: bool
    reason: str | None = None
    days_until_event: int | None = None
    refund_amount: Decimal | None = None


def check_cancellation_eligibility(
    b: Booking,
    *,
    now: datetime | None = None,
    policy: CancellationPolicy | None = None,
) -> Eligibility:
    now = to_utc(now or utcnow())

    if b.cancellation_status in (CancellationStatus.APPROVED, CancellationStatus.CANCELLED):
        return Eligibility(False, "Booking is already cancelled or cancellation approved")

    days = None
    if b.event_date is not None:
        if to_utc(b.event_date) <= now:
            return Eligibility(False, "Event date has already passed")
        days = days_until_event(b.event_date, now)

    if b.status not in (BookingStatus.CONFIRMED, BookingStatus.PENDING):
        return Eligibility(False, "Booking status does not allow cancellation")

    return Eligibility(
        True,
        days_until_event=days,
        refund_amount=calculate_refund_amount(b.total_amount, b.event_date, now=now, policy=policy),
    )
