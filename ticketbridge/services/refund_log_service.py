"""Refund ledger operations.

Entries model refunds that were already decided upstream (cancellation review or an
admin action): they are created as ``processed`` and only move to ``completed`` or
``failed`` once the payment processor reports back. Processor calls are never
retried here; a failed refund call is surfaced for manual review.
"""
from __future__ import annotations

import random
import uuid
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy.orm import Session

from ticketbridge.core.clock import utcnow
from ticketbridge.core.config import settings
from ticketbridge.core.errors import InvalidStateError, NotFoundError, RefundProcessorError, ValidationError
from ticketbridge.models.refund_log import RefundLogEntry, RefundLogStatus, RefundType
from ticketbridge.services.activity_service import log_activity
from ticketbridge.services.cybersource_client import CybersourceClient, cybersource_client_from_settings
from ticketbridge.stores.booking_store import BookingStore
from ticketbridge.stores.refund_ledger import RefundLedger

# Processor status -> ledger status; anything else only updates processor_status
PROCESSOR_COMPLETED = {"TRANSMITTED", "SETTLED", "COMPLETED", "REFUNDED"}
PROCESSOR_FAILED = {"FAILED", "DECLINED", "VOIDED", "REVERSED", "INVALID_REQUEST"}

UPDATABLE_FIELDS = {"processor_reference", "processor_status", "admin_notes"}


def make_refund_reference(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"REF-{now.year}-{int(now.timestamp())}{random.randint(0, 9999):04d}"


def determine_refund_type(amount, booking_total) -> str:
    return RefundType.FULL if Decimal(str(amount)) >= Decimal(str(booking_total or 0)) else RefundType.PARTIAL


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


class RefundLogService:
    def __init__(self, db: Session, processor: CybersourceClient | None = None, processing_fee=None):
        self.db = db
        self._processor = processor
        self.processing_fee = _money(settings.REFUND_PROCESSING_FEE if processing_fee is None else processing_fee)
        self.bookings = BookingStore(db)
        self.ledger = RefundLedger(db)

    @property
    def processor(self) -> CybersourceClient:
        if self._processor is None:
            self._processor = cybersource_client_from_settings()
        return self._processor

    def generate_reference(self) -> str:
        for _ in range(10):
            ref = make_refund_reference()
            if not self.ledger.reference_exists(ref):
                return ref
        raise InvalidStateError("could not allocate refund reference")

    def get(self, entry_id: str) -> RefundLogEntry:
        entry = self.ledger.get(entry_id)
        if not entry:
            raise NotFoundError("Refund log entry not found")
        return entry

    def list_refunds(self, booking_id: str) -> list[RefundLogEntry]:
        return self.ledger.list_for_booking(booking_id)

    def create_refund_log(
        self,
        booking_id: str,
        amount,
        reason: str,
        *,
        processor_refund_id: str | None = None,
        processor_status: str | None = None,
        admin_id: str | None = None,
        notes: str | None = None,
        reference: str | None = None,
        commit: bool = True,
    ) -> RefundLogEntry:
        if amount is None or Decimal(str(amount)) <= 0:
            raise ValidationError("Refund amount must be greater than zero")
        if not (reason or "").strip():
            raise ValidationError("Refund reason is required")

        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")

        amount = _money(amount)
        fee = self.processing_fee
        if fee < 0 or fee > amount:
            raise ValidationError("Processing fee must be between zero and the refund amount")

        now = utcnow()
        entry = self.ledger.create(RefundLogEntry(
            id=str(uuid.uuid4()),
            reference=reference or self.generate_reference(),
            booking_id=booking_id,
            customer_id=b.customer_id,
            requested_amount=amount,
            approved_amount=amount,
            processing_fee=fee,
            net_amount=amount - fee,
            reason=reason.strip(),
            refund_type=determine_refund_type(amount, b.total_amount),
            status=RefundLogStatus.PROCESSED,
            processed_by=admin_id,
            admin_notes=notes,
            processor_reference=processor_refund_id,
            processor_status=processor_status or "pending",
            requested_at=now,
            reviewed_at=now,
            approved_at=now,
            processed_at=now,
            completed_at=None,
        ))
        log_activity(self.db, admin_id, "refund.logged", "refund_log", entry.id, {
            "booking_id": booking_id, "reference": entry.reference, "amount": str(amount),
        })
        if commit:
            self.db.commit()
        logger.info("Refund log {} created for booking {}: {} ({})", entry.reference, booking_id, amount, entry.refund_type)
        return entry

    def update_status(self, entry_id: str, new_status: str, extra: dict | None = None, *, commit: bool = True) -> RefundLogEntry:
        entry = self.get(entry_id)
        if new_status not in {s.value for s in RefundLogStatus}:
            raise ValidationError(f"Unknown refund status: {new_status}")
        unknown = set(extra or {}) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        fields = dict(extra or {})
        fields["status"] = new_status
        if new_status == RefundLogStatus.COMPLETED:
            if entry.status not in (RefundLogStatus.PROCESSED, RefundLogStatus.FAILED):
                logger.warning("Refund {} marked completed from unexpected status {}", entry.reference, entry.status)
            fields["completed_at"] = utcnow()
        self.ledger.update(entry, **fields)
        if commit:
            self.db.commit()
        return entry

    def execute_refund(
        self,
        booking_id: str,
        *,
        reason: str,
        amount=None,
        admin_id: str | None = None,
        notes: str | None = None,
        commit: bool = True,
    ) -> RefundLogEntry:
        """Refund through the processor, then record it in the ledger.

        RefundProcessorError propagates untouched; nothing is written in that case.
        """
        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        if not b.payment_reference:
            raise ValidationError("Booking has no payment reference to refund against")
        amount = _money(b.total_amount if amount is None else amount)
        if amount <= 0:
            raise ValidationError("Refund amount must be greater than zero")
        if amount > _money(b.total_amount or 0):
            raise ValidationError("Refund amount exceeds booking total")
        if not (reason or "").strip():
            raise ValidationError("Refund reason is required")

        reference = self.generate_reference()
        log = logger.bind(booking_id=booking_id, reference=reference)
        try:
            result = self.processor.create_refund(
                payment_ref=b.payment_reference,
                amount=amount,
                currency=b.currency or settings.REFUND_CURRENCY,
                reason=reason,
                client_ref=reference,
            )
        except RefundProcessorError as e:
            log.error("Refund of {} failed at processor ({}): {}", amount, e.error_code, e.message)
            raise

        try:
            entry = self.create_refund_log(
                booking_id,
                amount,
                reason,
                processor_refund_id=result.get("refund_id"),
                processor_status=result.get("status"),
                admin_id=admin_id,
                notes=notes,
                reference=reference,
                commit=False,
            )
            self._sync_payment_status(booking_id)
            log_activity(self.db, admin_id, "refund.executed", "booking", booking_id, {
                "reference": reference, "processor_reference": result.get("refund_id"), "amount": str(amount),
            })
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            # Money has moved but we have no ledger row; needs manual reconciliation
            log.critical("Refund {} executed at processor but not recorded", result.get("refund_id"))
            raise
        log.info("Refund executed: {} processor_ref={}", amount, result.get("refund_id"))
        return entry

    def refresh_from_processor(self, entry_id: str) -> RefundLogEntry:
        entry = self.get(entry_id)
        if not entry.processor_reference:
            raise InvalidStateError("Refund has no processor reference")
        result = self.processor.get_refund(entry.processor_reference)
        self._apply_processor_status(entry, result.get("status"))
        self.db.commit()
        return entry

    def void_refund(self, entry_id: str, admin_id: str | None = None) -> RefundLogEntry:
        entry = self.get(entry_id)
        if not entry.processor_reference:
            raise InvalidStateError("Refund has no processor reference")
        if entry.status != RefundLogStatus.PROCESSED:
            raise InvalidStateError(f"Refund in status {entry.status} cannot be voided")

        result = self.processor.void_refund(entry.processor_reference, client_ref=entry.reference)
        self.ledger.update(entry, status=RefundLogStatus.FAILED, processor_status=result.get("status") or "VOIDED")
        self._sync_payment_status(entry.booking_id)
        log_activity(self.db, admin_id, "refund.voided", "refund_log", entry.id, {"reference": entry.reference})
        self.db.commit()
        logger.info("Refund {} voided by {}", entry.reference, admin_id or "system")
        return entry

    def confirm_processor_refund(self, processor_reference: str, processor_status: str) -> RefundLogEntry:
        """Asynchronous confirmation from the processor (webhook)."""
        entry = self.ledger.get_by_processor_reference(processor_reference)
        if not entry:
            raise NotFoundError("Refund log entry not found")
        self._apply_processor_status(entry, processor_status)
        self.db.commit()
        return entry

    def _apply_processor_status(self, entry: RefundLogEntry, processor_status: str | None) -> None:
        if not processor_status:
            return
        status = processor_status.upper()
        if status in PROCESSOR_COMPLETED:
            if entry.status == RefundLogStatus.COMPLETED:
                self.ledger.update(entry, processor_status=status)
                return
            self.update_status(entry.id, RefundLogStatus.COMPLETED, {"processor_status": status}, commit=False)
        elif status in PROCESSOR_FAILED:
            self.update_status(entry.id, RefundLogStatus.FAILED, {"processor_status": status}, commit=False)
            self._sync_payment_status(entry.booking_id)
        else:
            self.ledger.update(entry, processor_status=status)
        logger.info("Refund {} processor status {} -> {}", entry.reference, status, entry.status)

    def _sync_payment_status(self, booking_id: str) -> None:
        b = self.bookings.get(booking_id)
        refunded = sum(
            (_money(e.approved_amount) for e in self.ledger.list_for_booking(booking_id) if e.status != RefundLogStatus.FAILED),
            Decimal("0.00"),
        )
        if refunded <= 0:
            status = "paid"
        elif refunded >= _money(b.total_amount or 0):
            status = "refunded"
        else:
            status = "partially_refunded"
        self.bookings.update_payment_status(booking_id, status)
