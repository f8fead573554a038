from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketbridge.core.clock import utcnow
from ticketbridge.core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from ticketbridge.models.booking import Booking, CancellationStatus
from ticketbridge.models.cancellation import CancellationRequest, CancellationRequestStatus, RefundStatus
from ticketbridge.services.activity_service import log_activity
from ticketbridge.services.refund_log_service import RefundLogService
from ticketbridge.services.refund_policy import (
    CancellationPolicy,
    calculate_refund_amount,
    check_cancellation_eligibility,
)
from ticketbridge.stores.booking_store import BookingStore
from ticketbridge.stores.cancellation_store import CancellationStore

S = CancellationRequestStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    S.PENDING: frozenset({S.CANCELLED, S.APPROVED, S.DECLINED}),
    S.APPROVED: frozenset({S.COMPLETED}),
    S.DECLINED: frozenset(),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}


def validate_status_transition(current: str, new: str) -> None:
    if new not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(f"Invalid status transition from {current} to {new}")


def _append_notes(existing: str | None, notes: str | None) -> str | None:
    if not notes:
        return existing
    if not existing:
        return notes
    return f"{existing}\n\n{notes}"


@dataclass
class CancellationView:
    """A request together with the booking it belongs to."""
    request: CancellationRequest
    booking: Booking


class CancellationWorkflow:
    def __init__(
        self,
        db: Session,
        refunds: RefundLogService | None = None,
        policy: CancellationPolicy | None = None,
    ):
        self.db = db
        self.bookings = BookingStore(db)
        self.requests = CancellationStore(db)
        self.refunds = refunds or RefundLogService(db)
        self.policy = policy or CancellationPolicy.from_settings()

    # -------------------------
    # Customer side
    # -------------------------
    def request_cancellation(
        self,
        booking_id: str,
        customer_id: str,
        reason: str,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CancellationRequest:
        if not (reason or "").strip():
            raise ValidationError("Cancellation reason is required")

        # Lock the booking row so concurrent requests for it queue up here
        b = self.bookings.get_for_update(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        if b.customer_id != customer_id:
            raise UnauthorizedError("Booking does not belong to this customer")

        eligibility = check_cancellation_eligibility(b, now=now, policy=self.policy)
        if not eligibility.eligible:
            raise InvalidStateError(eligibility.reason)

        if self.requests.has_active_request(booking_id):
            raise InvalidStateError("A cancellation request already exists for this booking")

        try:
            req = self.requests.create(
                booking_id=booking_id,
                customer_id=customer_id,
                reason=reason.strip(),
                customer_notes=notes,
            )
        except IntegrityError:
            self.db.rollback()
            logger.warning("Concurrent cancellation request rejected for booking {}", booking_id)
            raise InvalidStateError("A cancellation request already exists for this booking")

        self.bookings.update_cancellation_status(booking_id, CancellationStatus.REQUESTED, utcnow())
        log_activity(self.db, customer_id, "cancellation.requested", "cancellation_request", req.id, {
            "booking_id": booking_id,
            "reason": req.reason,
            "estimated_refund": str(eligibility.refund_amount),
        })
        self.db.commit()
        logger.info("Cancellation requested for booking {} by customer {}", booking_id, customer_id)
        return req

    def customer_cancel_request(self, booking_id: str, customer_id: str) -> CancellationRequest:
        b = self.bookings.get_for_update(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        if b.customer_id != customer_id:
            raise UnauthorizedError("Booking does not belong to this customer")
        req = self.requests.latest_for_booking(booking_id)
        if not req:
            raise NotFoundError("No cancellation request found")
        if req.status != S.PENDING:
            raise InvalidStateError("Only pending cancellation requests can be withdrawn")
        validate_status_transition(req.status, S.CANCELLED)

        self.requests.update(req, status=S.CANCELLED)
        self.bookings.update_cancellation_status(booking_id, CancellationStatus.NONE)
        log_activity(self.db, customer_id, "cancellation.withdrawn", "cancellation_request", req.id, {"booking_id": booking_id})
        self.db.commit()
        logger.info("Cancellation request {} withdrawn by customer {}", req.id, customer_id)
        return req

    def get_cancellation_request(self, booking_id: str, customer_id: str) -> CancellationRequest | None:
        b = self.bookings.get(booking_id)
        if not b:
            raise NotFoundError("Booking not found")
        if b.customer_id != customer_id:
            raise UnauthorizedError("Booking does not belong to this customer")
        return self.requests.latest_for_booking(booking_id)

    # -------------------------
    # Admin side
    # -------------------------
    def list_cancellation_requests(self, status: str | None = None) -> list[CancellationView]:
        if status and status not in ALLOWED_TRANSITIONS:
            raise ValidationError(f"Unknown cancellation status: {status}")
        out = []
        for req in self.requests.list(status):
            b = self.bookings.get(req.booking_id)
            if b:
                out.append(CancellationView(request=req, booking=b))
        return out

    def _get_request(self, request_id: str) -> CancellationRequest:
        req = self.requests.get_for_update(request_id)
        if not req:
            raise NotFoundError("Cancellation request not found")
        return req

    def approve_cancellation(
        self,
        request_id: str,
        admin_id: str,
        refund_amount=None,
        notes: str | None = None,
        *,
        now: datetime | None = None,
    ) -> CancellationRequest:
        req = self._get_request(request_id)
        validate_status_transition(req.status, S.APPROVED)
        b = self.bookings.get(req.booking_id)
        if not b:
            raise NotFoundError("Booking not found")

        if refund_amount is None:
            amount = calculate_refund_amount(b.total_amount, b.event_date, now=now, policy=self.policy)
        else:
            amount = Decimal(str(refund_amount)).quantize(Decimal("0.01"))
            if amount < 0:
                raise ValidationError("Refund amount cannot be negative")
            if amount > Decimal(str(b.total_amount or 0)):
                raise ValidationError("Refund amount exceeds booking total")

        self.requests.update(
            req,
            status=S.APPROVED,
            admin_id=admin_id,
            admin_notes=notes,
            reviewed_at=utcnow(),
            refund_amount=amount,
            refund_status=RefundStatus.PENDING if amount > 0 else RefundStatus.NOT_APPLICABLE,
        )
        self.bookings.update_cancellation_status(b.id, CancellationStatus.APPROVED)
        log_activity(self.db, admin_id, "cancellation.approved", "cancellation_request", req.id, {
            "booking_id": b.id, "refund_amount": str(amount),
        })
        self.db.commit()
        logger.info("Cancellation {} approved by {} with refund {}", req.id, admin_id, amount)
        return req

    def decline_cancellation(self, request_id: str, admin_id: str, notes: str) -> CancellationRequest:
        if not (notes or "").strip():
            raise ValidationError("A reason is required when declining a cancellation")
        req = self._get_request(request_id)
        validate_status_transition(req.status, S.DECLINED)

        self.requests.update(req, status=S.DECLINED, admin_id=admin_id, admin_notes=notes, reviewed_at=utcnow())
        self.bookings.update_cancellation_status(req.booking_id, CancellationStatus.DECLINED)
        log_activity(self.db, admin_id, "cancellation.declined", "cancellation_request", req.id, {"booking_id": req.booking_id})
        self.db.commit()
        logger.info("Cancellation {} declined by {}", req.id, admin_id)
        return req

    def complete_cancellation(
        self,
        request_id: str,
        admin_id: str,
        refund_reference: str | None = None,
        notes: str | None = None,
        *,
        commit: bool = True,
    ) -> CancellationRequest:
        req = self._get_request(request_id)
        validate_status_transition(req.status, S.COMPLETED)

        fields = {
            "status": S.COMPLETED,
            "completed_at": utcnow(),
            "admin_notes": _append_notes(req.admin_notes, notes),
        }
        if refund_reference:
            fields.update(
                refund_reference=refund_reference,
                refund_status=RefundStatus.PROCESSED,
                refund_date=utcnow(),
            )
        self.requests.update(req, **fields)
        self.bookings.mark_cancelled(req.booking_id)
        log_activity(self.db, admin_id, "cancellation.completed", "cancellation_request", req.id, {
            "booking_id": req.booking_id, "refund_reference": refund_reference,
        })
        if commit:
            self.db.commit()
        logger.info("Cancellation {} completed by {}; booking {} cancelled", req.id, admin_id, req.booking_id)
        return req

    def complete_with_refund(self, request_id: str, admin_id: str, notes: str | None = None) -> CancellationRequest:
        """Refund the approved amount through the processor, then complete.

        A processor failure leaves the request approved for manual review.
        """
        req = self._get_request(request_id)
        if req.status != S.APPROVED:
            raise InvalidStateError(f"Invalid status transition from {req.status} to {S.COMPLETED}")

        entry = None
        if req.refund_amount and Decimal(str(req.refund_amount)) > 0:
            entry = self.refunds.execute_refund(
                req.booking_id,
                amount=req.refund_amount,
                reason=f"Cancellation: {req.reason}",
                admin_id=admin_id,
                notes=notes,
                commit=False,
            )
        if entry is None:
            return self.complete_cancellation(request_id, admin_id, notes=notes)

        processor_ref = entry.processor_reference
        try:
            return self.complete_cancellation(request_id, admin_id, refund_reference=entry.reference, notes=notes)
        except Exception:
            self.db.rollback()
            # Money has moved but neither the ledger row nor the completion was saved
            logger.critical(
                "Refund {} executed at processor for cancellation {} but completion was not recorded",
                processor_ref, request_id,
            )
            raise
