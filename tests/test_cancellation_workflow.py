from __future__ import annotations

import itertools
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from loguru import logger
from sqlalchemy import func, select

from ticketbridge.core.errors import (
    InvalidStateError,
    NotFoundError,
    RefundProcessorError,
    UnauthorizedError,
    ValidationError,
)
from ticketbridge.models.activity_log import ActivityLog
from ticketbridge.models.booking import Booking, BookingStatus, CancellationStatus
from ticketbridge.models.cancellation import CancellationRequest, CancellationRequestStatus as S, RefundStatus
from ticketbridge.models.refund_log import RefundLogEntry
from ticketbridge.services.cancellation_service import (
    ALLOWED_TRANSITIONS,
    CancellationWorkflow,
    validate_status_transition,
)
from ticketbridge.services.refund_log_service import RefundLogService
from ticketbridge.services.refund_policy import CancellationPolicy
from ticketbridge.stores.booking_store import BookingStore
from ticketbridge.stores.cancellation_store import CancellationStore

from .factories import ADMIN_ID, CUSTOMER_ID, NOW, OTHER_CUSTOMER_ID, make_booking

ALLOWED = {
    (S.PENDING, S.CANCELLED),
    (S.PENDING, S.APPROVED),
    (S.PENDING, S.DECLINED),
    (S.APPROVED, S.COMPLETED),
}


@pytest.fixture()
def workflow(db, refund_processor):
    return CancellationWorkflow(
        db,
        refunds=RefundLogService(db, processor=refund_processor, processing_fee=0),
        policy=CancellationPolicy(),
    )


def booking_row(db, booking_id) -> Booking:
    db.expire_all()
    return db.get(Booking, booking_id)


@pytest.mark.parametrize(("current", "new"), list(itertools.product(list(S), repeat=2)))
def test_transition_table(current, new):
    if (current, new) in ALLOWED:
        validate_status_transition(current, new)
    else:
        with pytest.raises(InvalidStateError) as exc:
            validate_status_transition(current, new)
        assert f"from {current} to {new}" in exc.value.message


def test_terminal_states_have_no_exits():
    for s in (S.DECLINED, S.COMPLETED, S.CANCELLED):
        assert ALLOWED_TRANSITIONS[s] == frozenset()


class TestRequestCancellation:
    def test_creates_pending_request_and_flags_booking(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "Cannot attend", "sorry")

        assert req.status == S.PENDING
        assert req.customer_notes == "sorry"
        assert booking_row(db, b.id).cancellation_status == CancellationStatus.REQUESTED

    def test_other_customer_is_rejected(self, db, workflow):
        b = make_booking(db)
        with pytest.raises(UnauthorizedError):
            workflow.request_cancellation(b.id, OTHER_CUSTOMER_ID, "x")

    def test_unknown_booking(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.request_cancellation("missing", CUSTOMER_ID, "x")

    def test_reason_required(self, db, workflow):
        b = make_booking(db)
        with pytest.raises(ValidationError):
            workflow.request_cancellation(b.id, CUSTOMER_ID, "   ")

    def test_ineligible_booking_carries_policy_reason(self, db, workflow):
        b = make_booking(db, event_date=NOW - timedelta(days=2))
        with pytest.raises(InvalidStateError) as exc:
            workflow.request_cancellation(b.id, CUSTOMER_ID, "x", now=NOW)
        assert exc.value.message == "Event date has already passed"

    def test_second_active_request_is_rejected(self, db, workflow):
        b = make_booking(db)
        workflow.request_cancellation(b.id, CUSTOMER_ID, "first")
        with pytest.raises(InvalidStateError):
            workflow.request_cancellation(b.id, CUSTOMER_ID, "second")
        assert db.execute(select(func.count()).select_from(CancellationRequest)).scalar_one() == 1

    def test_racing_request_hits_unique_index(self, db, workflow, monkeypatch):
        # Both callers pass the read check; the database must still let only one through
        monkeypatch.setattr(CancellationStore, "has_active_request", lambda self, booking_id: False)
        b = make_booking(db)
        workflow.request_cancellation(b.id, CUSTOMER_ID, "first")

        with pytest.raises(InvalidStateError):
            workflow.request_cancellation(b.id, CUSTOMER_ID, "second")

        rows = db.execute(select(CancellationRequest)).scalars().all()
        assert [r.reason for r in rows] == ["first"]

    def test_activity_log_failure_does_not_block_request(self, db, engine, workflow):
        b = make_booking(db)
        ActivityLog.__table__.drop(engine)

        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "Cannot attend")

        db.expire_all()
        assert db.get(CancellationRequest, req.id).status == S.PENDING
        assert booking_row(db, b.id).cancellation_status == CancellationStatus.REQUESTED

    def test_new_request_allowed_after_decline(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "first")
        workflow.decline_cancellation(req.id, ADMIN_ID, "non-refundable")

        again = workflow.request_cancellation(b.id, CUSTOMER_ID, "second")
        assert again.status == S.PENDING


class TestCustomerWithdraw:
    def test_pending_request_can_be_withdrawn(self, db, workflow):
        b = make_booking(db)
        workflow.request_cancellation(b.id, CUSTOMER_ID, "x")

        req = workflow.customer_cancel_request(b.id, CUSTOMER_ID)

        assert req.status == S.CANCELLED
        assert booking_row(db, b.id).cancellation_status == CancellationStatus.NONE

    def test_withdraw_keeps_request_date(self, db, workflow):
        b = make_booking(db)
        workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        requested_at = booking_row(db, b.id).cancellation_date

        workflow.customer_cancel_request(b.id, CUSTOMER_ID)

        assert requested_at is not None
        assert booking_row(db, b.id).cancellation_date == requested_at

    def test_approved_request_cannot_be_withdrawn(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        workflow.approve_cancellation(req.id, ADMIN_ID)

        with pytest.raises(InvalidStateError):
            workflow.customer_cancel_request(b.id, CUSTOMER_ID)

    def test_without_request(self, db, workflow):
        b = make_booking(db)
        with pytest.raises(NotFoundError):
            workflow.customer_cancel_request(b.id, CUSTOMER_ID)


class TestApprove:
    def test_policy_amount_for_event_in_twenty_days(self, db, workflow):
        b = make_booking(db, total_amount=Decimal("1000.00"), event_date=NOW + timedelta(days=20, hours=2))
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x", now=NOW)

        req = workflow.approve_cancellation(req.id, ADMIN_ID, now=NOW)

        assert req.status == S.APPROVED
        assert Decimal(req.refund_amount) == Decimal("500.00")
        assert req.refund_status == RefundStatus.PENDING
        assert req.admin_id == ADMIN_ID
        assert req.reviewed_at is not None
        assert booking_row(db, b.id).cancellation_status == CancellationStatus.APPROVED

    def test_zero_refund_is_not_applicable(self, db, workflow):
        b = make_booking(db, event_date=NOW + timedelta(days=5))
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x", now=NOW)
        req = workflow.approve_cancellation(req.id, ADMIN_ID, now=NOW)
        assert Decimal(req.refund_amount) == Decimal("0.00")
        assert req.refund_status == RefundStatus.NOT_APPLICABLE

    def test_explicit_amount_overrides_policy(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        req = workflow.approve_cancellation(req.id, ADMIN_ID, refund_amount=Decimal("120.50"), notes="goodwill")
        assert Decimal(req.refund_amount) == Decimal("120.50")
        assert req.admin_notes == "goodwill"

    def test_amount_above_total_is_rejected(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        with pytest.raises(ValidationError):
            workflow.approve_cancellation(req.id, ADMIN_ID, refund_amount=5000)

    def test_only_from_pending(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        workflow.decline_cancellation(req.id, ADMIN_ID, "no")
        with pytest.raises(InvalidStateError):
            workflow.approve_cancellation(req.id, ADMIN_ID)

    def test_unknown_request(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.approve_cancellation("missing", ADMIN_ID)


class TestDecline:
    def test_decline_sets_booking_status(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        req = workflow.decline_cancellation(req.id, ADMIN_ID, "Outside policy")

        assert req.status == S.DECLINED
        assert req.admin_notes == "Outside policy"
        row = booking_row(db, b.id)
        assert row.cancellation_status == CancellationStatus.DECLINED
        assert row.status == BookingStatus.CONFIRMED

    def test_decline_keeps_request_date(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        requested_at = booking_row(db, b.id).cancellation_date

        workflow.decline_cancellation(req.id, ADMIN_ID, "Outside policy")

        assert requested_at is not None
        assert booking_row(db, b.id).cancellation_date == requested_at

    def test_notes_required(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        with pytest.raises(ValidationError):
            workflow.decline_cancellation(req.id, ADMIN_ID, "")


class TestComplete:
    def _approved(self, db, workflow, **booking):
        b = make_booking(db, **booking)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        return b, workflow.approve_cancellation(req.id, ADMIN_ID, notes="approved")

    def test_completion_cancels_booking(self, db, workflow):
        b, req = self._approved(db, workflow)
        req = workflow.complete_cancellation(req.id, ADMIN_ID, refund_reference="REF-2026-1", notes="refunded by bank")

        assert req.status == S.COMPLETED
        assert req.completed_at is not None
        assert req.refund_status == RefundStatus.PROCESSED
        assert req.refund_reference == "REF-2026-1"
        assert req.refund_date is not None
        assert req.admin_notes == "approved\n\nrefunded by bank"
        row = booking_row(db, b.id)
        assert row.status == BookingStatus.CANCELLED
        assert row.cancellation_status == CancellationStatus.CANCELLED
        assert row.cancellation_date is not None

    def test_without_reference_refund_stays_pending(self, db, workflow):
        _, req = self._approved(db, workflow)
        req = workflow.complete_cancellation(req.id, ADMIN_ID)
        assert req.refund_status == RefundStatus.PENDING
        assert req.refund_date is None

    def test_cannot_complete_pending(self, db, workflow):
        b = make_booking(db)
        req = workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        with pytest.raises(InvalidStateError):
            workflow.complete_cancellation(req.id, ADMIN_ID)

    def test_complete_with_refund_records_ledger(self, db, workflow, refund_processor):
        b, req = self._approved(db, workflow)
        req = workflow.complete_with_refund(req.id, ADMIN_ID, notes="auto refund")

        refund_processor.create_refund.assert_called_once()
        entry = db.execute(select(RefundLogEntry)).scalar_one()
        assert req.status == S.COMPLETED
        assert req.refund_reference == entry.reference
        assert req.refund_status == RefundStatus.PROCESSED
        assert entry.booking_id == b.id
        row = booking_row(db, b.id)
        assert row.status == BookingStatus.CANCELLED
        assert row.payment_status == "refunded"

    def test_processor_failure_leaves_request_approved(self, db, workflow, refund_processor):
        refund_processor.create_refund.side_effect = RefundProcessorError("declined", error_code="PROCESSOR_DECLINED")
        b, req = self._approved(db, workflow)

        with pytest.raises(RefundProcessorError):
            workflow.complete_with_refund(req.id, ADMIN_ID)

        db.rollback()
        assert refund_processor.create_refund.call_count == 1
        assert db.get(CancellationRequest, req.id).status == S.APPROVED
        assert db.execute(select(func.count()).select_from(RefundLogEntry)).scalar_one() == 0
        assert booking_row(db, b.id).status == BookingStatus.CONFIRMED

    def test_completion_failure_after_refund_rolls_back_and_alerts(self, db, workflow, refund_processor, monkeypatch):
        b, req = self._approved(db, workflow)

        def broken(self, booking_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(BookingStore, "mark_cancelled", broken)
        messages = []
        sink = logger.add(messages.append, level="CRITICAL")
        try:
            with pytest.raises(RuntimeError):
                workflow.complete_with_refund(req.id, ADMIN_ID)
        finally:
            logger.remove(sink)

        assert refund_processor.create_refund.call_count == 1
        assert len(messages) == 1
        assert "CYBS-1" in messages[0]
        assert db.get(CancellationRequest, req.id).status == S.APPROVED
        assert db.execute(select(func.count()).select_from(RefundLogEntry)).scalar_one() == 0
        assert booking_row(db, b.id).status == BookingStatus.CONFIRMED

    def test_zero_amount_completes_without_processor(self, db):
        processor = MagicMock()
        wf = CancellationWorkflow(db, refunds=RefundLogService(db, processor=processor), policy=CancellationPolicy())
        b = make_booking(db, event_date=NOW + timedelta(days=3))
        req = wf.request_cancellation(b.id, CUSTOMER_ID, "x", now=NOW)
        wf.approve_cancellation(req.id, ADMIN_ID, now=NOW)

        req = wf.complete_with_refund(req.id, ADMIN_ID)

        processor.create_refund.assert_not_called()
        assert req.status == S.COMPLETED


class TestQueries:
    def test_customer_sees_latest_request(self, db, workflow):
        b = make_booking(db)
        workflow.request_cancellation(b.id, CUSTOMER_ID, "x")
        assert workflow.get_cancellation_request(b.id, CUSTOMER_ID).reason == "x"

    def test_other_customer_cannot_read(self, db, workflow):
        b = make_booking(db)
        with pytest.raises(UnauthorizedError):
            workflow.get_cancellation_request(b.id, OTHER_CUSTOMER_ID)

    def test_admin_list_filters_by_status(self, db, workflow):
        b1, b2 = make_booking(db), make_booking(db)
        r1 = workflow.request_cancellation(b1.id, CUSTOMER_ID, "one")
        workflow.request_cancellation(b2.id, CUSTOMER_ID, "two")
        workflow.approve_cancellation(r1.id, ADMIN_ID)

        pending = workflow.list_cancellation_requests(S.PENDING)
        assert [v.request.reason for v in pending] == ["two"]
        assert pending[0].booking.id == b2.id
        assert len(workflow.list_cancellation_requests()) == 2

    def test_unknown_status_filter(self, workflow):
        with pytest.raises(ValidationError):
            workflow.list_cancellation_requests("bogus")
