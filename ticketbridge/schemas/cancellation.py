from pydantic import BaseModel
from typing import List, Optional

from ticketbridge.models.cancellation import CancellationRequest


class CancellationRequestIn(BaseModel):
    reason: str
    notes: Optional[str] = None

class ApproveIn(BaseModel):
    refundAmount: Optional[float] = None  # omitted -> computed from the cancellation policy
    notes: Optional[str] = None

class DeclineIn(BaseModel):
    notes: str

class CompleteIn(BaseModel):
    refundReference: Optional[str] = None
    notes: Optional[str] = None
    executeRefund: bool = False  # refund the approved amount through the processor first

class CancellationOut(BaseModel):
    id: str
    bookingId: str
    status: str
    reason: str
    customerNotes: Optional[str] = None
    adminNotes: Optional[str] = None
    refundAmount: Optional[float] = None
    refundStatus: str
    refundReference: Optional[str] = None
    requestedAt: Optional[str] = None
    reviewedAt: Optional[str] = None
    completedAt: Optional[str] = None

class AdminCancellationOut(CancellationOut):
    bookingRef: str
    customerEmail: str = ""
    eventName: str = ""
    eventDate: Optional[str] = None
    totalAmount: float = 0

class AdminCancellationList(BaseModel):
    items: List[AdminCancellationOut]


def _iso(dt):
    return dt.isoformat() if dt else None


def cancellation_out(req: CancellationRequest) -> CancellationOut:
    return CancellationOut(**_fields(req))


def admin_cancellation_out(req: CancellationRequest, booking) -> AdminCancellationOut:
    return AdminCancellationOut(
        **_fields(req),
        bookingRef=booking.booking_ref,
        customerEmail=booking.customer_email or "",
        eventName=booking.event_name or "",
        eventDate=_iso(booking.event_date),
        totalAmount=float(booking.total_amount or 0),
    )


def _fields(req: CancellationRequest) -> dict:
    return dict(
        id=req.id,
        bookingId=req.booking_id,
        status=req.status,
        reason=req.reason or "",
        customerNotes=req.customer_notes,
        adminNotes=req.admin_notes,
        refundAmount=float(req.refund_amount) if req.refund_amount is not None else None,
        refundStatus=req.refund_status,
        refundReference=req.refund_reference,
        requestedAt=_iso(req.requested_at),
        reviewedAt=_iso(req.reviewed_at),
        completedAt=_iso(req.completed_at),
    )
