from pydantic import BaseModel
from typing import Optional

from ticketbridge.models.refund_log import RefundLogEntry


class RefundIn(BaseModel):
    reason: str
    amount: Optional[float] = None  # omitted -> booking total
    notes: Optional[str] = None

class RefundLogOut(BaseModel):
    id: str
    reference: str
    bookingId: str
    approvedAmount: float
    processingFee: float
    netAmount: float
    refundType: str
    status: str
    reason: str
    processorReference: Optional[str] = None
    processorStatus: Optional[str] = None
    processedAt: Optional[str] = None
    completedAt: Optional[str] = None


def refund_log_out(e: RefundLogEntry) -> RefundLogOut:
    return RefundLogOut(
        id=e.id,
        reference=e.reference,
        bookingId=e.booking_id,
        approvedAmount=float(e.approved_amount),
        processingFee=float(e.processing_fee or 0),
        netAmount=float(e.net_amount),
        refundType=e.refund_type,
        status=e.status,
        reason=e.reason,
        processorReference=e.processor_reference,
        processorStatus=e.processor_status,
        processedAt=e.processed_at.isoformat() if e.processed_at else None,
        completedAt=e.completed_at.isoformat() if e.completed_at else None,
    )
