from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketbridge.db.session import get_db
from ticketbridge.api.deps import Actor, get_current_actor, get_refund_service
from ticketbridge.schemas.cancellation import CancellationOut, CancellationRequestIn, cancellation_out
from ticketbridge.services.cancellation_service import CancellationWorkflow
from ticketbridge.services.refund_log_service import RefundLogService

router = APIRouter(tags=["cancellations"])


def _workflow(db: Session = Depends(get_db), refunds: RefundLogService = Depends(get_refund_service)) -> CancellationWorkflow:
    return CancellationWorkflow(db, refunds=refunds)


@router.post("/bookings/{booking_id}/cancellation", response_model=CancellationOut)
def request_cancellation(booking_id: str, body: CancellationRequestIn,
                         actor: Actor = Depends(get_current_actor),
                         wf: CancellationWorkflow = Depends(_workflow)):
    req = wf.request_cancellation(booking_id, actor.id, body.reason, body.notes)
    return cancellation_out(req)


@router.get("/bookings/{booking_id}/cancellation", response_model=CancellationOut | None)
def get_cancellation(booking_id: str,
                     actor: Actor = Depends(get_current_actor),
                     wf: CancellationWorkflow = Depends(_workflow)):
    req = wf.get_cancellation_request(booking_id, actor.id)
    return cancellation_out(req) if req else None


@router.delete("/bookings/{booking_id}/cancellation", response_model=CancellationOut)
def withdraw_cancellation(booking_id: str,
                          actor: Actor = Depends(get_current_actor),
                          wf: CancellationWorkflow = Depends(_workflow)):
    return cancellation_out(wf.customer_cancel_request(booking_id, actor.id))
