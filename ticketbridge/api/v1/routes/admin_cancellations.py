from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketbridge.db.session import get_db
from ticketbridge.api.deps import ADMIN_ROLES, Actor, get_refund_service, require_roles
from ticketbridge.schemas.cancellation import (
    AdminCancellationList,
    ApproveIn,
    CancellationOut,
    CompleteIn,
    DeclineIn,
    admin_cancellation_out,
    cancellation_out,
)
from ticketbridge.services.cancellation_service import CancellationWorkflow
from ticketbridge.services.refund_log_service import RefundLogService

router = APIRouter(prefix="/admin/cancellations", tags=["admin"])


def _workflow(db: Session = Depends(get_db), refunds: RefundLogService = Depends(get_refund_service)) -> CancellationWorkflow:
    return CancellationWorkflow(db, refunds=refunds)


@router.get("", response_model=AdminCancellationList)
def list_cancellations(status: str | None = None,
                       me: Actor = Depends(require_roles(*ADMIN_ROLES)),
                       wf: CancellationWorkflow = Depends(_workflow)):
    return AdminCancellationList(items=[
        admin_cancellation_out(v.request, v.booking) for v in wf.list_cancellation_requests(status)
    ])


@router.post("/{request_id}/approve", response_model=CancellationOut)
def approve(request_id: str, body: ApproveIn,
            me: Actor = Depends(require_roles(*ADMIN_ROLES)),
            wf: CancellationWorkflow = Depends(_workflow)):
    return cancellation_out(wf.approve_cancellation(request_id, me.id, body.refundAmount, body.notes))


@router.post("/{request_id}/decline", response_model=CancellationOut)
def decline(request_id: str, body: DeclineIn,
            me: Actor = Depends(require_roles(*ADMIN_ROLES)),
            wf: CancellationWorkflow = Depends(_workflow)):
    return cancellation_out(wf.decline_cancellation(request_id, me.id, body.notes))


@router.post("/{request_id}/complete", response_model=CancellationOut)
def complete(request_id: str, body: CompleteIn,
             me: Actor = Depends(require_roles(*ADMIN_ROLES)),
             wf: CancellationWorkflow = Depends(_workflow)):
    if body.executeRefund:
        return cancellation_out(wf.complete_with_refund(request_id, me.id, body.notes))
    return cancellation_out(wf.complete_cancellation(request_id, me.id, body.refundReference, body.notes))
