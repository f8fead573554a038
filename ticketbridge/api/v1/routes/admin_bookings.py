from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketbridge.db.session import get_db
from ticketbridge.api.deps import ADMIN_ROLES, FINANCE_ROLES, Actor, get_refund_service, get_ticketing_client, require_roles
from ticketbridge.schemas.refund import RefundIn, RefundLogOut, refund_log_out
from ticketbridge.schemas.sync import SyncOut
from ticketbridge.services.booking_sync_service import BookingSyncOrchestrator, SyncResult
from ticketbridge.services.refund_log_service import RefundLogService
from ticketbridge.services.ticketing_client import TicketingClient

router = APIRouter(prefix="/admin", tags=["admin"])


def _sync_out(r: SyncResult) -> SyncOut:
    return SyncOut(
        bookingId=r.booking_id,
        providerBookingId=r.provider_booking_id,
        alreadySynced=r.already_synced,
        bookingCode=r.booking_code,
        financialStatus=r.financial_status,
        logisticStatus=r.logistic_status,
        attempt=r.attempt,
    )


@router.post("/bookings/{booking_id}/sync", response_model=SyncOut)
def sync_booking(booking_id: str,
                 me: Actor = Depends(require_roles(*ADMIN_ROLES)),
                 db: Session = Depends(get_db),
                 client: TicketingClient = Depends(get_ticketing_client)):
    return _sync_out(BookingSyncOrchestrator(db, client).sync_after_payment(booking_id, actor_id=me.id))


@router.post("/bookings/{booking_id}/resync", response_model=SyncOut)
def resync_status(booking_id: str,
                  me: Actor = Depends(require_roles(*ADMIN_ROLES)),
                  db: Session = Depends(get_db),
                  client: TicketingClient = Depends(get_ticketing_client)):
    return _sync_out(BookingSyncOrchestrator(db, client).sync_status(booking_id, actor_id=me.id))


@router.get("/bookings/{booking_id}/refunds", response_model=list[RefundLogOut])
def list_refunds(booking_id: str,
                 me: Actor = Depends(require_roles(*FINANCE_ROLES)),
                 svc: RefundLogService = Depends(get_refund_service)):
    return [refund_log_out(e) for e in svc.list_refunds(booking_id)]


@router.post("/bookings/{booking_id}/refunds", response_model=RefundLogOut)
def execute_refund(booking_id: str, body: RefundIn,
                   me: Actor = Depends(require_roles(*FINANCE_ROLES)),
                   svc: RefundLogService = Depends(get_refund_service)):
    entry = svc.execute_refund(booking_id, reason=body.reason, amount=body.amount, admin_id=me.id, notes=body.notes)
    return refund_log_out(entry)


@router.post("/refunds/{entry_id}/refresh", response_model=RefundLogOut)
def refresh_refund(entry_id: str,
                   me: Actor = Depends(require_roles(*FINANCE_ROLES)),
                   svc: RefundLogService = Depends(get_refund_service)):
    return refund_log_out(svc.refresh_from_processor(entry_id))


@router.post("/refunds/{entry_id}/void", response_model=RefundLogOut)
def void_refund(entry_id: str,
                me: Actor = Depends(require_roles(*FINANCE_ROLES)),
                svc: RefundLogService = Depends(get_refund_service)):
    return refund_log_out(svc.void_refund(entry_id, admin_id=me.id))
