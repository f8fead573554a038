from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ticketbridge.db.session import get_db
from ticketbridge.api.deps import Actor, get_current_actor, get_ticketing_client, owned_booking
from ticketbridge.schemas.eticket import AvailabilityOut, CustomerTicketOut
from ticketbridge.services.eticket_service import ETicketAvailabilityService, TicketFile
from ticketbridge.services.ticketing_client import TicketingClient

router = APIRouter(tags=["etickets"])


def _service(db: Session = Depends(get_db), client: TicketingClient = Depends(get_ticketing_client)) -> ETicketAvailabilityService:
    return ETicketAvailabilityService(db, client)


def _file_response(f: TicketFile) -> Response:
    return Response(
        content=f.content,
        media_type=f.content_type,
        headers={"Content-Disposition": f'attachment; filename="{f.filename}"', "Content-Length": str(f.size)},
    )


@router.get("/tickets", response_model=list[CustomerTicketOut])
def list_my_tickets(actor: Actor = Depends(get_current_actor), svc: ETicketAvailabilityService = Depends(_service)):
    return [
        CustomerTicketOut(
            bookingId=b.id,
            bookingRef=b.booking_ref,
            eventName=b.event_name or "",
            eventDate=b.event_date.isoformat() if b.event_date else None,
            quantity=b.quantity or 1,
            ticketStatus=b.eticket_status,
            synced=bool(b.provider_booking_id),
            downloadCount=b.download_count or 0,
            firstDownloadedAt=b.first_downloaded_at.isoformat() if b.first_downloaded_at else None,
        )
        for b in svc.list_customer_tickets(actor.id)
    ]


@router.get("/bookings/{booking_id}/tickets", response_model=AvailabilityOut)
def ticket_availability(booking_id: str,
                        actor: Actor = Depends(get_current_actor),
                        db: Session = Depends(get_db),
                        svc: ETicketAvailabilityService = Depends(_service)):
    owned_booking(db, booking_id, actor)
    r = svc.check_availability(booking_id)
    return AvailabilityOut(
        bookingId=r.booking_id,
        status=r.status,
        available=r.available,
        ticketUrls=r.ticket_urls,
        zipUrl=r.zip_url,
        downloadCount=r.download_count,
        message=r.message,
    )


@router.get("/bookings/{booking_id}/tickets/zip")
def download_zip(booking_id: str,
                 actor: Actor = Depends(get_current_actor),
                 db: Session = Depends(get_db),
                 svc: ETicketAvailabilityService = Depends(_service)):
    owned_booking(db, booking_id, actor)
    return _file_response(svc.download_zip(booking_id))


@router.get("/bookings/{booking_id}/tickets/{order_item_id}")
def download_ticket(booking_id: str, order_item_id: str, token: str = Query(...),
                    actor: Actor = Depends(get_current_actor),
                    db: Session = Depends(get_db),
                    svc: ETicketAvailabilityService = Depends(_service)):
    owned_booking(db, booking_id, actor)
    return _file_response(svc.download_single(booking_id, order_item_id, token))
