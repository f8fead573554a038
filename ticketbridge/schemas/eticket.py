from pydantic import BaseModel
from typing import Any, List, Optional


class AvailabilityOut(BaseModel):
    bookingId: str
    status: str
    available: bool
    ticketUrls: List[Any] = []
    zipUrl: Optional[str] = None
    downloadCount: int = 0
    message: Optional[str] = None

class CustomerTicketOut(BaseModel):
    bookingId: str
    bookingRef: str
    eventName: str = ""
    eventDate: Optional[str] = None
    quantity: int = 1
    ticketStatus: str
    synced: bool
    downloadCount: int = 0
    firstDownloadedAt: Optional[str] = None
