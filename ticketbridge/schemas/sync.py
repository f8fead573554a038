from pydantic import BaseModel
from typing import Optional


class SyncOut(BaseModel):
    bookingId: str
    providerBookingId: str
    alreadySynced: bool = False
    bookingCode: Optional[str] = None
    financialStatus: Optional[str] = None
    logisticStatus: Optional[str] = None
    attempt: Optional[int] = None
