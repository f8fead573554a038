from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from ticketbridge.db.session import get_db
from ticketbridge.core.errors import NotFoundError, UnauthorizedError
from ticketbridge.core.security import decode_token
from ticketbridge.models.booking import Booking
from ticketbridge.services.refund_log_service import RefundLogService
from ticketbridge.services.ticketing_client import TicketingClient, ticketing_client_from_settings

bearer = HTTPBearer(auto_error=False)

ADMIN_ROLES = ("admin", "superadmin")
FINANCE_ROLES = ("admin", "finance", "superadmin")


@dataclass(frozen=True)
class Actor:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_current_actor(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Actor:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Actor(id=str(sub), role=str(payload.get("role") or "customer"))


def require_roles(*roles: str):
    def _guard(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor
    return _guard


def get_ticketing_client() -> TicketingClient:
    return ticketing_client_from_settings()


def get_refund_service(db: Session = Depends(get_db)) -> RefundLogService:
    # Processor client is built on first use, so routes that never refund work unconfigured
    return RefundLogService(db)


def owned_booking(db: Session, booking_id: str, actor: Actor) -> Booking:
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFoundError("Booking not found")
    if b.customer_id != actor.id and not actor.is_admin:
        raise UnauthorizedError("Booking does not belong to this customer")
    return b
