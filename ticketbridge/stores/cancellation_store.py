from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketbridge.models.cancellation import (
    ACTIVE_REQUEST_STATUSES,
    CancellationRequest,
    CancellationRequestStatus,
)


class CancellationStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, *, booking_id: str, customer_id: str, reason: str, customer_notes: str | None) -> CancellationRequest:
        req = CancellationRequest(
            id=str(uuid.uuid4()),
            booking_id=booking_id,
            customer_id=customer_id,
            reason=reason,
            customer_notes=customer_notes,
            status=CancellationRequestStatus.PENDING,
        )
        self.db.add(req)
        # Flush so the active-request unique index fires here, not at commit
        self.db.flush()
        return req

    def get(self, request_id: str) -> CancellationRequest | None:
        return self.db.get(CancellationRequest, request_id)

    def get_for_update(self, request_id: str) -> CancellationRequest | None:
        return self.db.execute(
            select(CancellationRequest).where(CancellationRequest.id == request_id).with_for_update()
        ).scalar_one_or_none()

    def latest_for_booking(self, booking_id: str) -> CancellationRequest | None:
        return self.db.execute(
            select(CancellationRequest)
            .where(CancellationRequest.booking_id == booking_id)
            .order_by(CancellationRequest.requested_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def has_active_request(self, booking_id: str) -> bool:
        return self.db.execute(
            select(CancellationRequest.id)
            .where(
                CancellationRequest.booking_id == booking_id,
                CancellationRequest.status.in_([s.value for s in ACTIVE_REQUEST_STATUSES]),
            )
            .limit(1)
        ).first() is not None

    def update(self, req: CancellationRequest, **fields) -> CancellationRequest:
        for k, v in fields.items():
            setattr(req, k, v)
        self.db.flush()
        return req

    def list(self, status: str | None = None, limit: int = 500) -> list[CancellationRequest]:
        q = select(CancellationRequest)
        if status:
            q = q.where(CancellationRequest.status == status)
        q = q.order_by(CancellationRequest.requested_at.desc()).limit(limit)
        return list(self.db.execute(q).scalars())
