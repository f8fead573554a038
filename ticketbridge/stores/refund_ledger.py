from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketbridge.models.refund_log import RefundLogEntry


class RefundLedger:
    """Append-only access to refund_logs: entries are created and updated, never deleted."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, entry: RefundLogEntry) -> RefundLogEntry:
        self.db.add(entry)
        self.db.flush()
        return entry

    def get(self, entry_id: str) -> RefundLogEntry | None:
        return self.db.get(RefundLogEntry, entry_id)

    def get_by_processor_reference(self, processor_reference: str) -> RefundLogEntry | None:
        return self.db.execute(
            select(RefundLogEntry).where(RefundLogEntry.processor_reference == processor_reference)
        ).scalar_one_or_none()

    def reference_exists(self, reference: str) -> bool:
        return self.db.execute(
            select(RefundLogEntry.id).where(RefundLogEntry.reference == reference)
        ).first() is not None

    def update(self, entry: RefundLogEntry, **fields) -> RefundLogEntry:
        for k, v in fields.items():
            setattr(entry, k, v)
        self.db.flush()
        return entry

    def list_for_booking(self, booking_id: str) -> list[RefundLogEntry]:
        return list(self.db.execute(
            select(RefundLogEntry)
            .where(RefundLogEntry.booking_id == booking_id)
            .order_by(RefundLogEntry.created_at.desc())
        ).scalars())
