from sqlalchemy import Column, String, Boolean, DateTime, Text, func

from ticketbridge.db.session import Base


class TicketDownloadLog(Base):
    __tablename__ = "ticket_download_logs"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), nullable=False, index=True)

    # single | zip
    kind = Column(String(10), nullable=False, default="single")
    order_item_id = Column(String(64), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)

    attempted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
