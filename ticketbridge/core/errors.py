"""Error kinds raised by the booking lifecycle services.

Services raise these; the HTTP layer maps them to status codes in one place
(see ``ticketbridge.api.errors``).
"""
from __future__ import annotations


class BookingError(Exception):
    code = "booking_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BookingError):
    code = "not_found"
    http_status = 404


class UnauthorizedError(BookingError):
    code = "unauthorized"
    http_status = 403


class InvalidStateError(BookingError):
    code = "invalid_state"
    http_status = 409


class ValidationError(BookingError):
    code = "validation_error"
    http_status = 422


class UpstreamError(BookingError):
    code = "upstream_error"
    http_status = 502

    def __init__(self, message: str, *, status_code: int | None = None, body: object = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TicketingProviderError(UpstreamError):
    """Ticketing provider failure. Safe to retry: sync re-entry is idempotent."""
    code = "ticketing_provider_error"
    retryable = True


class RefundProcessorError(UpstreamError):
    """Payment processor failure. Never retried automatically (duplicate refunds)."""
    code = "refund_processor_error"
    retryable = False

    def __init__(self, message: str, *, error_code: str | None = None, status_code: int | None = None, body: object = None):
        super().__init__(message, status_code=status_code, body=body)
        self.error_code = error_code
