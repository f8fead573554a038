from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ticketbridge.core.errors import BookingError, RefundProcessorError


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("{} {} failed: {} ({})", request.method, request.url.path, exc.message, exc.code)
    body = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, RefundProcessorError) and exc.error_code:
        body["processorCode"] = exc.error_code
    return JSONResponse(status_code=exc.http_status, content=body)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
