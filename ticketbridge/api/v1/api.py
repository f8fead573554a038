from fastapi import APIRouter
from ticketbridge.api.v1.routes.cancellations import router as cancellations_router
from ticketbridge.api.v1.routes.etickets import router as etickets_router
from ticketbridge.api.v1.routes.admin_cancellations import router as admin_cancellations_router
from ticketbridge.api.v1.routes.admin_bookings import router as admin_bookings_router
from ticketbridge.api.v1.routes.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(cancellations_router)
api_router.include_router(etickets_router)
api_router.include_router(admin_cancellations_router)
api_router.include_router(admin_bookings_router)
api_router.include_router(webhooks_router)
