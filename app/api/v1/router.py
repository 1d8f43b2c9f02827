from fastapi import APIRouter

from app.api.v1.bookings import router as bookings_router
from app.api.v1.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(bookings_router)
api_router.include_router(webhooks_router)
