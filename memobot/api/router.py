from fastapi import APIRouter

from memobot.features.media.api import router as media_router
from memobot.features.reminders.api import router as reminders_router

api_router = APIRouter()
api_router.include_router(media_router)
api_router.include_router(reminders_router)
