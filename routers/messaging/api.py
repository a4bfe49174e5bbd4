from fastapi import APIRouter

from config import GROUPS_ENABLED, PRESENCE_ENABLED

from . import group_messages, messages, presence

router = APIRouter()
router.include_router(messages.router)
if GROUPS_ENABLED:
    router.include_router(group_messages.router)
if PRESENCE_ENABLED:
    router.include_router(presence.router)
