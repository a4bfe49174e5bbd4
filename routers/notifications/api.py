from fastapi import APIRouter

from . import pusher_auth

router = APIRouter()
router.include_router(pusher_auth.router)
