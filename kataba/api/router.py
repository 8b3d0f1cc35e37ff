from fastapi import APIRouter

from kataba.api.chat import router as chat_router
from kataba.api.conversations import router as conversations_router
from kataba.api.health import router as health_router
from kataba.api.users import router as users_router

api_router = APIRouter()

api_router.include_router(chat_router, tags=["Chat"])
api_router.include_router(conversations_router, tags=["Conversations"])
api_router.include_router(users_router, tags=["Users"])
api_router.include_router(health_router, tags=["Health"])
