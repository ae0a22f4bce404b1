from fastapi import APIRouter

from finchat.api.routers.artifacts import router as artifacts_router
from finchat.api.routers.chat import router as chat_router
from finchat.api.routers.sessions import router as sessions_router

api_router = APIRouter()
api_router.include_router(sessions_router)
api_router.include_router(chat_router)
api_router.include_router(artifacts_router)
