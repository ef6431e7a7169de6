from fastapi import APIRouter

from agent_chat.api.routers.chats import router as chats_router

api_router = APIRouter()
api_router.include_router(chats_router)
