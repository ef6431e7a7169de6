from fastapi import APIRouter, Request

from agent_chat.dependency_injection import get_container
from agent_chat.services.contracts import ChatServiceProtocol

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request) -> dict[str, str | int]:
    chat_service = get_container(request).resolve(ChatServiceProtocol)
    return {"status": "ok", "active_turns": chat_service.active_turns}
