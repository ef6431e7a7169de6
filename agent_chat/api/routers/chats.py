from collections.abc import AsyncIterator
import logging

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse

from agent_chat.api.schemas.chat import (
    AbortResponse,
    ChatDetailResponse,
    ChatMessageResponse,
    ChatSessionResponse,
    CreateChatRequest,
    PermissionResponseRequest,
    ProvideInputRequest,
    SendMessageRequest,
)
from agent_chat.dependency_injection import get_container
from agent_chat.services.cancellation import CLIENT_DISCONNECTED
from agent_chat.services.chat_stream import encode_sse_event
from agent_chat.services.contracts import ChatServiceProtocol
from agent_chat.services.errors import (
    NoPendingInputError,
    NoPendingPermissionError,
    NotFoundError,
    SessionBusyError,
)
from agent_chat.services.session_mediator import SessionMediator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chats", tags=["chats"])

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _chat_service(request: Request) -> ChatServiceProtocol:
    return get_container(request).resolve(ChatServiceProtocol)


async def _event_stream(mediator: SessionMediator) -> AsyncIterator[str]:
    try:
        async for sequence, event in mediator.events():
            yield encode_sse_event(event, sequence)
    finally:
        # No-op once the turn has finished; otherwise the client went away mid-turn.
        if mediator.cancel(CLIENT_DISCONNECTED):
            logger.info("client disconnected during chat turn", extra={"session_id": mediator.session_id})


@router.get("", response_model=list[ChatSessionResponse], summary="List chat sessions")
async def list_chats(request: Request) -> list[ChatSessionResponse]:
    sessions = await _chat_service(request).list_sessions()
    return [ChatSessionResponse.from_session(session) for session in sessions]


@router.post(
    "",
    response_model=ChatSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a chat session",
)
async def create_chat(payload: CreateChatRequest, request: Request) -> ChatSessionResponse:
    try:
        session = await _chat_service(request).create_session(
            agent_slug=payload.agent_slug,
            working_directory=payload.working_directory,
            model=payload.model,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ChatSessionResponse.from_session(session)


@router.get("/{chat_id}", response_model=ChatDetailResponse, summary="Get a chat session with its history")
async def get_chat(chat_id: str, request: Request) -> ChatDetailResponse:
    try:
        session, messages = await _chat_service(request).get_session_with_messages(chat_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ChatDetailResponse(
        session=ChatSessionResponse.from_session(session),
        messages=[ChatMessageResponse.from_message(message) for message in messages],
    )


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a chat session")
async def delete_chat(chat_id: str, request: Request) -> Response:
    try:
        await _chat_service(request).delete_session(chat_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{chat_id}/messages",
    summary="Send a message and stream the agent's turn",
    description=(
        "Persists the user message, then streams the turn as server-sent events: system_status, "
        "assistant_block, delta, permission_request, user_input_required, tool_result and a terminal result."
    ),
)
async def send_message(chat_id: str, payload: SendMessageRequest, request: Request) -> StreamingResponse:
    # The user message is persisted before the response opens so failures surface as normal HTTP errors.
    try:
        mediator = await _chat_service(request).send_message(chat_id, payload.content)
    except SessionBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return StreamingResponse(_event_stream(mediator), media_type="text/event-stream", headers=_SSE_HEADERS)


@router.post(
    "/{chat_id}/input",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Answer the agent's pending question",
)
async def provide_input(chat_id: str, payload: ProvideInputRequest, request: Request) -> Response:
    try:
        _chat_service(request).provide_input(chat_id, payload.answer)
    except NoPendingInputError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{chat_id}/permission",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Allow or deny the pending tool invocation",
)
async def respond_permission(chat_id: str, payload: PermissionResponseRequest, request: Request) -> Response:
    try:
        _chat_service(request).respond_permission(chat_id, payload.allow)
    except NoPendingPermissionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{chat_id}/abort", response_model=AbortResponse, summary="Cancel the active turn")
async def abort_turn(chat_id: str, request: Request) -> AbortResponse:
    return AbortResponse(cancelled=await _chat_service(request).abort(chat_id))
