"""Chat session API router."""

from typing import Annotated

from fastapi import APIRouter, Depends

from wiki_chat.dependencies import (
    CurrentUser,
    get_current_user,
    get_message_store,
    get_session_service,
)
from wiki_chat.schemas.response_schema import (
    ERROR_RESPONSES,
    ApiResponse,
    success_response,
)
from wiki_chat.schemas.session_schema import (
    CreateSessionRequest,
    MessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionResponse,
    SessionSummary,
    UpdateTitleRequest,
)
from wiki_chat.services.message_service import MessageStore
from wiki_chat.services.session_service import SessionService

router = APIRouter(
    prefix="/api/v1/sessions",
    tags=["sessions"],
    responses=ERROR_RESPONSES,
)

SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]
MessageStoreDep = Annotated[MessageStore, Depends(get_message_store)]
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


@router.get("", response_model=ApiResponse[SessionListResponse])
async def list_sessions(
    service: SessionServiceDep,
    current_user: CurrentUserDep,
) -> dict:
    """List the current user's sessions, most recently active first."""
    sessions = await service.list_sessions(current_user.id)
    result = SessionListResponse(
        sessions=[SessionSummary.model_validate(s) for s in sessions]
    )
    return success_response(result)


@router.post("", response_model=ApiResponse[SessionResponse], status_code=201)
async def create_session(
    service: SessionServiceDep,
    current_user: CurrentUserDep,
    request: CreateSessionRequest | None = None,
) -> dict:
    """Open a new conversation."""
    title = request.title if request else None
    session = await service.create_session(current_user.id, title)
    return success_response(
        SessionResponse.model_validate(session), status=201, message="Created"
    )


@router.get("/{session_id}", response_model=ApiResponse[SessionDetailResponse])
async def get_session(
    session_id: str,
    service: SessionServiceDep,
    messages: MessageStoreDep,
    current_user: CurrentUserDep,
) -> dict:
    """Return a session with its messages in order."""
    session = await service.get_session(session_id, current_user.id)
    records = await messages.list_messages(session_id)
    result = SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        messages=[MessageResponse.model_validate(m) for m in records],
    )
    return success_response(result)


@router.patch("/{session_id}/title", response_model=ApiResponse[None])
async def update_session_title(
    session_id: str,
    request: UpdateTitleRequest,
    service: SessionServiceDep,
    current_user: CurrentUserDep,
) -> dict:
    """Rename a session."""
    await service.update_title(session_id, current_user.id, request.title)
    return success_response(None, message="Title updated")


@router.delete("/{session_id}", response_model=ApiResponse[None])
async def delete_session(
    session_id: str,
    service: SessionServiceDep,
    current_user: CurrentUserDep,
) -> dict:
    """Delete a session and all of its messages."""
    await service.delete_session(session_id, current_user.id)
    return success_response(None, message="Session deleted")
