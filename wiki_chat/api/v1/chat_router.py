"""Chat API router for the wiki assistant."""

import json
from collections.abc import AsyncGenerator
from contextlib import aclosing
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import StreamingResponse

from wiki_chat.core.config import settings
from wiki_chat.core.rate_limit import limiter
from wiki_chat.dependencies import (
    CurrentUser,
    get_chat_service,
    get_current_user,
    get_title_llm,
)
from wiki_chat.schemas.chat_schema import ChatHealthResponse, ChatMessageRequest
from wiki_chat.schemas.response_schema import (
    ERROR_RESPONSES,
    ApiResponse,
    success_response,
)
from wiki_chat.services.chat_service import ChatService, ChatTurn
from wiki_chat.services.chat_title_task import generate_session_title

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def event_generator(
    chat_service: ChatService,
    turn: ChatTurn,
    background_tasks: BackgroundTasks,
) -> AsyncGenerator[str, None]:
    """Render pipeline events as Server-Sent Events.

    Closing this generator, as Starlette does on client disconnect, closes the
    pipeline stream and with it the provider connection.
    """
    async with aclosing(chat_service.stream_events(turn)) as events:
        async for event in events:
            if event.event == "done" and turn.is_first_turn:
                background_tasks.add_task(
                    generate_session_title,
                    session_id=turn.session_id,
                    owner_id=turn.owner_id,
                    message=turn.message,
                    llm=get_title_llm(),
                )
            yield f"data: {json.dumps(event.model_dump())}\n\n"


@router.post("/message", responses=ERROR_RESPONSES)
@limiter.limit(settings.chat.rate_limit)
async def send_message(
    request: Request,
    payload: ChatMessageRequest,
    chat_service: ChatServiceDep,
    current_user: CurrentUserDep,
    background_tasks: BackgroundTasks,
) -> StreamingResponse:
    """Answer a message in a session, streamed as Server-Sent Events."""
    turn = await chat_service.start_turn(
        session_id=payload.session_id,
        owner_id=current_user.id,
        message=payload.message,
    )
    return StreamingResponse(
        event_generator(chat_service, turn, background_tasks),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/health", response_model=ApiResponse[ChatHealthResponse])
async def chat_health() -> dict:
    """Report the chat pipeline configuration without exposing secrets."""
    llm_config = settings.llm
    knowledge = settings.knowledge
    if knowledge.uses_remote_content:
        source = "remote"
    elif knowledge.articles_path is not None:
        source = "file"
    else:
        source = "none"
    result = ChatHealthResponse(
        status="healthy" if source != "none" else "degraded",
        provider=llm_config.provider,
        model=llm_config.model,
        api_key=llm_config.masked_api_key,
        temperature=llm_config.temperature,
        max_tokens=llm_config.max_tokens,
        knowledge_source=source,
    )
    return success_response(result)
