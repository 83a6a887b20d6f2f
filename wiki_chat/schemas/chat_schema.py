"""Chat request and streaming event schemas."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MAX_MESSAGE_LENGTH = 4000


class ChatMessageRequest(BaseModel):
    """A user turn sent to the wiki assistant."""

    session_id: str = Field(..., min_length=1, max_length=36)
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)


class StreamEvent(BaseModel):
    """Server-Sent Event for streaming responses.

    ``token`` carries a text chunk, ``sources`` the cited articles, ``done``
    the persisted message ids and ``error`` a ``{message, code, retryable}``
    payload.
    """

    event: Literal["token", "sources", "done", "error"]
    data: str | list[dict[str, Any]] | dict[str, Any]


class ChatHealthResponse(BaseModel):
    """Configuration summary of the chat pipeline."""

    model_config = ConfigDict(frozen=True)

    status: Literal["healthy", "degraded"]
    provider: str
    model: str
    api_key: str
    temperature: float
    max_tokens: int
    knowledge_source: str
