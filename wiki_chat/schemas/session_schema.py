"""Session and message API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from wiki_chat.schemas.knowledge_schema import ArticleSource


class CreateSessionRequest(BaseModel):
    """Request to open a new conversation."""

    title: str | None = Field(default=None, min_length=1, max_length=255)


class UpdateTitleRequest(BaseModel):
    """Request to rename a conversation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)


class SessionResponse(BaseModel):
    """Single chat session."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    title: str
    created_at: datetime
    updated_at: datetime


class SessionSummary(SessionResponse):
    """Session entry in the list response."""

    message_count: int = 0


class MessageResponse(BaseModel):
    """Single message within a session."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    session_id: str
    role: str
    content: str
    sources: list[ArticleSource] | None = None
    created_at: datetime


class SessionDetailResponse(BaseModel):
    """Session together with its ordered messages."""

    model_config = ConfigDict(frozen=True)

    session: SessionResponse
    messages: list[MessageResponse]


class SessionListResponse(BaseModel):
    """All sessions of the current user, most recent first."""

    model_config = ConfigDict(frozen=True)

    sessions: list[SessionSummary]
