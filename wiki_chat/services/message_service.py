"""Service layer for the append-only message store."""

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from wiki_chat.core.exceptions import MessageNotFoundError, ValidationError
from wiki_chat.models.chat_message import ChatMessage
from wiki_chat.repositories.chat_repo import ChatRepository
from wiki_chat.schemas.knowledge_schema import ArticleSource
from wiki_chat.services.session_service import SessionService

logger = structlog.get_logger()

MESSAGE_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class MessageDraft:
    """A message that has not been persisted yet."""

    role: str
    content: str
    sources: Sequence[ArticleSource] = field(default_factory=tuple)


def _validate(role: str, content: str) -> None:
    if role not in MESSAGE_ROLES:
        raise ValidationError(f"Invalid message role: {role!r}")
    if not content or not content.strip():
        raise ValidationError("Message content is required")


def _serialize_sources(sources: Sequence[ArticleSource] | None) -> list[dict] | None:
    if not sources:
        return None
    return [source.model_dump() for source in sources]


class MessageStore:
    """Ordered, immutable message persistence per session.

    Writes check session ownership first and touch the session afterwards;
    the touch is best effort.
    """

    def __init__(self, chat_repo: ChatRepository, session_service: SessionService) -> None:
        self._chat_repo = chat_repo
        self._sessions = session_service

    async def save_message(
        self,
        session_id: str,
        owner_id: str,
        role: str,
        content: str,
        sources: Sequence[ArticleSource] | None = None,
    ) -> ChatMessage:
        _validate(role, content)
        await self._sessions.get_session(session_id, owner_id)
        message = await self._chat_repo.create_message(
            session_id=session_id,
            role=role,
            content=content,
            sources=_serialize_sources(sources),
        )
        await self._sessions.touch_session(session_id, owner_id)
        return message

    async def save_messages(
        self,
        session_id: str,
        owner_id: str,
        drafts: Sequence[MessageDraft],
    ) -> list[ChatMessage]:
        """Persist several messages in one flush; all are validated first."""
        for draft in drafts:
            _validate(draft.role, draft.content)
        await self._sessions.get_session(session_id, owner_id)
        if not drafts:
            return []
        records = await self._chat_repo.create_messages_bulk(
            [
                ChatMessage(
                    session_id=session_id,
                    role=draft.role,
                    content=draft.content,
                    sources=_serialize_sources(draft.sources),
                )
                for draft in drafts
            ]
        )
        await self._sessions.touch_session(session_id, owner_id)
        return records

    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Messages oldest first; ``limit`` keeps only the most recent ones."""
        return await self._chat_repo.find_messages_by_session_id(session_id, limit)

    async def latest_message(self, session_id: str) -> ChatMessage | None:
        return await self._chat_repo.find_latest_message(session_id)

    async def count_messages(self, session_id: str) -> int:
        return await self._chat_repo.count_messages(session_id)

    async def delete_message(self, message_id: int) -> None:
        message = await self._chat_repo.find_message_by_id(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        await self._chat_repo.delete_message(message_id)
        logger.info(
            "Chat message deleted", message_id=message_id, session_id=message.session_id
        )

    async def commit(self) -> None:
        """Make saved messages durable before a long-running step."""
        await self._chat_repo.commit()

    async def rollback(self) -> None:
        await self._chat_repo.rollback()
