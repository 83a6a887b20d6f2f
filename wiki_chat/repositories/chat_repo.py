"""Chat repository for session and message database operations."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wiki_chat.models.chat_message import ChatMessage
from wiki_chat.models.chat_session import ChatSession, utcnow


@dataclass(frozen=True)
class SessionWithCount:
    """Immutable result object for session list queries."""

    id: str
    owner_id: str
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime


class ChatRepository:
    """Encapsulates chat session and message database queries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- Sessions ---

    async def create_session(self, owner_id: str, title: str) -> ChatSession:
        """Create a new chat session."""
        chat_session = ChatSession(owner_id=owner_id, title=title)
        self._session.add(chat_session)
        await self._session.flush()
        await self._session.refresh(chat_session)
        return chat_session

    async def find_session_by_id(self, session_id: str) -> ChatSession | None:
        """Find a chat session by its UUID."""
        result = await self._session.execute(
            select(ChatSession).where(ChatSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def find_sessions_by_owner(self, owner_id: str) -> list[SessionWithCount]:
        """Fetch an owner's sessions, most recently active first."""
        count_subq = (
            select(func.count(ChatMessage.id))
            .where(ChatMessage.session_id == ChatSession.id)
            .correlate(ChatSession)
            .scalar_subquery()
        )

        stmt = (
            select(
                ChatSession.id,
                ChatSession.owner_id,
                ChatSession.title,
                count_subq.label("message_count"),
                ChatSession.created_at,
                ChatSession.updated_at,
            )
            .where(ChatSession.owner_id == owner_id)
            .order_by(ChatSession.updated_at.desc(), ChatSession.id.desc())
        )

        result = await self._session.execute(stmt)
        return [
            SessionWithCount(
                id=row.id,
                owner_id=row.owner_id,
                title=row.title,
                message_count=row.message_count or 0,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
            for row in result
        ]

    async def delete_session(self, session_id: str) -> None:
        """Hard-delete a session together with its messages."""
        await self._session.execute(
            delete(ChatMessage).where(ChatMessage.session_id == session_id)
        )
        await self._session.execute(
            delete(ChatSession).where(ChatSession.id == session_id)
        )

    async def touch_session(self, session_id: str) -> None:
        """Set the session's ``updated_at`` to now."""
        await self._session.execute(
            update(ChatSession)
            .where(ChatSession.id == session_id)
            .values(updated_at=utcnow())
        )

    async def update_session_title(self, session_id: str, title: str) -> None:
        """Update the title of an existing session and bump its recency."""
        await self._session.execute(
            update(ChatSession)
            .where(ChatSession.id == session_id)
            .values(title=title, updated_at=utcnow())
        )

    # --- Messages ---

    async def create_message(
        self,
        session_id: str,
        role: str,
        content: str,
        sources: list[dict[str, Any]] | None = None,
    ) -> ChatMessage:
        """Create a single chat message."""
        message = ChatMessage(
            session_id=session_id,
            role=role,
            content=content,
            sources=sources,
        )
        self._session.add(message)
        await self._session.flush()
        await self._session.refresh(message)
        return message

    async def create_messages_bulk(
        self, messages: list[ChatMessage]
    ) -> list[ChatMessage]:
        """Save multiple messages in a single flush."""
        self._session.add_all(messages)
        await self._session.flush()
        for message in messages:
            await self._session.refresh(message)
        return messages

    async def find_messages_by_session_id(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Retrieve messages for a session in chronological order.

        With ``limit`` only the most recent ``limit`` messages are returned,
        still oldest first.
        """
        if limit is None:
            result = await self._session.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            )
            return list(result.scalars().all())

        result = await self._session.execute(
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def find_latest_message(self, session_id: str) -> ChatMessage | None:
        """Return the newest message of a session, if any."""
        result = await self._session.execute(
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_messages(self, session_id: str) -> int:
        """Count messages stored for a session."""
        result = await self._session.execute(
            select(func.count(ChatMessage.id)).where(
                ChatMessage.session_id == session_id
            )
        )
        return result.scalar_one()

    async def find_message_by_id(self, message_id: int) -> ChatMessage | None:
        """Find a chat message by its primary key."""
        result = await self._session.execute(
            select(ChatMessage).where(ChatMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def delete_message(self, message_id: int) -> None:
        """Hard-delete a single message."""
        await self._session.execute(
            delete(ChatMessage).where(ChatMessage.id == message_id)
        )

    # --- Unit of work ---

    async def commit(self) -> None:
        """Commit pending writes, for work that outlives the request handler."""
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
