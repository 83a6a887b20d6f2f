"""Service layer for user-owned chat sessions."""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from wiki_chat.core.exceptions import (
    ForbiddenError,
    SessionNotFoundError,
    ValidationError,
)
from wiki_chat.models.chat_session import DEFAULT_SESSION_TITLE, ChatSession
from wiki_chat.repositories.chat_repo import ChatRepository, SessionWithCount

logger = structlog.get_logger()


class SessionService:
    """CRUD over conversation sessions, scoped to their owner."""

    def __init__(self, chat_repo: ChatRepository) -> None:
        self._chat_repo = chat_repo

    async def create_session(
        self, owner_id: str, title: str | None = None
    ) -> ChatSession:
        session = await self._chat_repo.create_session(
            owner_id=owner_id,
            title=(title or "").strip() or DEFAULT_SESSION_TITLE,
        )
        logger.info("Chat session created", session_id=session.id, owner_id=owner_id)
        return session

    async def get_session(self, session_id: str, owner_id: str) -> ChatSession:
        """Return the session if it exists and belongs to ``owner_id``."""
        session = await self._chat_repo.find_session_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.owner_id != owner_id:
            logger.warning(
                "Session access denied",
                operation="session.get",
                session_id=session_id,
                owner_id=owner_id,
            )
            raise ForbiddenError("Not authorized to access this chat session")
        return session

    async def list_sessions(self, owner_id: str) -> list[SessionWithCount]:
        """Owner's sessions, most recently active first."""
        return await self._chat_repo.find_sessions_by_owner(owner_id)

    async def delete_session(self, session_id: str, owner_id: str) -> None:
        await self.get_session(session_id, owner_id)
        await self._chat_repo.delete_session(session_id)
        logger.info("Chat session deleted", session_id=session_id, owner_id=owner_id)

    async def update_title(self, session_id: str, owner_id: str, title: str) -> None:
        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be blank")
        await self.get_session(session_id, owner_id)
        await self._chat_repo.update_session_title(session_id, title)

    async def touch_session(self, session_id: str, owner_id: str) -> None:
        """Mark the session as recently active.

        Best effort: failures are logged and never raised, so a recency
        update can not block message delivery.
        """
        try:
            await self.get_session(session_id, owner_id)
            await self._chat_repo.touch_session(session_id)
        except (SessionNotFoundError, ForbiddenError, SQLAlchemyError) as exc:
            logger.warning(
                "Session touch failed",
                operation="session.touch",
                session_id=session_id,
                error_type=type(exc).__name__,
            )
