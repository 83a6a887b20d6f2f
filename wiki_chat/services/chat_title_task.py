"""Background task for titling a session after its first exchange."""

import structlog
from langchain_core.language_models import BaseChatModel

from wiki_chat.core.database import async_session_factory
from wiki_chat.repositories.chat_repo import ChatRepository
from wiki_chat.services.session_service import SessionService
from wiki_chat.services.title_service import TitleService

logger = structlog.get_logger()


async def generate_session_title(
    session_id: str,
    owner_id: str,
    message: str,
    llm: BaseChatModel,
) -> None:
    """Generate and persist a session title in an independent DB session.

    Runs as a FastAPI BackgroundTask so the chat response is not blocked by
    the extra model call.
    """
    title = await TitleService(llm).generate_title(message)
    try:
        async with async_session_factory() as session:
            sessions = SessionService(ChatRepository(session))
            await sessions.update_title(session_id, owner_id, title)
            await session.commit()
    except Exception:
        logger.exception(
            "Failed to store session title",
            operation="session.title",
            session_id=session_id,
        )
        return

    logger.info("Session title generated", session_id=session_id, title=title)
