"""Service for generating chat session titles via LLM."""

import structlog
from langchain_core.language_models import BaseChatModel

from wiki_chat.models.chat_session import DEFAULT_SESSION_TITLE
from wiki_chat.services.response_generator import chunk_text

logger = structlog.get_logger()

MAX_TITLE_WORDS = 6
FALLBACK_TITLE_CHARS = 50
ELLIPSIS = "…"


def fallback_title(message: str) -> str:
    """First 50 characters of the message, with an ellipsis when cut."""
    if not message:
        return DEFAULT_SESSION_TITLE
    if len(message) > FALLBACK_TITLE_CHARS:
        return message[:FALLBACK_TITLE_CHARS] + ELLIPSIS
    return message


def clean_title(raw: str) -> str:
    """Strip wrapping quotes and keep at most six words."""
    title = raw.strip().splitlines()[0] if raw.strip() else ""
    title = title.strip().strip("\"'“”‘’`").strip()
    words = title.split()
    return " ".join(words[:MAX_TITLE_WORDS])


class TitleService:
    """Generates concise session titles from the first user message.

    Never raises: any failure or empty answer falls back to a truncated copy
    of the message.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def generate_title(self, message: str) -> str:
        prompt = (
            "Generate a short, concise title (max 6 words) for a chat "
            f'conversation that starts with this message: "{message}"\n\n'
            "Only return the title, nothing else."
        )
        try:
            response = await self._llm.ainvoke(prompt)
        except Exception as exc:
            logger.warning(
                "Title generation failed, using fallback",
                operation="llm.title",
                error_type=type(exc).__name__,
                status=getattr(exc, "status_code", None),
            )
            return fallback_title(message)

        title = clean_title(chunk_text(response))
        if not title:
            logger.info("Model returned an empty title, using fallback", operation="llm.title")
            return fallback_title(message)
        return title
