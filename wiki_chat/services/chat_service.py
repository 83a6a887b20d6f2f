"""Per-turn orchestration of the wiki assistant pipeline.

A turn runs session check -> persist question -> retrieve -> classify ->
compose -> stream -> persist answer. ``start_turn`` covers everything before
the model is contacted, so its failures surface as ordinary HTTP errors;
``stream_events`` drives the model call and reports failures as SSE events.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError

from wiki_chat.core.exceptions import (
    AppException,
    GenerationError,
    KnowledgeBaseError,
    LLMServiceError,
    ValidationError,
)
from wiki_chat.models.chat_message import ChatMessage
from wiki_chat.schemas.chat_schema import StreamEvent
from wiki_chat.schemas.knowledge_schema import RetrievedArticle
from wiki_chat.services.message_service import MessageStore
from wiki_chat.services.query_classifier import ClassificationFlags, QueryClassifier
from wiki_chat.services.response_generator import ResponseGenerator, ResponseStream
from wiki_chat.services.retrieval_service import KnowledgeRetriever
from wiki_chat.services.session_service import SessionService

logger = structlog.get_logger()

PERSIST_FAILED_MESSAGE = "Your answer could not be saved. Please try again."


@dataclass
class ChatTurn:
    """State of one user turn between retrieval and the end of streaming."""

    session_id: str
    owner_id: str
    message: str
    user_message: ChatMessage
    retrieved: list[RetrievedArticle]
    flags: ClassificationFlags
    stream: ResponseStream
    is_first_turn: bool


def error_event(exc: AppException, retryable: bool) -> StreamEvent:
    return StreamEvent(
        event="error",
        data={"message": exc.message, "code": exc.code, "retryable": retryable},
    )


class ChatService:
    """Runs the retrieve-prompt-stream-persist flow for a single message."""

    def __init__(
        self,
        sessions: SessionService,
        messages: MessageStore,
        retriever: KnowledgeRetriever,
        classifier: QueryClassifier,
        generator: ResponseGenerator,
        history_limit: int = 20,
    ) -> None:
        self._sessions = sessions
        self._messages = messages
        self._retriever = retriever
        self._classifier = classifier
        self._generator = generator
        self._history_limit = history_limit

    async def start_turn(self, session_id: str, owner_id: str, message: str) -> ChatTurn:
        """Validate and persist the question, then prepare the answer stream."""
        text = message.strip()
        if not text:
            raise ValidationError("Message is required and cannot be empty")

        await self._sessions.get_session(session_id, owner_id)
        is_first_turn = await self._messages.count_messages(session_id) == 0
        history = (
            await self._messages.list_messages(session_id, self._history_limit)
            if self._history_limit and not is_first_turn
            else []
        )

        user_message = await self._messages.save_message(
            session_id, owner_id, "user", text
        )
        await self._messages.commit()

        retrieved = await self._retrieve(text)
        flags = self._classifier.classify(text, retrieved)
        logger.info(
            "Query classified",
            session_id=session_id,
            articles=len(retrieved),
            is_recommendation=flags.is_recommendation,
            is_ambiguous=flags.is_ambiguous,
            is_out_of_scope=flags.is_out_of_scope,
        )

        categories: list[str] = []
        if not retrieved or flags.is_out_of_scope:
            categories = await self._category_names()

        stream = self._generator.generate(
            text, retrieved, flags, categories, history
        )
        return ChatTurn(
            session_id=session_id,
            owner_id=owner_id,
            message=text,
            user_message=user_message,
            retrieved=retrieved,
            flags=flags,
            stream=stream,
            is_first_turn=is_first_turn,
        )

    async def stream_events(self, turn: ChatTurn) -> AsyncIterator[StreamEvent]:
        """Yield token events, then ``sources`` and ``done``, or one ``error``.

        The assistant message is stored only when the model finished; its
        sources are exactly the ones fixed before streaming started.
        """
        try:
            async for chunk in turn.stream:
                yield StreamEvent(event="token", data=chunk)

            content = turn.stream.content
            sources = turn.stream.sources
            if not content.strip():
                error = GenerationError()
                logger.error(
                    "Model returned an empty answer",
                    operation="llm.stream",
                    code=error.code,
                    status=error.status_code,
                    session_id=turn.session_id,
                )
                yield error_event(error, retryable=error.user_retryable)
                return

            try:
                assistant = await self._messages.save_message(
                    turn.session_id, turn.owner_id, "assistant", content, sources
                )
                await self._messages.commit()
            except (SQLAlchemyError, AppException) as exc:
                await self._messages.rollback()
                logger.error(
                    "Failed to persist assistant message",
                    operation="message.save",
                    code=getattr(exc, "code", "DATABASE_ERROR"),
                    status=getattr(exc, "status_code", 500),
                    error_type=type(exc).__name__,
                    session_id=turn.session_id,
                )
                yield StreamEvent(
                    event="error",
                    data={
                        "message": PERSIST_FAILED_MESSAGE,
                        "code": "MESSAGE_PERSIST_FAILED",
                        "retryable": True,
                    },
                )
                return

            yield StreamEvent(
                event="sources", data=[source.model_dump() for source in sources]
            )
            yield StreamEvent(
                event="done",
                data={
                    "session_id": turn.session_id,
                    "user_message_id": turn.user_message.id,
                    "assistant_message_id": assistant.id,
                    "is_first_turn": turn.is_first_turn,
                },
            )
        except LLMServiceError as exc:
            yield error_event(exc, retryable=exc.user_retryable)
        finally:
            await turn.stream.aclose()

    async def _retrieve(self, query: str) -> list[RetrievedArticle]:
        """Retrieval failures degrade to an empty result."""
        try:
            return await self._retriever.retrieve(query)
        except KnowledgeBaseError as exc:
            logger.warning(
                "Retrieval failed, answering without articles",
                operation="retrieve",
                code=exc.code,
                status=exc.status_code,
            )
            return []

    async def _category_names(self) -> list[str]:
        try:
            categories = await self._retriever.list_categories()
        except KnowledgeBaseError as exc:
            logger.warning(
                "Category lookup failed",
                operation="knowledge.categories",
                code=exc.code,
                status=exc.status_code,
            )
            return []
        return [category.category for category in categories]
