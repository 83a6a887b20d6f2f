"""Streaming answer generation with retry, error mapping and citation tracking."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from enum import Enum
from typing import Any

import anthropic
import httpx
import openai
import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, BaseMessageChunk

from wiki_chat.core.exceptions import (
    AuthenticationError,
    GenerationError,
    LLMConnectionError,
    LLMServiceError,
    LLMTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
    StreamInterruptedError,
)
from wiki_chat.models.chat_message import ChatMessage
from wiki_chat.schemas.knowledge_schema import ArticleSource, RetrievedArticle
from wiki_chat.services.backoff import BackoffController
from wiki_chat.services.prompt_composer import PromptComposer, build_messages
from wiki_chat.services.query_classifier import ClassificationFlags

logger = structlog.get_logger()

_TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (
    openai.APITimeoutError,
    anthropic.APITimeoutError,
    httpx.TimeoutException,
    TimeoutError,
)
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    httpx.TransportError,
    ConnectionError,
)


class GenerationState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def classify_provider_error(exc: BaseException) -> LLMServiceError:
    """Map a provider SDK or transport exception onto the LLM error taxonomy."""
    if isinstance(exc, LLMServiceError):
        return exc
    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return AuthenticationError()
    if status == 429:
        return RateLimitError()
    if isinstance(status, int) and status >= 500:
        return ServiceUnavailableError()
    if isinstance(exc, _TIMEOUT_ERRORS):
        return LLMTimeoutError()
    if isinstance(exc, _CONNECTION_ERRORS):
        return LLMConnectionError()
    return GenerationError()


def is_retryable_provider_error(exc: Exception) -> bool:
    return isinstance(exc, LLMServiceError) and exc.retryable


def chunk_text(chunk: BaseMessageChunk | str) -> str:
    """Text carried by a streamed chunk; providers send str or content blocks."""
    content: Any = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type", "text") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def unique_sources(retrieved: Sequence[RetrievedArticle]) -> list[ArticleSource]:
    """Sources of the retrieved articles, first occurrence of each slug kept."""
    seen: dict[str, ArticleSource] = {}
    for item in retrieved:
        seen.setdefault(item.source.slug, item.source)
    return list(seen.values())


class ResponseStream:
    """One answer being streamed from the model.

    Iterating yields text chunks. The provider request is opened lazily on
    the first iteration and retried through the backoff controller until the
    first chunk arrives; after that a failure raises ``StreamInterruptedError``
    and is never retried. ``sources`` is readable once the stream completed.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        messages: list[BaseMessage],
        sources: list[ArticleSource],
        backoff: BackoffController,
        operation_name: str = "llm.stream",
    ) -> None:
        self._llm = llm
        self._messages = messages
        self._sources = sources
        self._backoff = backoff
        self._operation = operation_name
        self._state = GenerationState.IDLE
        self._iterator: AsyncIterator[BaseMessageChunk] | None = None
        self._pending: BaseMessageChunk | None = None
        self._parts: list[str] = []
        self.error: LLMServiceError | None = None

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def content(self) -> str:
        """Text delivered so far."""
        return "".join(self._parts)

    @property
    def sources(self) -> list[ArticleSource]:
        if self._state is not GenerationState.COMPLETED:
            raise RuntimeError("Sources are available once the stream has completed")
        return list(self._sources)

    async def open(self) -> None:
        """Send the request and wait for the first chunk, retrying transient errors."""
        if self._state is not GenerationState.IDLE:
            return
        self._state = GenerationState.REQUESTING

        async def request() -> tuple[AsyncIterator[BaseMessageChunk], BaseMessageChunk | None]:
            try:
                iterator = aiter(self._llm.astream(self._messages))
                first = await anext(iterator)
            except StopAsyncIteration:
                return iterator, None
            except Exception as exc:
                raise classify_provider_error(exc) from exc
            return iterator, first

        try:
            self._iterator, self._pending = await self._backoff.execute_with_retry(
                request, is_retryable_provider_error, self._operation
            )
        except asyncio.CancelledError:
            self._state = GenerationState.CANCELLED
            raise
        except LLMServiceError as exc:
            self._fail(exc, exc.__cause__ or exc)
            raise

        if self._pending is None:
            self._complete()
        else:
            self._state = GenerationState.STREAMING

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> str:
        if self._state is GenerationState.IDLE:
            await self.open()

        if self._pending is not None:
            chunk, self._pending = self._pending, None
            text = chunk_text(chunk)
            if text:
                self._parts.append(text)
                return text

        while self._state is GenerationState.STREAMING and self._iterator is not None:
            try:
                chunk = await anext(self._iterator)
            except StopAsyncIteration:
                self._complete()
                break
            except asyncio.CancelledError:
                await self.aclose()
                raise
            except Exception as exc:
                error = StreamInterruptedError()
                self._fail(error, exc)
                raise error from exc
            text = chunk_text(chunk)
            if text:
                self._parts.append(text)
                return text

        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Abandon the stream and close the provider connection. Never retried."""
        if self._state in (
            GenerationState.IDLE,
            GenerationState.REQUESTING,
            GenerationState.STREAMING,
        ):
            self._state = GenerationState.CANCELLED
            logger.info(
                "Generation cancelled",
                operation=self._operation,
                delivered_chars=len(self.content),
            )
        iterator, self._iterator = self._iterator, None
        close = getattr(iterator, "aclose", None)
        if close is not None:
            await close()

    def _complete(self) -> None:
        self._state = GenerationState.COMPLETED
        logger.info(
            "Generation completed",
            operation=self._operation,
            chars=len(self.content),
            sources=len(self._sources),
        )

    def _fail(self, error: LLMServiceError, cause: BaseException) -> None:
        self._state = GenerationState.FAILED
        self.error = error
        logger.error(
            "Generation failed",
            operation=self._operation,
            code=error.code,
            status=error.status_code,
            error_type=type(cause).__name__,
            delivered_chars=len(self.content),
        )


class ResponseGenerator:
    """Turns a query and its retrieval result into a ``ResponseStream``."""

    def __init__(
        self,
        llm: BaseChatModel,
        composer: PromptComposer,
        backoff: BackoffController,
    ) -> None:
        self._llm = llm
        self._composer = composer
        self._backoff = backoff

    def generate(
        self,
        query: str,
        retrieved: Sequence[RetrievedArticle],
        flags: ClassificationFlags,
        available_categories: Sequence[str] = (),
        history: Sequence[ChatMessage] = (),
    ) -> ResponseStream:
        """Prepare the answer stream. No request is sent until it is iterated."""
        system_prompt = self._composer.compose(retrieved, flags, available_categories)
        messages = build_messages(system_prompt, history, query)
        logger.info(
            "Prepared generation",
            operation="llm.stream",
            articles=len(retrieved),
            history=len(history),
            prompt_chars=len(system_prompt),
        )
        return ResponseStream(
            self._llm, messages, unique_sources(retrieved), self._backoff
        )
