"""Unit tests for ChatService turn orchestration."""

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wiki_chat.core.config import DEFAULT_DOMAIN_ANCHORS
from wiki_chat.core.exceptions import (
    ForbiddenError,
    KnowledgeBaseError,
    SessionNotFoundError,
    ValidationError,
)
from wiki_chat.repositories.chat_repo import ChatRepository
from wiki_chat.schemas.chat_schema import StreamEvent
from wiki_chat.schemas.knowledge_schema import WikiArticle
from wiki_chat.services.backoff import BackoffController
from wiki_chat.services.chat_service import ChatService
from wiki_chat.services.knowledge_source import InMemoryKnowledgeBase
from wiki_chat.services.message_service import MessageStore
from wiki_chat.services.prompt_composer import PromptComposer
from wiki_chat.services.query_classifier import QueryClassifier
from wiki_chat.services.response_generator import ResponseGenerator
from wiki_chat.services.retrieval_service import KnowledgeRetriever
from wiki_chat.services.session_service import SessionService

QUESTION = "When is the library open?"


@pytest.fixture
def sessions(db_session: AsyncSession) -> SessionService:
    return SessionService(ChatRepository(db_session))


@pytest.fixture
def store(db_session: AsyncSession, sessions: SessionService) -> MessageStore:
    return MessageStore(ChatRepository(db_session), sessions)


@pytest.fixture
def build_service(
    sessions: SessionService, store: MessageStore, wiki_articles: list[WikiArticle]
) -> Callable[..., ChatService]:
    """Factory wiring the pipeline around a scripted model."""

    def _build(llm: MagicMock, source: object | None = None) -> ChatService:
        retriever = KnowledgeRetriever(source or InMemoryKnowledgeBase(wiki_articles))
        generator = ResponseGenerator(
            llm,
            PromptComposer(),
            BackoffController(jitter=0.0, sleep=AsyncMock()),
        )
        return ChatService(
            sessions=sessions,
            messages=store,
            retriever=retriever,
            classifier=QueryClassifier(DEFAULT_DOMAIN_ANCHORS.split(",")),
            generator=generator,
        )

    return _build


async def run_turn(service: ChatService, session_id: str, message: str) -> list[StreamEvent]:
    turn = await service.start_turn(session_id, "user-1", message)
    return [event async for event in service.stream_events(turn)]


class TestSuccessfulTurn:
    """Happy path: tokens, sources, done, both messages stored."""

    @pytest.mark.asyncio
    async def test_events_and_persistence(
        self,
        build_service,
        streaming_llm,
        sessions: SessionService,
        store: MessageStore,
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm(["The library ", "opens at 8."]))

        events = await run_turn(service, session.id, QUESTION)

        assert [e.event for e in events] == ["token", "token", "sources", "done"]
        assert "".join(e.data for e in events if e.event == "token") == (
            "The library opens at 8."
        )
        source_slugs = [s["slug"] for s in events[2].data]
        assert "library-opening-hours" in source_slugs

        messages = await store.list_messages(session.id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", QUESTION),
            ("assistant", "The library opens at 8."),
        ]
        assert [s["slug"] for s in messages[1].sources] == source_slugs

        done = events[-1].data
        assert done["is_first_turn"] is True
        assert done["session_id"] == session.id
        assert done["user_message_id"] == messages[0].id
        assert done["assistant_message_id"] == messages[1].id

    @pytest.mark.asyncio
    async def test_second_turn_sends_history(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        session = await sessions.create_session("user-1")
        llm = streaming_llm(["Opens at 8."], ["Closes at 22."])
        service = build_service(llm)

        await run_turn(service, session.id, QUESTION)
        events = await run_turn(service, session.id, "And when does it close?")

        assert events[-1].data["is_first_turn"] is False
        messages = llm.astream.call_args.args[0]
        assert [m.type for m in messages] == ["system", "human", "ai", "human"]
        assert messages[1].content == QUESTION
        assert messages[-1].content == "And when does it close?"

    @pytest.mark.asyncio
    async def test_message_is_stripped(
        self, build_service, streaming_llm, sessions: SessionService, store: MessageStore
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm(["ok"]))

        await run_turn(service, session.id, f"  {QUESTION}\n")

        messages = await store.list_messages(session.id)
        assert messages[0].content == QUESTION


class TestFailedTurn:
    """Errors are reported as a single error event."""

    @pytest.mark.asyncio
    async def test_llm_error_keeps_only_user_message(
        self,
        build_service,
        streaming_llm,
        provider_error,
        sessions: SessionService,
        store: MessageStore,
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm([provider_error(401)]))

        events = await run_turn(service, session.id, QUESTION)

        assert [e.event for e in events] == ["error"]
        assert events[0].data["code"] == "LLM_AUTHENTICATION_FAILED"
        assert events[0].data["retryable"] is False
        messages = await store.list_messages(session.id)
        assert [m.role for m in messages] == ["user"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_user_retryable(
        self, build_service, streaming_llm, provider_error, sessions: SessionService
    ) -> None:
        session = await sessions.create_session("user-1")
        llm = streaming_llm(*[[provider_error(503)] for _ in range(5)])
        service = build_service(llm)

        events = await run_turn(service, session.id, QUESTION)

        assert events[-1].event == "error"
        assert events[-1].data["code"] == "LLM_UNAVAILABLE"
        assert events[-1].data["retryable"] is True
        assert llm.astream.call_count == 5

    @pytest.mark.asyncio
    async def test_interrupted_stream_discards_partial_answer(
        self,
        build_service,
        streaming_llm,
        provider_error,
        sessions: SessionService,
        store: MessageStore,
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm(["Half an ", provider_error(502)]))

        events = await run_turn(service, session.id, QUESTION)

        assert [e.event for e in events] == ["token", "error"]
        assert events[-1].data["code"] == "LLM_STREAM_INTERRUPTED"
        assert await store.count_messages(session.id) == 1

    @pytest.mark.asyncio
    async def test_empty_answer(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm([]))

        events = await run_turn(service, session.id, QUESTION)

        assert [e.event for e in events] == ["error"]
        assert events[0].data["code"] == "LLM_GENERATION_FAILED"

    @pytest.mark.asyncio
    async def test_persist_failure(
        self, build_service, streaming_llm, sessions: SessionService, store: MessageStore
    ) -> None:
        session = await sessions.create_session("user-1")
        service = build_service(streaming_llm(["An answer."]))
        turn = await service.start_turn(session.id, "user-1", QUESTION)

        with patch.object(
            store, "save_message", AsyncMock(side_effect=SQLAlchemyError("down"))
        ):
            events = [event async for event in service.stream_events(turn)]

        assert [e.event for e in events] == ["token", "error"]
        assert events[-1].data["code"] == "MESSAGE_PERSIST_FAILED"
        assert events[-1].data["retryable"] is True


class TestRetrievalDegradation:
    """Knowledge base outages never fail the turn."""

    @pytest.mark.asyncio
    async def test_answers_without_articles(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        source = MagicMock()
        source.search_articles = AsyncMock(side_effect=KnowledgeBaseError())
        source.list_categories = AsyncMock(side_effect=KnowledgeBaseError())
        llm = streaming_llm(["I could not find that in the wiki."])
        service = build_service(llm, source)
        session = await sessions.create_session("user-1")

        turn = await service.start_turn(session.id, "user-1", QUESTION)
        events = [event async for event in service.stream_events(turn)]

        assert turn.retrieved == []
        assert [e.event for e in events] == ["token", "sources", "done"]
        assert events[1].data == []
        system_prompt = llm.astream.call_args.args[0][0].content
        assert "NO RESULTS" in system_prompt

    @pytest.mark.asyncio
    async def test_unrelated_question_gets_no_results_prompt(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        llm = streaming_llm(["The wiki does not cover the weather."])
        service = build_service(llm)
        session = await sessions.create_session("user-1")

        turn = await service.start_turn(session.id, "user-1", "What is the weather in Paris?")
        events = [event async for event in service.stream_events(turn)]

        assert turn.retrieved == []
        assert turn.flags.is_ambiguous is False
        assert turn.flags.is_out_of_scope is True
        assert events[1].event == "sources"
        assert events[1].data == []
        system_prompt = llm.astream.call_args.args[0][0].content
        assert "NO RESULTS" in system_prompt
        assert "CLARIFICATION" not in system_prompt

    @pytest.mark.asyncio
    async def test_out_of_scope_turn_lists_categories(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        llm = streaming_llm(["I can only help with university topics."])
        service = build_service(llm)
        session = await sessions.create_session("user-1")

        turn = await service.start_turn(session.id, "user-1", "Best pizza recipe?")
        [event async for event in service.stream_events(turn)]

        assert turn.flags.is_out_of_scope is True
        system_prompt = llm.astream.call_args.args[0][0].content
        assert "OUT OF SCOPE" in system_prompt
        assert "Academics, Campus Life, Student Services" in system_prompt


class TestStartTurnValidation:
    """Failures before the model is contacted raise."""

    @pytest.mark.asyncio
    async def test_blank_message(
        self, build_service, streaming_llm, sessions: SessionService
    ) -> None:
        session = await sessions.create_session("user-1")
        with pytest.raises(ValidationError):
            await build_service(streaming_llm()).start_turn(session.id, "user-1", "   ")

    @pytest.mark.asyncio
    async def test_foreign_session(
        self, build_service, streaming_llm, sessions: SessionService, store: MessageStore
    ) -> None:
        session = await sessions.create_session("user-2")
        with pytest.raises(ForbiddenError):
            await build_service(streaming_llm()).start_turn(session.id, "user-1", QUESTION)
        assert await store.count_messages(session.id) == 0

    @pytest.mark.asyncio
    async def test_missing_session(self, build_service, streaming_llm) -> None:
        with pytest.raises(SessionNotFoundError):
            await build_service(streaming_llm()).start_turn("missing", "user-1", QUESTION)
