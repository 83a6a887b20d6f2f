"""Global dependencies for the application."""

from functools import lru_cache

from fastapi import Depends, Request
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from wiki_chat.core.config import settings
from wiki_chat.core.database import get_async_session
from wiki_chat.core.exceptions import UnauthenticatedError
from wiki_chat.repositories.chat_repo import ChatRepository
from wiki_chat.services.backoff import BackoffController
from wiki_chat.services.chat_service import ChatService
from wiki_chat.services.knowledge_source import (
    InMemoryKnowledgeBase,
    KnowledgeSource,
    WikiContentClient,
)
from wiki_chat.services.message_service import MessageStore
from wiki_chat.services.prompt_composer import PromptComposer
from wiki_chat.services.query_classifier import QueryClassifier
from wiki_chat.services.response_generator import ResponseGenerator
from wiki_chat.services.retrieval_service import KnowledgeRetriever
from wiki_chat.services.session_service import SessionService

# --- LLM ---


def _build_chat_model(max_tokens: int, streaming: bool) -> BaseChatModel:
    """Chat model for the configured provider with SDK-level retries disabled."""
    llm_config = settings.llm
    match llm_config.provider:
        case "openai":
            return ChatOpenAI(
                model=llm_config.openai_model,
                api_key=llm_config.openai_api_key,
                temperature=llm_config.temperature,
                max_tokens=max_tokens,
                max_retries=0,
                streaming=streaming,
            )
        case "anthropic":
            return ChatAnthropic(  # type: ignore[call-arg]
                model_name=llm_config.anthropic_model,
                api_key=llm_config.anthropic_api_key,
                temperature=llm_config.temperature,
                max_tokens=max_tokens,
                max_retries=0,
                streaming=streaming,
            )
        case _:
            raise ValueError(f"Unsupported LLM provider: {llm_config.provider}")


@lru_cache
def get_llm() -> BaseChatModel:
    """Streaming model used for answers."""
    return _build_chat_model(settings.llm.max_tokens, streaming=True)


@lru_cache
def get_title_llm() -> BaseChatModel:
    """Low-budget, non-streaming model used for session titles."""
    return _build_chat_model(settings.llm.title_max_tokens, streaming=False)


# --- Knowledge base ---


@lru_cache
def get_knowledge_source() -> KnowledgeSource:
    """CMS client when a content URL is configured, else a local article file."""
    knowledge = settings.knowledge
    if knowledge.uses_remote_content:
        return WikiContentClient(
            endpoint=knowledge.content_url or "",
            token=knowledge.content_token.get_secret_value(),
            timeout=knowledge.request_timeout,
            cache_ttl=knowledge.cache_ttl,
        )
    if knowledge.articles_path is not None:
        return InMemoryKnowledgeBase.from_json(knowledge.articles_path)
    return InMemoryKnowledgeBase()


def get_retriever(
    source: KnowledgeSource = Depends(get_knowledge_source),
) -> KnowledgeRetriever:
    return KnowledgeRetriever(source, max_results=settings.knowledge.max_results)


# --- Auth dependencies ---


class CurrentUser(BaseModel):
    """Authenticated user extracted from request state."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None


def get_current_user(request: Request) -> CurrentUser:
    """Extract the authenticated user from middleware-populated state."""
    state = getattr(request, "state", None)
    user_id = getattr(state, "user_id", None) if state else None
    if not user_id:
        raise UnauthenticatedError()
    return CurrentUser(id=user_id, email=getattr(state, "email", None))


# --- Repositories and services ---


def get_chat_repository(
    session: AsyncSession = Depends(get_async_session),
) -> ChatRepository:
    """Get ChatRepository bound to the current session."""
    return ChatRepository(session)


def get_session_service(
    chat_repo: ChatRepository = Depends(get_chat_repository),
) -> SessionService:
    return SessionService(chat_repo)


def get_message_store(
    chat_repo: ChatRepository = Depends(get_chat_repository),
    session_service: SessionService = Depends(get_session_service),
) -> MessageStore:
    return MessageStore(chat_repo, session_service)


def get_response_generator() -> ResponseGenerator:
    return ResponseGenerator(
        llm=get_llm(),
        composer=PromptComposer(
            platform_name=settings.chat.platform_name,
            institution_name=settings.chat.institution_name,
        ),
        backoff=BackoffController.from_config(settings.retry),
    )


def get_chat_service(
    session_service: SessionService = Depends(get_session_service),
    message_store: MessageStore = Depends(get_message_store),
    retriever: KnowledgeRetriever = Depends(get_retriever),
    generator: ResponseGenerator = Depends(get_response_generator),
) -> ChatService:
    """Get ChatService wired for one request."""
    return ChatService(
        sessions=session_service,
        messages=message_store,
        retriever=retriever,
        classifier=QueryClassifier(settings.chat.domain_anchor_terms_list),
        generator=generator,
        history_limit=settings.chat.history_limit,
    )
