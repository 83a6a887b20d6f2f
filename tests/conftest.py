"""Pytest configuration and fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-wiki-chat-tests"
os.environ["LLM_PROVIDER"] = "openai"
os.environ["OPENAI_API_KEY"] = "sk-test-0123456789abcdef"
os.environ["CHAT_RATE_LIMIT"] = "1000/minute"
os.environ["APP_ENV"] = "development"
os.environ["DEBUG"] = "false"

from collections.abc import AsyncGenerator, Callable, Generator, Iterable  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from langchain_core.language_models import BaseChatModel  # noqa: E402
from langchain_core.messages import AIMessage, AIMessageChunk  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from wiki_chat.core.database import Base  # noqa: E402
from wiki_chat.models.chat_message import ChatMessage  # noqa: E402,F401
from wiki_chat.models.chat_session import ChatSession  # noqa: E402,F401
from wiki_chat.schemas.knowledge_schema import (  # noqa: E402
    ArticleSource,
    RetrievedArticle,
    WikiArticle,
)

# --- Test DB (SQLite in-memory) ---

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest.fixture(autouse=True)
async def setup_db() -> AsyncGenerator[None, None]:
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with test_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return test_session_factory


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a raw async session for repository and service tests."""
    async with test_session_factory() as session:
        yield session


# --- Auth helpers ---


def make_access_token(user_id: str = "user-1", **claims: object) -> str:
    """Sign an access token the way the platform does."""
    from wiki_chat.core.config import settings

    payload: dict[str, object] = {
        "sub": user_id,
        "email": f"{user_id}@test.com",
        "type": "access",
        "exp": datetime.now(UTC) + timedelta(minutes=15),
    }
    payload.update(claims)
    return jwt.encode(
        payload,
        settings.auth.secret_key.get_secret_value(),
        algorithm=settings.auth.algorithm,
    )


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Factory for Authorization headers carrying a valid access token."""

    def _headers(user_id: str = "user-1", **claims: object) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_access_token(user_id, **claims)}"}

    return _headers


# --- App override & client fixtures ---


@pytest.fixture
def app() -> Generator[FastAPI, None, None]:
    """The application with the test database wired in."""
    from wiki_chat.core.database import get_async_session
    from wiki_chat.main import app as application

    application.dependency_overrides[get_async_session] = override_get_async_session
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def authed_client(
    app: FastAPI, auth_headers: Callable[..., dict[str, str]]
) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as ``user-1``."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=auth_headers()
    ) as ac:
        yield ac


# --- Mock LLM ---


@pytest.fixture
def mock_llm() -> MagicMock:
    """Create a mock LLM for testing."""
    mock = MagicMock(spec=BaseChatModel)
    mock.ainvoke = AsyncMock(return_value=AIMessage(content="Test response"))
    mock.astream = MagicMock()
    return mock


@pytest.fixture
def streaming_llm() -> Callable[..., MagicMock]:
    """Factory for a mock LLM whose successive ``astream`` calls follow a script.

    Each script entry is the list of items one call produces: strings are
    streamed as chunks, exceptions are raised at that point.
    """

    def _build(*scripts: Iterable[object]) -> MagicMock:
        remaining = [list(script) for script in scripts]
        mock = MagicMock(spec=BaseChatModel)
        mock.ainvoke = AsyncMock(return_value=AIMessage(content="Test response"))
        mock.closed = []

        def astream(messages: object, *args: object, **kwargs: object):
            script = remaining.pop(0)

            async def generate():
                try:
                    for item in script:
                        if isinstance(item, BaseException):
                            raise item
                        yield AIMessageChunk(content=item)
                finally:
                    mock.closed.append(True)

            return generate()

        mock.astream = MagicMock(side_effect=astream)
        return mock

    return _build


class ProviderError(Exception):
    """Stand-in for a provider SDK error carrying an HTTP status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"provider returned {status_code}")
        self.status_code = status_code


@pytest.fixture
def provider_error() -> type[ProviderError]:
    return ProviderError


# --- Knowledge base data ---


def make_article(
    slug: str,
    title: str,
    category: str,
    content: str = "",
) -> WikiArticle:
    return WikiArticle(
        id=f"id-{slug}",
        title=title,
        slug=slug,
        category=category,
        content=content or f"# {title}\n\nAbout {title.lower()}.",
    )


def make_retrieved(
    slug: str,
    category: str,
    score: int,
    title: str | None = None,
    content: str | None = None,
) -> RetrievedArticle:
    article = make_article(slug, title or slug.replace("-", " ").title(), category)
    return RetrievedArticle(
        article=article,
        relevant_content=content if content is not None else article.content,
        relevance_score=score,
        source=ArticleSource.from_article(article),
    )


@pytest.fixture
def article_factory() -> Callable[..., WikiArticle]:
    return make_article


@pytest.fixture
def retrieved_factory() -> Callable[..., RetrievedArticle]:
    return make_retrieved


@pytest.fixture
def wiki_articles() -> list[WikiArticle]:
    """A small knowledge base spanning three categories."""
    return [
        make_article(
            "library-opening-hours",
            "Library Opening Hours",
            "Campus Life",
            "# Library Opening Hours\n\nThe main library is open daily.\n\n"
            "## Exam period\n\nDuring the exam period the library opens at 7am.",
        ),
        make_article(
            "exam-registration",
            "Exam Registration",
            "Academics",
            "# Exam Registration\n\nRegister for every exam in TUMonline.\n\n"
            "## Deadlines\n\nExam registration closes two weeks before the exam.",
        ),
        make_article(
            "mensa-guide",
            "Mensa Guide",
            "Campus Life",
            "# Mensa Guide\n\nThe mensa serves lunch on weekdays.",
        ),
        make_article(
            "student-card",
            "Student Card",
            "Student Services",
            "# Student Card\n\nYour student card also works in the library.",
        ),
    ]
