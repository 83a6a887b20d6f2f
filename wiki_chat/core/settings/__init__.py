"""Domain-specific configuration models."""

from wiki_chat.core.settings.app_config import AppConfig
from wiki_chat.core.settings.auth_config import AuthConfig
from wiki_chat.core.settings.chat_config import ChatConfig
from wiki_chat.core.settings.database_config import DatabaseConfig
from wiki_chat.core.settings.knowledge_config import KnowledgeConfig
from wiki_chat.core.settings.llm_config import LLMConfig
from wiki_chat.core.settings.retry_config import RetryConfig

__all__ = [
    "AppConfig",
    "AuthConfig",
    "ChatConfig",
    "DatabaseConfig",
    "KnowledgeConfig",
    "LLMConfig",
    "RetryConfig",
]
