"""Knowledge base source configuration."""

from pathlib import Path

from pydantic import BaseModel, SecretStr


class KnowledgeConfig(BaseModel, frozen=True):
    """Where wiki articles come from and how many are retrieved per query."""

    content_url: str | None
    content_token: SecretStr
    articles_path: Path | None
    max_results: int
    request_timeout: float
    cache_ttl: float

    @property
    def uses_remote_content(self) -> bool:
        """Whether articles are fetched from the headless CMS."""
        return bool(self.content_url)
