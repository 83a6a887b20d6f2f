"""Application environment configuration."""

from typing import Literal

from pydantic import BaseModel


class AppConfig(BaseModel, frozen=True):
    """Application environment and logging settings."""

    name: str
    env: Literal["development", "staging", "production"]
    debug: bool
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ()

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def json_logs(self) -> bool:
        """Render logs as JSON everywhere except local development."""
        return not self.is_development
