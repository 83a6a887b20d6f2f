"""LLM provider configuration."""

from typing import Literal

from pydantic import BaseModel, SecretStr


class LLMConfig(BaseModel, frozen=True):
    """LLM provider settings."""

    provider: Literal["openai", "anthropic"]
    openai_api_key: SecretStr
    openai_model: str
    anthropic_api_key: SecretStr
    anthropic_model: str
    temperature: float
    max_tokens: int
    title_max_tokens: int = 20

    @property
    def model(self) -> str:
        """Model name for the active provider."""
        if self.provider == "anthropic":
            return self.anthropic_model
        return self.openai_model

    @property
    def api_key(self) -> SecretStr:
        """Credential for the active provider."""
        if self.provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key

    @property
    def masked_api_key(self) -> str:
        """Credential with everything but its edges hidden, for diagnostics."""
        key = self.api_key.get_secret_value()
        if not key:
            return "NOT SET"
        if len(key) <= 12:
            return "****"
        return f"{key[:8]}...{key[-4:]}"
