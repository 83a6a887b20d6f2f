"""Retry/backoff configuration for remote LLM calls."""

from pydantic import BaseModel


class RetryConfig(BaseModel, frozen=True):
    """Exponential backoff settings."""

    base_delay: float
    max_delay: float
    max_attempts: int
    jitter: float
