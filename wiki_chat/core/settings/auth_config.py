"""Access token verification configuration."""

from pydantic import BaseModel, SecretStr


class AuthConfig(BaseModel, frozen=True):
    """Settings for verifying platform-issued JWT access tokens."""

    secret_key: SecretStr
    algorithm: str
