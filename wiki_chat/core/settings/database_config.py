"""Database connection configuration."""

from pydantic import BaseModel, SecretStr


class DatabaseConfig(BaseModel, frozen=True):
    """Database connection settings."""

    url: SecretStr

    @property
    def async_url(self) -> str:
        """DB URL, with utf8mb4 charset appended for MySQL."""
        base = self.url.get_secret_value()
        if base.startswith("mysql") and "?" not in base:
            return f"{base}?charset=utf8mb4"
        return base

    @property
    def is_sqlite(self) -> bool:
        """Whether the URL points at SQLite (no connection pool sizing)."""
        return self.url.get_secret_value().startswith("sqlite")
