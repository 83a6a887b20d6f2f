"""Wiki assistant behaviour configuration."""

from pydantic import BaseModel


class ChatConfig(BaseModel, frozen=True):
    """Per-turn chat pipeline settings."""

    platform_name: str
    institution_name: str
    rate_limit: str
    history_limit: int
    domain_anchor_terms: str

    @property
    def domain_anchor_terms_list(self) -> list[str]:
        """Anchor terms as a lower-cased list."""
        return [
            term.strip().lower()
            for term in self.domain_anchor_terms.split(",")
            if term.strip()
        ]
