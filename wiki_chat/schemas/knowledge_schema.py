"""Knowledge base article schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class WikiArticle(BaseModel):
    """Read-only wiki article as served by the content source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    slug: str
    category: str
    content: str = ""
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class WikiCategory(BaseModel):
    """Category name with the number of articles filed under it."""

    model_config = ConfigDict(frozen=True)

    category: str
    article_count: int = 0


class ArticleSource(BaseModel):
    """Citation pointer into the knowledge base."""

    model_config = ConfigDict(frozen=True)

    title: str
    slug: str
    category: str

    @classmethod
    def from_article(cls, article: WikiArticle) -> "ArticleSource":
        return cls(title=article.title, slug=article.slug, category=article.category)


class RetrievedArticle(BaseModel):
    """Article matched for one query, with its excerpt and score."""

    model_config = ConfigDict(frozen=True)

    article: WikiArticle
    relevant_content: str
    relevance_score: int = Field(ge=0, le=100)
    source: ArticleSource
