"""System prompt assembly for the wiki assistant."""

from collections.abc import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from wiki_chat.models.chat_message import ChatMessage
from wiki_chat.schemas.knowledge_schema import RetrievedArticle
from wiki_chat.services.query_classifier import ClassificationFlags, ambiguity_options

MAX_SUGGESTED_CATEGORIES = 5
FALLBACK_CATEGORIES = ("Academics", "Campus Life", "Student Services", "Events", "Resources")
ARTICLE_RULE = "=" * 40


def article_link(slug: str) -> str:
    return f"/wiki/articles/{slug}"


def suggested_categories(available_categories: Sequence[str]) -> str:
    """Up to five category names, or a generic list when none are known."""
    names = [name for name in available_categories if name][:MAX_SUGGESTED_CATEGORIES]
    return ", ".join(names or FALLBACK_CATEGORIES)


def unique_categories(retrieved: Sequence[RetrievedArticle]) -> list[str]:
    """Distinct categories in retrieval order."""
    return list(dict.fromkeys(item.article.category for item in retrieved))


class PromptComposer:
    """Builds the instruction text sent as the system message.

    Sections always appear in the same order; each optional section depends
    on a single condition, so any combination of flags composes cleanly.
    """

    def __init__(
        self,
        platform_name: str = "TUM Community Platform",
        institution_name: str = "TUM",
    ) -> None:
        self._platform_name = platform_name
        self._institution = institution_name

    def compose(
        self,
        retrieved: Sequence[RetrievedArticle],
        flags: ClassificationFlags,
        available_categories: Sequence[str] = (),
    ) -> str:
        sections = [self._role_section(), self._citation_section(retrieved)]
        if not retrieved:
            sections.append(self._no_results_section(available_categories))
        if flags.is_recommendation:
            sections.append(self._recommendation_section())
        if flags.is_ambiguous:
            sections.append(self._clarification_section(retrieved))
        if flags.is_out_of_scope:
            sections.append(self._redirection_section(available_categories))
        categories = unique_categories(retrieved)
        if len(categories) >= 2:
            sections.append(self._multi_category_section(categories))
        if retrieved:
            sections.append(self._articles_section(retrieved))
        return "\n\n".join(sections)

    def _role_section(self) -> str:
        return f"You are a helpful assistant for the {self._platform_name} wiki."

    @staticmethod
    def _citation_section(retrieved: Sequence[RetrievedArticle]) -> str:
        if not retrieved:
            return "No relevant articles were found in the wiki for this question."
        return (
            "Answer using the wiki articles below. Always cite the articles you "
            f"use as [Article Title]({article_link('slug')}), with the exact "
            "title and slug given for each article. Never cite an article that "
            "is not listed below."
        )

    @staticmethod
    def _no_results_section(available_categories: Sequence[str]) -> str:
        return (
            "NO RESULTS: Tell the user that the wiki has no article on this yet. "
            "Suggest 2-3 alternative search terms, or browsing these categories: "
            f"{suggested_categories(available_categories)}."
        )

    @staticmethod
    def _recommendation_section() -> str:
        return (
            "RECOMMENDATIONS: The user wants reading suggestions.\n"
            "1. List 2-5 of the provided articles, most relevant first.\n"
            f"2. Format each as: **[Article Title]({article_link('slug')})** - "
            "one or two sentences on what it covers [Category: category-name]\n"
            "3. Point out when the suggestions come from different categories."
        )

    def _clarification_section(self, retrieved: Sequence[RetrievedArticle]) -> str:
        topic = retrieved[0].article.title if retrieved else "your question"
        readings = "\n".join(
            f"- {option.category} (e.g. '{option.example_title}')"
            for option in ambiguity_options(list(retrieved))
        )
        return (
            "CLARIFICATION: This question could mean several different things.\n"
            "1. Say briefly that it has more than one reading.\n"
            "2. Name the categories where matching information was found, with a "
            "short preview of each.\n"
            "3. Ask which one the user means before answering in detail.\n"
            f'Example: "I found information about \'{topic}\' in several areas. '
            'Are you asking about: 1) [Category 1 topic], 2) [Category 2 topic], '
            'or 3) [Category 3 topic]?"'
            + (f"\nPossible readings:\n{readings}" if readings else "")
        )

    def _redirection_section(self, available_categories: Sequence[str]) -> str:
        return (
            f"OUT OF SCOPE: This question does not appear to be about "
            f"{self._institution}.\n"
            f"1. Politely say it is outside what the {self._institution} wiki covers.\n"
            f"2. Explain that you help with {self._institution}-related questions.\n"
            "3. Offer 2-3 concrete topics you can help with instead, drawn from: "
            f"{suggested_categories(available_categories)}.\n"
            "4. Stay friendly and never dismissive."
        )

    @staticmethod
    def _multi_category_section(categories: Sequence[str]) -> str:
        return (
            f"NOTE: The articles span {len(categories)} categories: "
            f"{', '.join(categories)}. Combine what each category contributes "
            "into one answer and cite sources from every category you draw on."
        )

    @staticmethod
    def _articles_section(retrieved: Sequence[RetrievedArticle]) -> str:
        blocks = []
        for index, item in enumerate(retrieved, start=1):
            article = item.article
            blocks.append(
                f"{ARTICLE_RULE}\n"
                f"ARTICLE {index}: {article.title}\n"
                f"{ARTICLE_RULE}\n"
                f"Category: {article.category}\n"
                f"Slug: {article.slug}\n"
                f"Link: {article_link(article.slug)}\n\n"
                f"ARTICLE CONTENT:\n{item.relevant_content}\n"
                f"{ARTICLE_RULE}"
            )
        return "WIKI ARTICLES:\n\n" + "\n\n".join(blocks)


def build_messages(
    system_prompt: str,
    history: Sequence[ChatMessage],
    user_message: str,
) -> list[BaseMessage]:
    """Provider message list: instructions, prior turns, then the new question."""
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]
    for msg in history:
        if msg.role == "user":
            messages.append(HumanMessage(content=msg.content))
        elif msg.role == "assistant":
            messages.append(AIMessage(content=msg.content))
    messages.append(HumanMessage(content=user_message))
    return messages
