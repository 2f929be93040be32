"""Article generation from feed items using a LangChain chat model."""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from feed_autogen.database import Database

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.environ.get("GENERATION_MODEL", "claude-sonnet-4-5-20250929")
DEFAULT_TIMEOUT = float(os.environ.get("GENERATION_TIMEOUT", "120"))
MAX_SOURCE_CHARS = 12000

SYSTEM_PROMPT = """You are a newsroom writer. You turn a news item from a feed into an original article.

Write a catchy, SEO-friendly, clear and informative title on the first line, with no prefix.
Then write a complete, well-structured and engaging article body in Markdown, using ## subheadings
between sections. Do not label sections "Introduction" or "Conclusion".
Only use facts present in the source item. Do not invent quotes or figures."""


class GenerationError(Exception):
    """Raised when an article could not be generated for a feed item."""


@dataclass(frozen=True)
class GenerationRequest:
    """Input handed to a generator for one feed item."""

    feed_item_id: int
    title: str
    content: str | None
    url: str | None


class ArticleGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> int:
        """Generate and store an article, returning its id."""
        ...


class LLMArticleGenerator:
    """Writes articles with a chat model and stores them in the database."""

    def __init__(
        self,
        db: Database,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        chat_model=None,
    ):
        self.db = db
        self.model = model
        # No in-process retries: a failed item is retried on the next poll
        self.chat_model = chat_model or ChatAnthropic(
            model=model,
            temperature=0.7,
            timeout=timeout,
            max_retries=0,
        )

    def generate(self, request: GenerationRequest) -> int:
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=build_prompt(request)),
        ]
        try:
            response = self.chat_model.invoke(messages)
        except Exception as e:
            raise GenerationError(f"Generation request failed: {e}") from e

        title, body = split_article(_message_text(response.content))
        if not body:
            raise GenerationError("Model returned an empty article")

        article_id = self.db.save_article(
            request.feed_item_id, title or request.title, body, model=self.model
        )
        logger.info("Generated article %d for feed item %d", article_id, request.feed_item_id)
        return article_id


def build_prompt(request: GenerationRequest) -> str:
    """Render the user prompt for one feed item."""
    content = (request.content or "").strip()[:MAX_SOURCE_CHARS]
    parts = [f"Source title: {request.title}"]
    if request.url:
        parts.append(f"Source URL: {request.url}")
    parts.append(f"Source content:\n{content or '(no content, use the title only)'}")
    return "\n\n".join(parts)


def split_article(text: str) -> tuple[str, str]:
    """Split model output into (title, body). The first non-empty line is the title."""
    lines = text.strip().splitlines()
    if not lines:
        return "", ""
    title = lines[0].strip().lstrip("#").strip().strip('"*')
    body = "\n".join(lines[1:]).strip()
    return title, body


def _message_text(content) -> str:
    """Flatten chat message content, which may be a list of content blocks."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)
