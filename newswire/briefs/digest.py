"""Digest generation from recently crawled articles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from newswire.briefs.summarizer import Summarizer
from newswire.ingestion.article_types import Article, ArticleView, utcnow
from newswire.storage.base import ArticleStore


logger = logging.getLogger(__name__)

# Placeholders older crawlers wrote into `content`; they are not article text.
INVALID_CONTENT_VALUES = frozenset({"No content available", "Content crawling failed"})


@dataclass(frozen=True)
class Digest:
    text: str
    article_ids: List[int]


def sanitize_text(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed or trimmed in INVALID_CONTENT_VALUES:
        return None
    return trimmed


def has_usable_content(article: Article) -> bool:
    return sanitize_text(article.content) is not None


def to_view(article: Article) -> ArticleView:
    snippet = sanitize_text(article.snippet) or ""
    return ArticleView(
        title=article.title,
        snippet=snippet,
        content=sanitize_text(article.content) or snippet,
        link=article.link,
    )


class DigestGenerator:
    def __init__(
        self,
        store: ArticleStore,
        summarizer: Summarizer,
        *,
        lookback_hours: int = 24,
        max_articles: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.summarizer = summarizer
        self.lookback_hours = lookback_hours
        self.max_articles = max_articles
        self._clock = clock

    def select_articles(self) -> List[Article]:
        since = self._clock() - timedelta(hours=self.lookback_hours)
        recent = self.store.find_recent(since)
        if not recent:
            logger.warning("No recent articles found for digest generation.")
            return []
        with_content = [a for a in recent if has_usable_content(a)]
        if not with_content:
            logger.warning("No recent articles with content found. The crawler may need more time.")
            return []
        logger.info(f"Found {len(with_content)} articles with content out of {len(recent)} recent articles")
        return with_content[: self.max_articles]

    def generate(self) -> Optional[Digest]:
        """Return the digest for the lookback window, or None if there is nothing to say."""
        logger.info("📰 Starting digest generation...")
        articles = self.select_articles()
        if not articles:
            return None
        views: Sequence[ArticleView] = [to_view(a) for a in articles]
        text = self.summarizer.summarize(views)
        if not text or not text.strip():
            logger.warning("Summarizer returned no digest")
            return None
        return Digest(text=text, article_ids=[a.id for a in articles])
