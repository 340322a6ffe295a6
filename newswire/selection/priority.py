"""Which articles get their full text fetched next."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from newswire.ingestion.article_types import Article
from newswire.storage.base import ArticleStore


logger = logging.getLogger(__name__)

DEFAULT_MAX_ARTICLES_PER_BATCH = 30


@dataclass(frozen=True)
class PrioritySelector:
    """Newest-first backlog of articles still missing content. Read only."""

    store: ArticleStore
    limit: int = DEFAULT_MAX_ARTICLES_PER_BATCH

    def select(self) -> List[Article]:
        articles = self.store.find_missing_content(self.limit)
        logger.info(f"Found {len(articles)} articles missing content")
        return articles
