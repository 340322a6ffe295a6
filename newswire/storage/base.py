"""Storage contracts consumed by the crawler and the digest job."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from newswire.ingestion.article_types import Article, ArticleCandidate
from newswire.ingestion.source_types import Source


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


class SourceRegistry:
    def list_active(self) -> List[Source]:
        raise NotImplementedError

    def add_source(
        self,
        *,
        name: str,
        url: str,
        kind: str,
        options: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Optional[int]:
        """Insert a source; returns its id, or None if the url already exists."""
        raise NotImplementedError

    def set_source_active(self, source_id: int, is_active: bool) -> None:
        raise NotImplementedError


class ArticleStore:
    def insert_ignoring_duplicates(self, articles: Sequence[ArticleCandidate]) -> int:
        """Insert candidates; duplicate links are skipped. Returns the inserted count."""
        raise NotImplementedError

    def find_missing_content(self, limit: int) -> List[Article]:
        """Articles with no content, newest `published_at` first, then newest `fetched_at`."""
        raise NotImplementedError

    def find_recent(self, since: datetime) -> List[Article]:
        """Articles published at or after `since`, newest first."""
        raise NotImplementedError

    def update_content(self, article_id: int, content: str) -> None:
        raise NotImplementedError

    def record_digest(self, content: str, article_ids: Sequence[int]) -> int:
        raise NotImplementedError


def decode_options(value: Any) -> Optional[Dict[str, Any]]:
    if value is None or isinstance(value, dict):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None
