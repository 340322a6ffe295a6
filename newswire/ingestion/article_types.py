"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from newswire.ingestion.source_types import Source


NO_TITLE_PLACEHOLDER = "No title"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArticleCandidate:
    """Freshly fetched article record, before dedup/persistence.

    Never persisted when `link` is empty.
    """

    source_id: int
    title: str
    link: str
    published_at: datetime = field(default_factory=utcnow)
    snippet: str = ""
    raw: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Article:
    """Persisted article joined with its source.

    `content` stays None until an extraction succeeds.
    """

    id: int
    source_id: int
    title: str
    link: str
    published_at: datetime
    fetched_at: datetime
    snippet: Optional[str] = None
    content: Optional[str] = None
    source: Optional[Source] = None

    @property
    def content_selector(self) -> Optional[str]:
        if self.source is None:
            return None
        return self.source.content_selector

    def log_context(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source.name if self.source else None,
            "link": self.link,
        }


@dataclass(frozen=True)
class ArticleView:
    """What the summarizer sees of an article."""

    title: str
    snippet: str
    content: str
    link: str
