"""Source definitions as stored in the `sources` table.

`options` keeps the JSON shape the sources were configured with:

    {"scrapeOptions": {"list": {"container": ..., "title": ..., "link": ..., "snippet": ...},
                       "detail": {"content": ...}}}

Both the list selectors and the detail content selector are optional.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


KIND_FEED = "feed"
KIND_SCRAPE = "scrape"
# Older rows were written with "rss"; treated exactly like "feed".
KIND_RSS = "rss"


@dataclass(frozen=True)
class ListSelectors:
    container: str
    title: str
    link: str
    snippet: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ListSelectors"]:
        if not isinstance(data, dict):
            return None
        container = str(data.get("container") or "").strip()
        title = str(data.get("title") or "").strip()
        link = str(data.get("link") or "").strip()
        if not (container and title and link):
            return None
        snippet = str(data.get("snippet") or "").strip() or None
        return cls(container=container, title=title, link=link, snippet=snippet)


@dataclass(frozen=True)
class ScrapeOptions:
    list: Optional[ListSelectors] = None
    content_selector: Optional[str] = None

    @classmethod
    def from_options(cls, options: Any) -> Optional["ScrapeOptions"]:
        if isinstance(options, str):
            try:
                options = json.loads(options)
            except ValueError:
                return None
        if not isinstance(options, dict):
            return None
        scrape = options.get("scrapeOptions")
        if not isinstance(scrape, dict):
            return None
        detail = scrape.get("detail")
        content_selector = None
        if isinstance(detail, dict):
            content_selector = str(detail.get("content") or "").strip() or None
        return cls(list=ListSelectors.from_dict(scrape.get("list")), content_selector=content_selector)


@dataclass(frozen=True)
class Source:
    """A configured origin of articles. Read-only to the crawler."""

    id: int
    name: str
    url: str
    kind: str
    options: Optional[Dict[str, Any]] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def extraction_config(self) -> Optional[ScrapeOptions]:
        return ScrapeOptions.from_options(self.options)

    @property
    def list_selectors(self) -> Optional[ListSelectors]:
        cfg = self.extraction_config
        return cfg.list if cfg else None

    @property
    def content_selector(self) -> Optional[str]:
        cfg = self.extraction_config
        return cfg.content_selector if cfg else None
