"""RSS/Atom feed fetcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, List, Optional

import feedparser
import requests
from bs4 import BeautifulSoup

from newswire.ingestion.article_types import NO_TITLE_PLACEHOLDER, ArticleCandidate, utcnow
from newswire.ingestion.ingestors import BROWSER_HEADERS, DEFAULT_TIMEOUT, BaseIngestor
from newswire.ingestion.source_types import KIND_FEED, KIND_RSS, Source
from newswire.ingestion.url_utils import validate_fetch_url


logger = logging.getLogger(__name__)


def _parse_dt(entry: Any) -> Optional[datetime]:
    """Best-effort publish date from a feedparser entry (UTC-aware)."""
    for key in ("published_parsed", "updated_parsed"):
        st = entry.get(key)
        if st:
            try:
                return datetime(*st[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                pass
    for key in ("published", "updated"):
        s = (entry.get(key) or "").strip()
        if not s:
            continue
        try:
            parsed = parsedate_to_datetime(s)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _snippet(entry: Any) -> str:
    """Plain-text short form of the entry (summary with markup removed)."""
    raw = entry.get("summary") or entry.get("description") or ""
    if not raw:
        return ""
    text = BeautifulSoup(raw, "html.parser").get_text(" ")
    return " ".join(text.split())


@dataclass(frozen=True)
class FeedFetcher(BaseIngestor):
    timeout: int = DEFAULT_TIMEOUT

    kinds = (KIND_FEED, KIND_RSS)

    def fetch(self, source: Source) -> List[ArticleCandidate]:
        logger.info(f"Fetching RSS source '{source.name}'...")
        err = validate_fetch_url(source.url)
        if err:
            logger.error(f"Refusing to fetch RSS source '{source.name}' ({source.url}): {err}")
            return []
        try:
            resp = requests.get(source.url, headers=BROWSER_HEADERS, timeout=self.timeout)
            resp.raise_for_status()
            parsed = feedparser.parse(resp.content)
            if parsed.get("bozo") and not parsed.entries:
                raise ValueError(f"unparseable feed: {parsed.get('bozo_exception')}")
        except Exception as e:
            logger.error(f"Failed to fetch RSS source '{source.name}': {e}")
            return []

        if not parsed.entries:
            logger.warning(f"RSS feed '{source.name}' is empty")
            return []

        out: List[ArticleCandidate] = []
        for entry in parsed.entries:
            link = (entry.get("link") or "").strip()
            if not link:
                continue
            title = (entry.get("title") or "").strip() or NO_TITLE_PLACEHOLDER
            out.append(
                ArticleCandidate(
                    source_id=source.id,
                    title=title,
                    link=link,
                    published_at=_parse_dt(entry) or utcnow(),
                    snippet=_snippet(entry),
                )
            )
        logger.info(f"Fetched RSS source '{source.name}' successfully ({len(out)} articles)")
        return out
