"""Source fetchers and the per-kind dispatch used by the crawler.

Each fetcher turns one `Source` into `ArticleCandidate`s. Fetchers never raise:
network/parse failures are logged and yield an empty list so one broken source
cannot abort the whole batch.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from newswire.ingestion.article_types import ArticleCandidate
from newswire.ingestion.source_types import Source


logger = logging.getLogger(__name__)

# Some publishers reject clients that do not look like a browser.
BROWSER_HEADERS = {
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate, br",
    "Accept-Language": "en-US,en;q=0.9,vi;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/125.0.0.0 Safari/537.36"
    ),
}

DEFAULT_TIMEOUT = 30


class BaseIngestor:
    kinds: Sequence[str] = ()

    def fetch(self, source: Source) -> List[ArticleCandidate]:
        raise NotImplementedError


def dedupe_candidates(items: Iterable[ArticleCandidate]) -> List[ArticleCandidate]:
    """Drop empty links and repeated links, keeping the first occurrence."""
    seen = set()
    out = []
    for it in items:
        if not it.link or it.link in seen:
            continue
        seen.add(it.link)
        out.append(it)
    return out


class IngestorRegistry:
    """Maps a source kind to the fetcher that handles it."""

    def __init__(self, ingestors: Iterable[BaseIngestor]):
        self._by_kind: Dict[str, BaseIngestor] = {}
        for ing in ingestors:
            for kind in ing.kinds:
                self._by_kind[kind] = ing

    def for_kind(self, kind: str) -> Optional[BaseIngestor]:
        return self._by_kind.get((kind or "").strip().lower())

    def fetch_all(self, sources: Sequence[Source]) -> List[ArticleCandidate]:
        """Fetch every source in order and concatenate the results.

        Unknown kinds are logged and skipped.
        """
        out: List[ArticleCandidate] = []
        for source in sources:
            ingestor = self.for_kind(source.kind)
            if ingestor is None:
                logger.warning(f"Unknown source type '{source.kind}' for source '{source.name}', skipping")
                continue
            out.extend(ingestor.fetch(source))
        logger.info(f"Total articles fetched from all sources: {len(out)}")
        return out


def default_registry(*, timeout: int = DEFAULT_TIMEOUT) -> IngestorRegistry:
    from newswire.ingestion.feeds import FeedFetcher
    from newswire.ingestion.scraper import ListScraper

    return IngestorRegistry([FeedFetcher(timeout=timeout), ListScraper(timeout=timeout)])
