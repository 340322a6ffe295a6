"""Listing-page scraper driven by per-source CSS selectors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import requests
from bs4 import BeautifulSoup

from newswire.ingestion.article_types import ArticleCandidate, utcnow
from newswire.ingestion.ingestors import BROWSER_HEADERS, DEFAULT_TIMEOUT, BaseIngestor
from newswire.ingestion.source_types import KIND_SCRAPE, Source
from newswire.ingestion.url_utils import resolve_link, validate_fetch_url


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListScraper(BaseIngestor):
    timeout: int = DEFAULT_TIMEOUT

    kinds = (KIND_SCRAPE,)

    def fetch(self, source: Source) -> List[ArticleCandidate]:
        logger.info(f"Fetching scrape source '{source.name}'...")
        selectors = source.list_selectors
        if selectors is None:
            logger.warning(f"Scrape source '{source.name}' is missing list selectors configuration")
            return []
        err = validate_fetch_url(source.url)
        if err:
            logger.error(f"Refusing to fetch scrape source '{source.name}' ({source.url}): {err}")
            return []

        try:
            resp = requests.get(source.url, headers=BROWSER_HEADERS, timeout=self.timeout)
            resp.raise_for_status()
            soup = BeautifulSoup(resp.content, "html.parser")
            # Listing pages rarely expose exact timestamps.
            fetched_at = utcnow()
            out: List[ArticleCandidate] = []
            for el in soup.select(selectors.container):
                title_node = el.select_one(selectors.title)
                link_node = el.select_one(selectors.link)
                title = title_node.get_text(strip=True) if title_node else ""
                href = link_node.get("href") if link_node else ""
                link = resolve_link(str(href or ""), source.url)
                if not title or not link:
                    continue
                snippet = ""
                if selectors.snippet:
                    snippet_node = el.select_one(selectors.snippet)
                    snippet = snippet_node.get_text(strip=True) if snippet_node else ""
                out.append(
                    ArticleCandidate(
                        source_id=source.id,
                        title=title,
                        link=link,
                        published_at=fetched_at,
                        snippet=snippet,
                    )
                )
        except Exception as e:
            logger.error(f"Failed to fetch scrape source '{source.name}': {e}")
            return []

        logger.info(f"Fetched scrape source '{source.name}' successfully ({len(out)} articles)")
        return out
