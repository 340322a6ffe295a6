"""Postgres-backed source registry and article store (psycopg + SQL)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import psycopg
from psycopg.types.json import Jsonb

from newswire.ingestion.article_types import Article, ArticleCandidate, utcnow
from newswire.ingestion.source_types import Source
from newswire.storage.base import ArticleStore, SourceRegistry, StorageError, decode_options


logger = logging.getLogger(__name__)

_ARTICLE_COLUMNS = """
    a.id, a.source_id, a.title, a.link, a.published_at, a.fetched_at, a.snippet, a.content,
    s.id, s.name, s.url, s.kind, s.options, s.is_active, s.created_at
"""

_INSERT_ARTICLE = """
    INSERT INTO articles (source_id, title, link, published_at, snippet, fetched_at)
    VALUES (%(source_id)s, %(title)s, %(link)s, %(published_at)s, %(snippet)s, %(fetched_at)s)
    ON CONFLICT (link) DO NOTHING
    RETURNING id
"""


def _row_to_source(row: Sequence[Any]) -> Source:
    sid, name, url, kind, options, is_active, created_at = row
    return Source(
        id=int(sid),
        name=name,
        url=url,
        kind=kind,
        options=decode_options(options),
        is_active=bool(is_active),
        created_at=created_at,
    )


def _row_to_article(row: Sequence[Any]) -> Article:
    (aid, source_id, title, link, published_at, fetched_at, snippet, content, *source_row) = row
    return Article(
        id=int(aid),
        source_id=int(source_id),
        title=title,
        link=link,
        published_at=published_at,
        fetched_at=fetched_at,
        snippet=snippet,
        content=content,
        source=_row_to_source(source_row),
    )


@dataclass
class PostgresArticleStore(ArticleStore, SourceRegistry):
    pg_dsn: str
    clock: Callable[[], datetime] = field(default=utcnow, repr=False)

    def _connect(self, **kwargs):
        try:
            return psycopg.connect(self.pg_dsn, **kwargs)
        except psycopg.Error as e:
            raise StorageError(f"cannot connect to Postgres: {e}") from e

    def _query(self, sql: str, params: Any = None) -> List[tuple]:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchall()
        except psycopg.Error as e:
            raise StorageError(str(e)) from e

    def _execute(self, sql: str, params: Any = None) -> Optional[tuple]:
        try:
            with self._connect(autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchone() if cur.description else None
        except psycopg.Error as e:
            raise StorageError(str(e)) from e

    # Sources

    def list_active(self) -> List[Source]:
        rows = self._query(
            """
            SELECT id, name, url, kind, options, is_active, created_at
            FROM sources
            WHERE is_active = TRUE
            ORDER BY id
            """
        )
        return [_row_to_source(r) for r in rows]

    def add_source(
        self,
        *,
        name: str,
        url: str,
        kind: str,
        options: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Optional[int]:
        row = self._execute(
            """
            INSERT INTO sources (name, url, kind, options, is_active)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (url) DO NOTHING
            RETURNING id
            """,
            (name, url, kind, Jsonb(options) if options is not None else None, is_active),
        )
        return int(row[0]) if row else None

    def set_source_active(self, source_id: int, is_active: bool) -> None:
        self._execute("UPDATE sources SET is_active = %s WHERE id = %s", (is_active, int(source_id)))

    # Articles

    def insert_ignoring_duplicates(self, articles: Sequence[ArticleCandidate]) -> int:
        rows = [
            {
                "source_id": a.source_id,
                "title": a.title,
                "link": a.link,
                "published_at": a.published_at,
                "snippet": a.snippet,
                "fetched_at": self.clock(),
            }
            for a in articles
            if a.link
        ]
        if not rows:
            return 0
        inserted = 0
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.executemany(_INSERT_ARTICLE, rows, returning=True)
                    while True:
                        if cur.fetchone() is not None:
                            inserted += 1
                        if not cur.nextset():
                            break
        except psycopg.Error as e:
            raise StorageError(f"bulk insert failed: {e}") from e
        return inserted

    def find_missing_content(self, limit: int) -> List[Article]:
        rows = self._query(
            f"""
            SELECT {_ARTICLE_COLUMNS}
            FROM articles a
            JOIN sources s ON s.id = a.source_id
            WHERE a.content IS NULL
            ORDER BY a.published_at DESC, a.fetched_at DESC
            LIMIT %s
            """,
            (max(0, int(limit)),),
        )
        return [_row_to_article(r) for r in rows]

    def find_recent(self, since: datetime) -> List[Article]:
        rows = self._query(
            f"""
            SELECT {_ARTICLE_COLUMNS}
            FROM articles a
            JOIN sources s ON s.id = a.source_id
            WHERE a.published_at >= %s
            ORDER BY a.published_at DESC
            """,
            (since,),
        )
        return [_row_to_article(r) for r in rows]

    def update_content(self, article_id: int, content: str) -> None:
        self._execute("UPDATE articles SET content = %s WHERE id = %s", (content, int(article_id)))

    def record_digest(self, content: str, article_ids: Sequence[int]) -> int:
        row = self._execute(
            "INSERT INTO digests (content, article_ids) VALUES (%s, %s) RETURNING id",
            (content, Jsonb([int(i) for i in article_ids])),
        )
        return int(row[0])
