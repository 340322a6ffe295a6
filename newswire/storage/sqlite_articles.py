"""SQLite-backed source registry and article store.

Used for local runs and tests. Timestamps are stored as fixed-width ISO-8601 UTC
strings, so lexical order equals chronological order.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from newswire.ingestion.article_types import Article, ArticleCandidate, utcnow
from newswire.ingestion.source_types import Source
from newswire.storage.base import ArticleStore, SourceRegistry, StorageError, decode_options


logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        url TEXT NOT NULL UNIQUE,
        kind TEXT NOT NULL,
        options TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS articles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL REFERENCES sources(id),
        title TEXT NOT NULL,
        link TEXT NOT NULL UNIQUE,
        published_at TEXT NOT NULL,
        snippet TEXT,
        content TEXT,
        fetched_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_published_fetched ON articles (published_at DESC, fetched_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS digests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        article_ids TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]

_ARTICLE_SELECT = """
    SELECT a.id, a.source_id, a.title, a.link, a.published_at, a.fetched_at, a.snippet, a.content,
           s.id AS s_id, s.name AS s_name, s.url AS s_url, s.kind AS s_kind, s.options AS s_options,
           s.is_active AS s_is_active, s.created_at AS s_created_at
    FROM articles a
    JOIN sources s ON s.id = a.source_id
"""


def to_db_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SQLiteArticleStore(ArticleStore, SourceRegistry):
    def __init__(
        self,
        db_path: str = "newswire.db",
        *,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ):
        self.db_path = db_path
        self.clock = clock
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.init_schema()

    def _open(self) -> sqlite3.Connection:
        for attempt in range(self.max_retries):
            try:
                conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys=ON;")
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                return conn
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < self.max_retries - 1:
                    logger.warning(f"Database locked, retrying in {self.retry_delay}s (attempt {attempt + 1})")
                    time.sleep(self.retry_delay)
                    continue
                raise StorageError(f"cannot open {self.db_path}: {e}") from e
        raise StorageError(f"cannot open {self.db_path}")

    @contextmanager
    def get_connection(self):
        conn = self._open()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self.get_connection() as conn:
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)

    @staticmethod
    def _row_to_source(row: sqlite3.Row, prefix: str = "") -> Source:
        return Source(
            id=int(row[f"{prefix}id"]),
            name=row[f"{prefix}name"],
            url=row[f"{prefix}url"],
            kind=row[f"{prefix}kind"],
            options=decode_options(row[f"{prefix}options"]),
            is_active=bool(row[f"{prefix}is_active"]),
            created_at=from_db_time(row[f"{prefix}created_at"]),
        )

    def _row_to_article(self, row: sqlite3.Row) -> Article:
        return Article(
            id=int(row["id"]),
            source_id=int(row["source_id"]),
            title=row["title"],
            link=row["link"],
            published_at=from_db_time(row["published_at"]),
            fetched_at=from_db_time(row["fetched_at"]),
            snippet=row["snippet"],
            content=row["content"],
            source=self._row_to_source(row, prefix="s_"),
        )

    # Sources

    def list_active(self) -> List[Source]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM sources WHERE is_active = 1 ORDER BY id").fetchall()
        return [self._row_to_source(r) for r in rows]

    def add_source(
        self,
        *,
        name: str,
        url: str,
        kind: str,
        options: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Optional[int]:
        with self.get_connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO sources (name, url, kind, options, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(url) DO NOTHING
                """,
                (
                    name,
                    url,
                    kind,
                    json.dumps(options) if options is not None else None,
                    1 if is_active else 0,
                    to_db_time(self.clock()),
                ),
            )
            return int(cur.lastrowid) if cur.rowcount else None

    def set_source_active(self, source_id: int, is_active: bool) -> None:
        with self.get_connection() as conn:
            conn.execute("UPDATE sources SET is_active = ? WHERE id = ?", (1 if is_active else 0, int(source_id)))

    # Articles

    def insert_ignoring_duplicates(self, articles: Sequence[ArticleCandidate]) -> int:
        rows = [
            (a.source_id, a.title, a.link, to_db_time(a.published_at), a.snippet, to_db_time(self.clock()))
            for a in articles
            if a.link
        ]
        if not rows:
            return 0
        with self.get_connection() as conn:
            cur = conn.executemany(
                """
                INSERT INTO articles (source_id, title, link, published_at, snippet, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(link) DO NOTHING
                """,
                rows,
            )
            return max(0, cur.rowcount)

    def find_missing_content(self, limit: int) -> List[Article]:
        with self.get_connection() as conn:
            rows = conn.execute(
                _ARTICLE_SELECT
                + " WHERE a.content IS NULL ORDER BY a.published_at DESC, a.fetched_at DESC LIMIT ?",
                (max(0, int(limit)),),
            ).fetchall()
        return [self._row_to_article(r) for r in rows]

    def find_recent(self, since: datetime) -> List[Article]:
        with self.get_connection() as conn:
            rows = conn.execute(
                _ARTICLE_SELECT + " WHERE a.published_at >= ? ORDER BY a.published_at DESC",
                (to_db_time(since),),
            ).fetchall()
        return [self._row_to_article(r) for r in rows]

    def update_content(self, article_id: int, content: str) -> None:
        with self.get_connection() as conn:
            conn.execute("UPDATE articles SET content = ? WHERE id = ?", (content, int(article_id)))

    def record_digest(self, content: str, article_ids: Sequence[int]) -> int:
        with self.get_connection() as conn:
            cur = conn.execute(
                "INSERT INTO digests (content, article_ids, created_at) VALUES (?, ?, ?)",
                (content, json.dumps([int(i) for i in article_ids]), to_db_time(self.clock())),
            )
            return int(cur.lastrowid)

    def count_digests(self) -> int:
        with self.get_connection() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM digests").fetchone()[0])
