"""Postgres schema management.

Schema creation is idempotent (CREATE IF NOT EXISTS) so every process may call it
on startup.
"""

from __future__ import annotations

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS sources (
      id BIGSERIAL PRIMARY KEY,
      name VARCHAR(255) NOT NULL,
      url TEXT NOT NULL UNIQUE,
      kind TEXT NOT NULL,
      options JSONB,
      is_active BOOLEAN NOT NULL DEFAULT TRUE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS articles (
      id BIGSERIAL PRIMARY KEY,
      source_id BIGINT NOT NULL REFERENCES sources(id),
      title TEXT NOT NULL,
      link TEXT NOT NULL UNIQUE,
      published_at TIMESTAMPTZ NOT NULL,
      snippet TEXT,
      content TEXT,
      fetched_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_published_fetched ON articles (published_at DESC, fetched_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_articles_missing_content ON articles (published_at DESC) WHERE content IS NULL;",
    """
    CREATE TABLE IF NOT EXISTS digests (
      id BIGSERIAL PRIMARY KEY,
      content TEXT NOT NULL,
      article_ids JSONB NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_digests_created_at ON digests (created_at DESC);",
]


def ensure_postgres_schema(pg_dsn: str) -> None:
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for stmt in SCHEMA_STATEMENTS:
                cur.execute(stmt)
