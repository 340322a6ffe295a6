import os
import unittest
import uuid
from datetime import datetime, timedelta, timezone

from newswire.ingestion.article_types import ArticleCandidate


PG_DSN = os.getenv("PG_DSN", "")

T0 = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


@unittest.skipUnless(PG_DSN, "PG_DSN not set")
class TestPostgresArticleStore(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        from newswire.storage.postgres_articles import PostgresArticleStore
        from newswire.storage.postgres_schema import ensure_postgres_schema

        ensure_postgres_schema(PG_DSN)
        # Twice: schema creation must be repeatable.
        ensure_postgres_schema(PG_DSN)
        cls.store = PostgresArticleStore(PG_DSN)

    def setUp(self):
        # Unique per test so runs against a shared database do not collide.
        self.tag = uuid.uuid4().hex
        self.source_id = self.store.add_source(
            name=f"Example {self.tag}",
            url=f"https://{self.tag}.example.com/rss",
            kind="feed",
            options={"scrapeOptions": {"detail": {"content": "div.body"}}},
        )

    def _candidate(self, n, published_at=T0, title=None):
        return ArticleCandidate(
            source_id=self.source_id,
            title=title or f"Story {n}",
            link=f"https://{self.tag}.example.com/{n}",
            published_at=published_at,
            snippet=f"snippet {n}",
        )

    def _mine(self, articles):
        return [a for a in articles if self.tag in a.link]

    def test_add_source_is_idempotent_by_url(self):
        again = self.store.add_source(name="dup", url=f"https://{self.tag}.example.com/rss", kind="feed")
        self.assertIsNone(again)
        ours = [s for s in self.store.list_active() if s.id == self.source_id]
        self.assertEqual(len(ours), 1)
        self.assertEqual(ours[0].content_selector, "div.body")

    def test_insert_counts_only_new_links(self):
        first = self.store.insert_ignoring_duplicates([self._candidate(1), self._candidate(2)])
        second = self.store.insert_ignoring_duplicates([self._candidate(2, title="Changed"), self._candidate(3)])
        self.assertEqual(first, 2)
        self.assertEqual(second, 1)

    def test_backlog_and_update(self):
        self.store.insert_ignoring_duplicates(
            [
                self._candidate("old", published_at=T0 - timedelta(hours=3)),
                self._candidate("new", published_at=T0 + timedelta(hours=1)),
            ]
        )
        backlog = self._mine(self.store.find_missing_content(10000))
        self.assertEqual([a.link.rsplit("/", 1)[1] for a in backlog], ["new", "old"])

        self.store.update_content(backlog[0].id, "Body")
        backlog = self._mine(self.store.find_missing_content(10000))
        self.assertEqual([a.link.rsplit("/", 1)[1] for a in backlog], ["old"])

        recent = self._mine(self.store.find_recent(T0 - timedelta(hours=1)))
        self.assertEqual([a.content for a in recent], ["Body"])

    def test_record_digest(self):
        self.assertGreater(self.store.record_digest(f"# Digest {self.tag}", [1, 2]), 0)


if __name__ == "__main__":
    unittest.main()
