import threading
import unittest
from datetime import datetime, timedelta, timezone

import schedule

from newswire.config.settings import CrawlerConfig
from newswire.extraction.engine import STATUS_NO_MATCH, STATUS_OK, ExtractionResult
from newswire.ingestion.article_types import Article, ArticleCandidate
from newswire.ingestion.ingestors import BaseIngestor, IngestorRegistry
from newswire.ingestion.source_types import Source
from newswire.jobs.crawler import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_SKIPPED,
    PeriodicCrawler,
    format_status,
)


T0 = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
DETAIL = {"scrapeOptions": {"detail": {"content": "article.body"}}}


def _source(sid, kind="feed", options=DETAIL):
    return Source(id=sid, name=f"source-{sid}", url=f"https://s{sid}.example.com/", kind=kind, options=options)


def _article(aid, source, hours_ago=0):
    return Article(
        id=aid,
        source_id=source.id,
        title=f"Article {aid}",
        link=f"https://s{source.id}.example.com/a/{aid}",
        published_at=T0 - timedelta(hours=hours_ago),
        fetched_at=T0,
        source=source,
    )


class MemoryStore:
    def __init__(self, sources=(), backlog=()):
        self.sources = list(sources)
        self.backlog = list(backlog)
        self.inserted = []
        self.updates = []
        self.fail_list_active = False

    def list_active(self):
        if self.fail_list_active:
            raise RuntimeError("database unavailable")
        return [s for s in self.sources if s.is_active]

    def insert_ignoring_duplicates(self, articles):
        known = {a.link for a in self.inserted}
        new = [a for a in articles if a.link not in known]
        self.inserted.extend(new)
        return len(new)

    def find_missing_content(self, limit):
        done = {aid for aid, _ in self.updates}
        return [a for a in self.backlog if a.id not in done][:limit]

    def update_content(self, article_id, content):
        self.updates.append((article_id, content))


class StaticIngestor(BaseIngestor):
    kinds = ("feed",)

    def __init__(self, per_source):
        self.per_source = per_source
        self.fetched = []

    def fetch(self, source):
        self.fetched.append(source.id)
        return [
            ArticleCandidate(source_id=source.id, title=f"t{n}", link=f"{source.url}n/{n}")
            for n in range(self.per_source)
        ]


class ScriptedEngine:
    def __init__(self, texts=None, raise_for=(), gate=None):
        self.texts = texts or {}
        self.raise_for = set(raise_for)
        self.gate = gate
        self.entered = threading.Event()
        self.calls = []

    def extract(self, job):
        self.calls.append(job.url)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if job.url in self.raise_for:
            raise RuntimeError("engine exploded")
        text = self.texts.get(job.url, "body of " + job.url)
        if not text:
            return ExtractionResult(text="", status=STATUS_NO_MATCH)
        return ExtractionResult(text=text, status=STATUS_OK)


def _crawler(store, engine, per_source=2, scheduler=None, dispatch=None, **cfg):
    cfg.setdefault("delay_between_requests_s", 0)
    kwargs = {}
    if dispatch is not None:
        kwargs["dispatch"] = dispatch
    return PeriodicCrawler(
        sources=store,
        store=store,
        ingestors=IngestorRegistry([StaticIngestor(per_source)]),
        engine=engine,
        scheduler=scheduler or schedule.Scheduler(),
        config=CrawlerConfig(**cfg),
        **kwargs,
    )


class TestRunCycle(unittest.TestCase):
    def test_full_cycle(self):
        src = _source(1)
        store = MemoryStore(sources=[src], backlog=[_article(10, src), _article(11, src, hours_ago=1)])
        engine = ScriptedEngine()
        report = _crawler(store, engine).run_cycle()

        self.assertEqual(report.status, STATUS_COMPLETED)
        self.assertEqual(report.fetched, 2)
        self.assertEqual(report.inserted, 2)
        self.assertEqual(report.selected, 2)
        self.assertEqual(report.extracted, 2)
        self.assertEqual([aid for aid, _ in store.updates], [10, 11])
        self.assertIsNone(report.error)

    def test_second_cycle_inserts_nothing_new(self):
        store = MemoryStore(sources=[_source(1)])
        crawler = _crawler(store, ScriptedEngine())
        self.assertEqual(crawler.run_cycle().inserted, 2)
        self.assertEqual(crawler.run_cycle().inserted, 0)

    def test_overlapping_call_is_skipped(self):
        src = _source(1)
        store = MemoryStore(sources=[src], backlog=[_article(10, src)])
        gate = threading.Event()
        engine = ScriptedEngine(gate=gate)
        crawler = _crawler(store, engine)

        reports = []
        t = threading.Thread(target=lambda: reports.append(crawler.run_cycle()))
        t.start()
        self.assertTrue(engine.entered.wait(5))
        self.assertTrue(crawler.is_running)

        skipped = crawler.run_cycle()
        self.assertEqual(skipped.status, STATUS_SKIPPED)
        self.assertTrue(crawler.is_running)

        gate.set()
        t.join(5)
        self.assertEqual(reports[0].status, STATUS_COMPLETED)
        self.assertFalse(crawler.is_running)
        self.assertEqual(engine.calls, [src.url + "a/10"])

    def test_empty_extraction_does_not_abort_batch(self):
        src = _source(1)
        backlog = [_article(1, src), _article(2, src), _article(3, src)]
        engine = ScriptedEngine(texts={backlog[1].link: ""})
        store = MemoryStore(sources=[], backlog=backlog)
        report = _crawler(store, engine).run_cycle()

        self.assertEqual(len(engine.calls), 3)
        self.assertEqual([aid for aid, _ in store.updates], [1, 3])
        self.assertEqual(report.extracted, 2)
        self.assertEqual(report.failed_extractions, 1)

    def test_engine_exception_is_isolated(self):
        src = _source(1)
        backlog = [_article(1, src), _article(2, src)]
        engine = ScriptedEngine(raise_for={backlog[0].link})
        store = MemoryStore(backlog=backlog)
        report = _crawler(store, engine).run_cycle()

        self.assertEqual(report.status, STATUS_COMPLETED)
        self.assertEqual([aid for aid, _ in store.updates], [2])
        self.assertEqual(report.failed_extractions, 1)

    def test_article_without_selector_is_skipped(self):
        with_sel, without_sel = _source(1), _source(2, options=None)
        store = MemoryStore(backlog=[_article(1, without_sel), _article(2, with_sel)])
        engine = ScriptedEngine()
        report = _crawler(store, engine).run_cycle()

        self.assertEqual(engine.calls, [with_sel.url + "a/2"])
        self.assertEqual(report.skipped_no_selector, 1)
        self.assertEqual([aid for aid, _ in store.updates], [2])

    def test_unknown_kind_is_skipped(self):
        store = MemoryStore(sources=[_source(1, kind="telepathy"), _source(2)])
        with self.assertLogs("newswire.ingestion.ingestors", level="WARNING") as logs:
            report = _crawler(store, ScriptedEngine()).run_cycle()
        self.assertEqual(report.fetched, 2)
        self.assertTrue(all(c.source_id == 2 for c in store.inserted))
        self.assertTrue(any("telepathy" in line for line in logs.output))

    def test_failure_resets_running_flag(self):
        src = _source(1)
        store = MemoryStore(sources=[src], backlog=[_article(5, src)])
        store.fail_list_active = True
        crawler = _crawler(store, ScriptedEngine())

        report = crawler.run_cycle()
        self.assertEqual(report.status, STATUS_FAILED)
        self.assertIn("database unavailable", report.error)
        self.assertFalse(crawler.is_running)
        # The backfill step still ran.
        self.assertEqual([aid for aid, _ in store.updates], [5])

        store.fail_list_active = False
        self.assertEqual(crawler.run_cycle().status, STATUS_COMPLETED)

    def test_no_active_sources(self):
        store = MemoryStore()
        report = _crawler(store, ScriptedEngine()).run_cycle()
        self.assertEqual(report.status, STATUS_COMPLETED)
        self.assertEqual(report.sources, 0)
        self.assertEqual(store.inserted, [])

    def test_batch_limit_and_batches(self):
        src = _source(1)
        store = MemoryStore(backlog=[_article(i, src) for i in range(5)])
        engine = ScriptedEngine()
        with self.assertLogs("newswire.jobs.crawler", level="INFO") as logs:
            report = _crawler(store, engine, max_articles_per_batch=3, batch_size=2).run_cycle()
        self.assertEqual(report.selected, 3)
        self.assertEqual(len(engine.calls), 3)
        self.assertTrue(any("Processing batch 2/2" in line for line in logs.output))

    def test_abort_stops_before_next_article(self):
        src = _source(1)
        store = MemoryStore(backlog=[_article(1, src), _article(2, src)])
        engine = ScriptedEngine()
        crawler = _crawler(store, engine)
        crawler.abort()
        report = crawler.run_cycle()
        self.assertTrue(report.aborted)
        self.assertEqual(engine.calls, [])


class TestScheduling(unittest.TestCase):
    def test_start_is_idempotent_and_stop_is_safe(self):
        scheduler = schedule.Scheduler()
        crawler = _crawler(MemoryStore(), ScriptedEngine(), scheduler=scheduler, interval_minutes=15)

        crawler.stop()
        crawler.start()
        with self.assertLogs("newswire.jobs.crawler", level="WARNING"):
            crawler.start()
        self.assertEqual(len(scheduler.jobs), 1)
        self.assertTrue(crawler.is_scheduled)
        self.assertEqual(scheduler.jobs[0].interval, 15)

        crawler.stop()
        crawler.stop()
        self.assertEqual(scheduler.jobs, [])
        self.assertFalse(crawler.is_scheduled)

    def test_trigger_dispatches_cycle(self):
        dispatched = []
        crawler = _crawler(MemoryStore(), ScriptedEngine(), dispatch=lambda fn, name: dispatched.append((fn, name)))
        crawler.trigger()
        self.assertEqual(len(dispatched), 1)
        fn, name = dispatched[0]
        self.assertEqual(name, "crawl-cycle")
        self.assertEqual(fn().status, STATUS_COMPLETED)

    def test_status_snapshot(self):
        crawler = _crawler(MemoryStore(), ScriptedEngine())
        crawler.start()
        crawler.run_cycle()
        status = crawler.get_status()

        self.assertTrue(status["is_scheduled"])
        self.assertFalse(status["is_running"])
        self.assertEqual(status["config"]["max_articles_per_batch"], 30)
        self.assertEqual(status["config"]["batch_size"], 1)
        self.assertIn("30 minutes", status["schedule"])
        self.assertEqual(status["last_report"]["status"], STATUS_COMPLETED)

        text = format_status(status)
        self.assertIn("Running: No", text)
        self.assertIn("Scheduled: Yes", text)
        self.assertIn("Max articles per batch: 30", text)
        self.assertIn("Batch size: 1", text)

    def test_wait_idle(self):
        crawler = _crawler(MemoryStore(), ScriptedEngine())
        self.assertTrue(crawler.wait_idle(0.1))

    def test_state_changes_are_published(self):
        snapshots = []
        crawler = PeriodicCrawler(
            sources=MemoryStore(),
            store=MemoryStore(),
            ingestors=IngestorRegistry([]),
            engine=ScriptedEngine(),
            scheduler=schedule.Scheduler(),
            config=CrawlerConfig(delay_between_requests_s=0),
            on_change=lambda: snapshots.append(crawler.get_status()),
        )

        crawler.start()
        crawler.run_cycle()
        crawler.stop()

        self.assertEqual(
            [(s["is_scheduled"], s["is_running"]) for s in snapshots],
            [(True, False), (True, True), (True, False), (False, False)],
        )
        self.assertEqual(snapshots[2]["last_report"]["status"], STATUS_COMPLETED)

    def test_failing_status_publisher_does_not_break_cycle(self):
        def explode():
            raise OSError("disk full")

        crawler = PeriodicCrawler(
            sources=MemoryStore(),
            store=MemoryStore(),
            ingestors=IngestorRegistry([]),
            engine=ScriptedEngine(),
            scheduler=schedule.Scheduler(),
            config=CrawlerConfig(delay_between_requests_s=0),
            on_change=explode,
        )
        with self.assertLogs("newswire.jobs.crawler", level="ERROR"):
            report = crawler.run_cycle()
        self.assertEqual(report.status, STATUS_COMPLETED)
        self.assertFalse(crawler.is_running)


if __name__ == "__main__":
    unittest.main()
