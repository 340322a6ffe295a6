"""Periodic crawl cycle: fetch sources, persist new articles, backfill full text.

A cycle is guarded against overlap: a manual trigger that arrives while the
scheduled cycle is running (or vice versa) returns a `skipped` report at once.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

import schedule

from newswire.config.settings import CrawlerConfig
from newswire.extraction.engine import DEFAULT_MAX_CONTENT_LENGTH, ExtractionJob
from newswire.ingestion.article_types import Article
from newswire.ingestion.ingestors import IngestorRegistry, dedupe_candidates
from newswire.jobs.threads import spawn_job
from newswire.selection.priority import PrioritySelector
from newswire.storage.base import ArticleStore, SourceRegistry


logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class CycleReport:
    status: str = STATUS_COMPLETED
    sources: int = 0
    fetched: int = 0
    inserted: int = 0
    selected: int = 0
    extracted: int = 0
    skipped_no_selector: int = 0
    failed_extractions: int = 0
    aborted: bool = False
    errors: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None

    def fail(self, step: str, exc: Exception) -> None:
        self.status = STATUS_FAILED
        self.errors.append(f"{step}: {exc}")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["error"] = self.error
        return d


class PeriodicCrawler:
    def __init__(
        self,
        *,
        sources: SourceRegistry,
        store: ArticleStore,
        ingestors: IngestorRegistry,
        engine: Any,
        scheduler: schedule.Scheduler,
        config: Optional[CrawlerConfig] = None,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
        dispatch: Callable[[Callable[[], Any], str], Any] = spawn_job,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.sources = sources
        self.store = store
        self.ingestors = ingestors
        self.engine = engine
        self.scheduler = scheduler
        self.config = config or CrawlerConfig()
        self.max_content_length = max_content_length
        self.selector = PrioritySelector(store, limit=self.config.max_articles_per_batch)
        self._dispatch = dispatch
        self._clock = clock
        self._on_change = on_change

        self._running = threading.Lock()
        self._job_lock = threading.Lock()
        self._job: Optional[schedule.Job] = None
        self._abort = threading.Event()
        self.last_report: Optional[CycleReport] = None

    # Scheduling

    @property
    def is_scheduled(self) -> bool:
        with self._job_lock:
            return self._job is not None

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def start(self) -> None:
        with self._job_lock:
            if self._job is not None:
                logger.warning("Crawler is already scheduled")
                return
            self._job = self.scheduler.every(self.config.interval_minutes).minutes.do(self.trigger)
        logger.info(f"🕷️ Crawler scheduled {self.config.schedule_expression}")
        self._notify()

    def stop(self) -> None:
        """Cancel future triggers. A cycle already in flight keeps running."""
        with self._job_lock:
            job, self._job = self._job, None
        if job is not None:
            self.scheduler.cancel_job(job)
            logger.info("Crawler schedule stopped")
            self._notify()

    def trigger(self) -> Any:
        return self._dispatch(self.run_cycle, "crawl-cycle")

    def abort(self) -> None:
        """Make an in-flight cycle stop after its current article. Used at shutdown."""
        self._abort.set()

    def wait_idle(self, timeout: float) -> bool:
        """Block until no cycle is running, up to `timeout` seconds."""
        if not self._running.acquire(timeout=max(0.0, timeout)):
            return False
        self._running.release()
        return True

    # Cycle

    def run_cycle(self) -> CycleReport:
        if not self._running.acquire(blocking=False):
            logger.warning("Crawler is already running, skipping this cycle")
            return CycleReport(status=STATUS_SKIPPED)

        report = CycleReport()
        started = self._clock()
        try:
            self._notify()
            logger.info("🔄 Starting crawl cycle...")
            try:
                self.fetch_and_save_new_articles(report)
            except Exception as e:
                logger.error(f"Error fetching and saving new articles: {e}", exc_info=True)
                report.fail("fetch", e)
            try:
                self.crawl_missing_content(report)
            except Exception as e:
                logger.error(f"Error crawling missing content: {e}", exc_info=True)
                report.fail("backfill", e)
        except Exception as e:
            logger.error(f"Crawl cycle failed: {e}", exc_info=True)
            report.fail("cycle", e)
        finally:
            report.duration_s = round(self._clock() - started, 3)
            self.last_report = report
            self._running.release()
        self._notify()

        logger.info(
            f"✅ Crawl cycle {report.status} in {report.duration_s:.1f}s: "
            f"fetched={report.fetched} inserted={report.inserted} selected={report.selected} "
            f"extracted={report.extracted} no_selector={report.skipped_no_selector} "
            f"failed={report.failed_extractions}"
        )
        return report

    def fetch_and_save_new_articles(self, report: CycleReport) -> None:
        sources = self.sources.list_active()
        report.sources = len(sources)
        if not sources:
            logger.info("No active sources found")
            return
        logger.info(f"Found {len(sources)} active sources")

        candidates = dedupe_candidates(self.ingestors.fetch_all(sources))
        report.fetched = len(candidates)
        if not candidates:
            logger.info("No new articles to save")
            return
        report.inserted = self.store.insert_ignoring_duplicates(candidates)
        logger.info(f"Saved {report.inserted} new articles ({len(candidates) - report.inserted} already known)")

    def crawl_missing_content(self, report: CycleReport) -> None:
        articles = self.selector.select()
        report.selected = len(articles)
        if not articles:
            return

        size = max(1, self.config.batch_size)
        total_batches = (len(articles) + size - 1) // size
        for n, start in enumerate(range(0, len(articles), size), start=1):
            logger.info(f"Processing batch {n}/{total_batches}")
            for article in articles[start : start + size]:
                if self._abort.is_set():
                    logger.warning("Crawl cycle aborted before finishing the backlog")
                    report.aborted = True
                    return
                self._process_article(article, report)

    def _process_article(self, article: Article, report: CycleReport) -> None:
        selector = article.content_selector
        if not selector:
            source_name = article.source.name if article.source else article.source_id
            logger.info(f"No content selector configured for source '{source_name}', skipping article {article.id}")
            report.skipped_no_selector += 1
            return

        try:
            logger.info(f"Crawling content for article: {article.title}")
            result = self.engine.extract(
                ExtractionJob(url=article.link, content_selector=selector, max_length=self.max_content_length)
            )
            if result.ok:
                self.store.update_content(article.id, result.text)
                report.extracted += 1
                logger.info(f"Updated content for article {article.id}")
            else:
                report.failed_extractions += 1
                logger.warning(f"No content extracted for article {article.id} ({result.status}), will retry later")
        except Exception as e:
            report.failed_extractions += 1
            logger.error(f"Error processing article {article.log_context()}: {e}")
        finally:
            # Politeness delay; cut short when a shutdown aborts the cycle.
            if self.config.delay_between_requests_s > 0:
                self._abort.wait(self.config.delay_between_requests_s)

    # Status

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception as e:
            logger.error(f"Failed to publish crawler status: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_scheduled": self.is_scheduled,
            "is_running": self.is_running,
            "schedule": self.config.schedule_expression,
            "config": asdict(self.config),
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }


def format_status(status: Dict[str, Any]) -> str:
    cfg = status.get("config") or {}
    lines = [
        "**Crawler Status**",
        f"Running: {'Yes' if status.get('is_running') else 'No'}",
        f"Scheduled: {'Yes' if status.get('is_scheduled') else 'No'}",
        f"Schedule: {status.get('schedule', '')}",
        f"Max articles per batch: {cfg.get('max_articles_per_batch', '')}",
        f"Batch size: {cfg.get('batch_size', '')}",
    ]
    last = status.get("last_report")
    if last:
        lines.append(
            f"Last cycle: {last.get('status')} (inserted {last.get('inserted', 0)}, "
            f"extracted {last.get('extracted', 0)}, failed {last.get('failed_extractions', 0)})"
        )
    return "\n".join(lines)
