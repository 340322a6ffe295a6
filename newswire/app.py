"""Process wiring: config -> store -> fetchers -> engine -> crawler -> digest delivery."""

from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Any, Optional

import schedule

from newswire.briefs.digest import DigestGenerator
from newswire.briefs.summarizer import OpenAISummarizer, Summarizer
from newswire.config.settings import Config, DeliveryConfig, StorageConfig, SummarizerConfig
from newswire.delivery.sinks import DigestSink, DiscordChannelSink, LoggingSink, TelegramSink
from newswire.extraction.engine import ContentExtractionEngine
from newswire.ingestion.article_types import utcnow
from newswire.ingestion.ingestors import IngestorRegistry, default_registry
from newswire.jobs.crawler import PeriodicCrawler
from newswire.jobs.daemon import CRAWL_REQUEST_SIGNAL, write_status_file
from newswire.jobs.digest_scheduler import DigestScheduler


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGUSR2")


def build_store(cfg: StorageConfig):
    if cfg.backend == "postgres":
        from newswire.storage.postgres_articles import PostgresArticleStore
        from newswire.storage.postgres_schema import ensure_postgres_schema

        ensure_postgres_schema(cfg.pg_dsn)
        return PostgresArticleStore(cfg.pg_dsn)

    from newswire.storage.sqlite_articles import SQLiteArticleStore

    return SQLiteArticleStore(cfg.db_path)


def build_sink(cfg: DeliveryConfig) -> DigestSink:
    common = dict(timeout=cfg.request_timeout, retry_attempts=cfg.retry_attempts, retry_delay=cfg.retry_delay)
    if cfg.sink == "discord":
        return DiscordChannelSink(cfg.discord_bot_token, cfg.discord_channel_id, **common)
    if cfg.sink == "telegram":
        return TelegramSink(cfg.telegram_bot_token, cfg.telegram_chat_id, **common)
    return LoggingSink(**common)


def build_summarizer(cfg: SummarizerConfig) -> Summarizer:
    return OpenAISummarizer(
        api_key=cfg.api_key,
        model=cfg.model,
        base_url=cfg.base_url,
        temperature=cfg.temperature,
        timeout=cfg.request_timeout,
    )


class Application:
    def __init__(
        self,
        config: Config,
        *,
        store: Any = None,
        engine: Optional[ContentExtractionEngine] = None,
        ingestors: Optional[IngestorRegistry] = None,
        sink: Optional[DigestSink] = None,
        summarizer: Optional[Summarizer] = None,
        scheduler: Optional[schedule.Scheduler] = None,
    ):
        self.config = config
        self.status_file: Optional[str] = None
        self.scheduler = scheduler or schedule.Scheduler()
        self.store = store if store is not None else build_store(config.storage)
        ext = config.extraction
        self.engine = engine or ContentExtractionEngine(
            headless=ext.headless,
            navigation_timeout_ms=int(ext.navigation_timeout_s * 1000),
            user_agent=ext.user_agent,
        )
        self.crawler = PeriodicCrawler(
            sources=self.store,
            store=self.store,
            ingestors=ingestors or default_registry(timeout=config.delivery.request_timeout),
            engine=self.engine,
            scheduler=self.scheduler,
            config=config.crawler,
            max_content_length=ext.max_content_length,
            on_change=self.publish_status,
        )
        self.sink = sink or build_sink(config.delivery)
        self.digests: Optional[DigestScheduler] = None
        if config.digest.enabled or summarizer is not None:
            generator = DigestGenerator(
                self.store,
                summarizer or build_summarizer(config.summarizer),
                lookback_hours=config.digest.lookback_hours,
                max_articles=config.digest.max_articles,
            )
            self.digests = DigestScheduler(
                generator=generator,
                sink=self.sink,
                scheduler=self.scheduler,
                store=self.store,
                config=config.digest,
            )

        self.shutdown_requested = threading.Event()
        self.crawl_requested = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def enable_status_file(self, path: str) -> None:
        """Publish the crawler status to `path` now and on every crawler state change."""
        self.status_file = path
        self.publish_status()

    def publish_status(self) -> None:
        if not self.status_file:
            return
        status = self.crawler.get_status()
        status["pid"] = os.getpid()
        status["updated_at"] = utcnow().isoformat()
        if self.digests is not None:
            status["digest_schedule"] = self.digests.schedule_expression if self.digests.is_scheduled else None
        write_status_file(self.status_file, status)

    def start(self) -> None:
        self.crawler.start()
        if self.digests is not None and self.config.digest.enabled:
            self.digests.start()
            self.publish_status()
        if self.config.run_on_start:
            logger.info("🚀 Running initial crawl cycle...")
            self.crawler.trigger()

    def install_signal_handlers(self) -> None:
        """Setup graceful shutdown and crawl-request handlers (main thread only)."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            self.shutdown_requested.set()

        def crawl_request_handler(signum, frame):
            logger.info(f"Received signal {signum}, crawl cycle requested")
            self.crawl_requested.set()

        for name in SHUTDOWN_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is not None:
                signal.signal(sig, signal_handler)
        signal.signal(getattr(signal, CRAWL_REQUEST_SIGNAL), crawl_request_handler)

    def tick(self) -> None:
        self.scheduler.run_pending()
        if self.crawl_requested.is_set():
            self.crawl_requested.clear()
            # Goes through the crawler's guard like a scheduled trigger.
            self.crawler.trigger()

    def run_forever(self, poll_interval: float = 1.0) -> None:
        self.start()
        try:
            while not self.shutdown_requested.is_set():
                self.tick()
                self.shutdown_requested.wait(poll_interval)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Stop triggers, let the running cycle wind down, then release resources. Idempotent."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True
        self.shutdown_requested.set()
        logger.info("🛑 Shutting down gracefully...")

        self._cleanup_step("Periodic crawler stopped", self.crawler.stop)
        if self.digests is not None:
            self._cleanup_step("Digest schedule stopped", self.digests.stop)

        self.crawler.abort()
        grace = self.config.shutdown_grace_s
        if not self.crawler.wait_idle(grace):
            logger.warning(f"Crawl cycle still running after {grace:.0f}s grace period; closing anyway")

        self._cleanup_step("Browser instance closed", self.engine.shutdown)
        self._cleanup_step("Delivery client closed", self.sink.close)
        logger.info("🔄 Cleanup completed")

    @staticmethod
    def _cleanup_step(done_message: str, fn) -> None:
        try:
            fn()
            logger.info(f"✅ {done_message}")
        except Exception as e:
            logger.error(f"❌ Error during cleanup: {e}")
