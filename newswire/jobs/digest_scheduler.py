"""Fixed-time digest delivery (several times a day, in the configured timezone)."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import schedule

from newswire.briefs.digest import Digest, DigestGenerator
from newswire.config.settings import DigestConfig
from newswire.delivery.chunking import split_message
from newswire.delivery.sinks import DeliveryError, DigestSink
from newswire.jobs.threads import spawn_job
from newswire.storage.base import ArticleStore


logger = logging.getLogger(__name__)

RUN_DELIVERED = "delivered"
RUN_SKIPPED = "skipped"
RUN_FAILED = "failed"


@dataclass
class DigestRun:
    status: str
    chunks_sent: int = 0
    digest: Optional[Digest] = None
    error: Optional[str] = None


class DigestScheduler:
    def __init__(
        self,
        *,
        generator: DigestGenerator,
        sink: DigestSink,
        scheduler: schedule.Scheduler,
        store: Optional[ArticleStore] = None,
        config: Optional[DigestConfig] = None,
        dispatch: Callable[[Callable[[], Any], str], Any] = spawn_job,
    ):
        self.generator = generator
        self.sink = sink
        self.scheduler = scheduler
        self.store = store
        self.config = config or DigestConfig()
        self._dispatch = dispatch
        self._jobs_lock = threading.Lock()
        self._jobs: List[schedule.Job] = []

    @property
    def is_scheduled(self) -> bool:
        with self._jobs_lock:
            return bool(self._jobs)

    @property
    def schedule_expression(self) -> str:
        return f"daily at {', '.join(self.config.delivery_times)} ({self.config.timezone})"

    def start(self) -> None:
        with self._jobs_lock:
            if self._jobs:
                logger.warning("Digest job is already scheduled")
                return
            for at in self.config.delivery_times:
                self._jobs.append(self.scheduler.every().day.at(at, self.config.timezone).do(self.trigger))
        logger.info(f"📰 Digest job scheduled {self.schedule_expression}")

    def stop(self) -> None:
        with self._jobs_lock:
            jobs, self._jobs = self._jobs, []
        for job in jobs:
            self.scheduler.cancel_job(job)
        if jobs:
            logger.info("Digest schedule stopped")

    def trigger(self) -> Any:
        return self._dispatch(self.run_once, "digest-delivery")

    def run_once(self, *, deliver: bool = True) -> DigestRun:
        """Generate a digest and deliver it in order-preserving chunks. Never raises."""
        logger.info("⏰ Digest job triggered")
        try:
            digest = self.generator.generate()
        except Exception as e:
            logger.error(f"❌ Digest generation failed: {e}", exc_info=True)
            return DigestRun(status=RUN_FAILED, error=str(e))

        if digest is None:
            logger.warning("⚠️ No digest generated. Skipping delivery.")
            return DigestRun(status=RUN_SKIPPED)
        if not deliver:
            return DigestRun(status=RUN_SKIPPED, digest=digest)

        chunks = split_message(digest.text, self.sink.max_message_length)
        sent = 0
        try:
            self.sink.resolve()
            for chunk in chunks:
                self.sink.send(chunk)
                sent += 1
        except DeliveryError as e:
            logger.error(f"❌ Digest delivery failed after {sent}/{len(chunks)} chunks: {e}")
            return DigestRun(status=RUN_FAILED, chunks_sent=sent, digest=digest, error=str(e))
        except Exception as e:
            logger.error(f"❌ Digest delivery failed after {sent}/{len(chunks)} chunks: {e}", exc_info=True)
            return DigestRun(status=RUN_FAILED, chunks_sent=sent, digest=digest, error=str(e))

        logger.info(f"✅ Digest delivered to {self.sink.name} in {sent} message(s)")
        self._record(digest)
        return DigestRun(status=RUN_DELIVERED, chunks_sent=sent, digest=digest)

    def _record(self, digest: Digest) -> None:
        if self.store is None:
            return
        try:
            digest_id = self.store.record_digest(digest.text, digest.article_ids)
            logger.info(f"Stored digest {digest_id} covering {len(digest.article_ids)} articles")
        except Exception as e:
            logger.error(f"Failed to store delivered digest: {e}")
