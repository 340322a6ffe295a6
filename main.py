#!/usr/bin/env python3
"""
newswire: periodic news crawler with scheduled chat digests.

Sub-commands:
  serve       run the crawl and digest schedules until a shutdown signal (default)
  run-cycle   run one crawl cycle now, or ask the running daemon to, and print the report
  status      print the crawler status published by the running daemon
  digest      generate a digest now and deliver it (or print it with --dry-run)
  seed        insert the default sources
"""

import argparse
import json
import logging
import os
import sys

from newswire.app import Application
from newswire.config.settings import Config
from newswire.jobs.crawler import STATUS_FAILED, STATUS_SKIPPED, CycleReport, format_status
from newswire.jobs.daemon import ProcessLock, read_status_file, request_crawl
from newswire.jobs.digest_scheduler import RUN_FAILED


logger = logging.getLogger("newswire")

DEFAULT_SOURCES = [
    {
        "name": "Tin mới nhất - VnExpress RSS",
        "url": "https://vnexpress.net/rss/tin-moi-nhat.rss",
        "kind": "feed",
        "options": None,
    },
]


def setup_logging(level: str, log_file: str) -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def cmd_serve(app: Application, args) -> int:
    lock = ProcessLock(app.config.lock_file)
    if not lock.acquire():
        app.shutdown()
        return 1
    try:
        app.install_signal_handlers()
        app.enable_status_file(app.config.status_file)
        logger.info("✅ newswire started")
        logger.info(f"🕷️ Crawl schedule: {app.config.crawler.schedule_expression}")
        if app.digests is not None:
            logger.info(f"📰 Digest schedule: {app.digests.schedule_expression} -> {app.sink.name}")
        logger.info("⏹️  Stop: Press Ctrl+C for graceful shutdown")
        app.run_forever()
        logger.info("👋 Graceful shutdown completed")
        return 0
    finally:
        lock.release()


def cmd_run_cycle(app: Application, args) -> int:
    """Run one cycle here, or hand it to the running daemon so its guard applies."""
    lock = ProcessLock(app.config.lock_file)
    try:
        if lock.acquire(quiet=True):
            try:
                app.enable_status_file(app.config.status_file)
                report = app.crawler.run_cycle()
            finally:
                lock.release()
        else:
            logger.info("newswire daemon is running, not starting a second crawl")
            request_crawl(lock.holder_pid())
            report = CycleReport(status=STATUS_SKIPPED)
    finally:
        app.shutdown()
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 1 if report.status == STATUS_FAILED else 0


def cmd_status(app: Application, args) -> int:
    try:
        lock = ProcessLock(app.config.lock_file)
        if not lock.is_held():
            print("Daemon: not running")
            print(format_status(app.crawler.get_status()))
            return 0

        pid = lock.holder_pid()
        status = read_status_file(app.config.status_file)
        if status is None or status.get("pid") != pid:
            print(f"Daemon: running (PID {pid}), no status published yet")
            return 0
        print(f"Daemon: running (PID {pid}), status as of {status.get('updated_at')}")
        print(format_status(status))
        return 0
    finally:
        app.shutdown()


def cmd_digest(app: Application, args) -> int:
    if app.digests is None:
        logger.error("Digest delivery is disabled (DIGEST_ENABLED=false)")
        app.shutdown()
        return 1
    try:
        run = app.digests.run_once(deliver=not args.dry_run)
    finally:
        app.shutdown()
    if args.dry_run:
        print(run.digest.text if run.digest else "No digest generated.")
        return 0
    logger.info(f"Digest run {run.status} ({run.chunks_sent} message(s) sent)")
    return 1 if run.status == RUN_FAILED else 0


def cmd_seed(app: Application, args) -> int:
    try:
        for src in DEFAULT_SOURCES:
            source_id = app.store.add_source(**src)
            if source_id is None:
                logger.info(f"Source already present: {src['name']}")
            else:
                logger.info(f"Seeded source {source_id}: {src['name']}")
    finally:
        app.shutdown()
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "run-cycle": cmd_run_cycle,
    "status": cmd_status,
    "digest": cmd_digest,
    "seed": cmd_seed,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Periodic news crawler with scheduled digests")
    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="run the schedules until stopped")
    serve.add_argument("--run-now", action="store_true", help="run one crawl cycle right after startup")
    sub.add_parser("run-cycle", help="run one crawl cycle now")
    sub.add_parser("status", help="print crawler status")
    digest = sub.add_parser("digest", help="generate and deliver a digest now")
    digest.add_argument("--dry-run", action="store_true", help="print the digest instead of sending it")
    sub.add_parser("seed", help="insert the default sources")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "serve"
    try:
        config = Config.from_env()
    except ValueError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Configuration error:\n{e}")
        return 1

    setup_logging(config.log_level, config.log_file)
    if getattr(args, "run_now", False):
        config.run_on_start = True

    try:
        app = Application(config)
    except Exception as e:
        logger.error(f"Failed to initialize: {e}", exc_info=True)
        return 1

    try:
        return COMMANDS[command](app, args)
    except KeyboardInterrupt:
        logger.info("👋 Shutdown requested by user")
        app.shutdown()
        return 0
    except Exception as e:
        logger.error(f"💥 Fatal error: {e}", exc_info=True)
        app.shutdown()
        return 1


if __name__ == "__main__":
    sys.exit(main())
