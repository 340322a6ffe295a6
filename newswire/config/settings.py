"""Process configuration loaded from the environment (and `.env`)."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

import pytz
from dotenv import load_dotenv

from newswire.ingestion.ingestors import BROWSER_HEADERS


DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"
STORAGE_BACKENDS = ("postgres", "sqlite")
DELIVERY_SINKS = ("discord", "telegram", "none")

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class CrawlerConfig:
    interval_minutes: int = 30
    max_articles_per_batch: int = 30
    batch_size: int = 1
    delay_between_requests_s: float = 1.0
    timezone: str = DEFAULT_TIMEZONE

    @property
    def schedule_expression(self) -> str:
        return f"every {self.interval_minutes} minutes ({self.timezone})"


@dataclass(frozen=True)
class ExtractionConfig:
    headless: bool = True
    navigation_timeout_s: float = 30.0
    max_content_length: int = 20_000
    user_agent: str = BROWSER_HEADERS["User-Agent"]


@dataclass(frozen=True)
class DigestConfig:
    enabled: bool = True
    delivery_times: Tuple[str, ...] = ("07:00", "13:00", "22:00")
    timezone: str = DEFAULT_TIMEZONE
    lookback_hours: int = 24
    max_articles: int = 100


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "sqlite"
    pg_dsn: str = ""
    db_path: str = "newswire.db"


@dataclass(frozen=True)
class DeliveryConfig:
    sink: str = "none"
    discord_bot_token: str = ""
    discord_channel_id: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    request_timeout: int = 30
    retry_attempts: int = 3
    retry_delay: float = 5.0


@dataclass(frozen=True)
class SummarizerConfig:
    api_key: str = ""
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    request_timeout: float = 120.0


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    digest: DigestConfig = field(default_factory=DigestConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)

    log_level: str = "INFO"
    log_file: str = "newswire.log"
    lock_file: str = "state/newswire.lock"
    status_file: str = "state/newswire.status.json"
    run_on_start: bool = False
    shutdown_grace_s: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Config":
        """Load and validate configuration from environment variables."""
        if env is None:
            load_dotenv()
            env = os.environ
        get = env.get

        tz = get("TIMEZONE", DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
        telegram_token = get("TELEGRAM_BOT_TOKEN", "").strip()
        discord_token = get("DISCORD_BOT_TOKEN", "").strip()
        default_sink = "discord" if discord_token else ("telegram" if telegram_token else "none")
        times = tuple(t.strip() for t in get("DIGEST_TIMES", "07:00,13:00,22:00").split(",") if t.strip())

        config = cls(
            crawler=CrawlerConfig(
                interval_minutes=int(get("CRAWLER_INTERVAL_MINUTES", "30")),
                max_articles_per_batch=int(get("CRAWLER_MAX_ARTICLES_PER_BATCH", "30")),
                batch_size=int(get("CRAWLER_BATCH_SIZE", "1")),
                delay_between_requests_s=float(get("CRAWLER_DELAY_SECONDS", "1.0")),
                timezone=tz,
            ),
            extraction=ExtractionConfig(
                headless=_flag(get("EXTRACTION_HEADLESS"), True),
                navigation_timeout_s=float(get("EXTRACTION_TIMEOUT_SECONDS", "30")),
                max_content_length=int(get("EXTRACTION_MAX_CONTENT_LENGTH", "20000")),
                user_agent=get("EXTRACTION_USER_AGENT", "").strip() or BROWSER_HEADERS["User-Agent"],
            ),
            digest=DigestConfig(
                enabled=_flag(get("DIGEST_ENABLED"), True),
                delivery_times=times,
                timezone=tz,
                lookback_hours=int(get("DIGEST_LOOKBACK_HOURS", "24")),
                max_articles=int(get("DIGEST_MAX_ARTICLES", "100")),
            ),
            storage=StorageConfig(
                backend=get("STORAGE_BACKEND", "sqlite").strip().lower(),
                pg_dsn=get("PG_DSN", "").strip(),
                db_path=get("DB_PATH", "newswire.db").strip(),
            ),
            delivery=DeliveryConfig(
                sink=(get("DELIVERY_SINK", "").strip().lower() or default_sink),
                discord_bot_token=discord_token,
                discord_channel_id=get("DISCORD_CHANNEL_ID", "").strip(),
                telegram_bot_token=telegram_token,
                telegram_chat_id=get("TELEGRAM_CHAT_ID", "").strip(),
                request_timeout=int(get("REQUEST_TIMEOUT", "30")),
                retry_attempts=int(get("NOTIFICATION_RETRY_ATTEMPTS", "3")),
                retry_delay=float(get("NOTIFICATION_RETRY_DELAY", "5.0")),
            ),
            summarizer=SummarizerConfig(
                api_key=get("OPENAI_API_KEY", "").strip(),
                base_url=get("OPENAI_BASE_URL", "").strip() or None,
                model=get("AI_MODEL", "").strip() or "gpt-4o-mini",
                temperature=float(get("AI_TEMPERATURE", "0.3")),
            ),
            log_level=get("LOG_LEVEL", "INFO").strip().upper(),
            log_file=get("LOG_FILE", "newswire.log").strip(),
            lock_file=get("LOCK_FILE", "state/newswire.lock").strip(),
            status_file=get("STATUS_FILE", "state/newswire.status.json").strip(),
            run_on_start=_flag(get("RUN_ON_START"), False),
            shutdown_grace_s=float(get("SHUTDOWN_GRACE_SECONDS", "30")),
        )
        config._validate()
        return config

    def _validate(self):
        """Validate configuration values"""
        errors = []

        c = self.crawler
        if c.interval_minutes < 1:
            errors.append("CRAWLER_INTERVAL_MINUTES must be at least 1")
        if c.max_articles_per_batch < 1:
            errors.append("CRAWLER_MAX_ARTICLES_PER_BATCH must be at least 1")
        if c.batch_size < 1:
            errors.append("CRAWLER_BATCH_SIZE must be at least 1")
        if c.delay_between_requests_s < 0:
            errors.append("CRAWLER_DELAY_SECONDS cannot be negative")
        try:
            pytz.timezone(c.timezone)
        except pytz.UnknownTimeZoneError:
            errors.append(f"TIMEZONE '{c.timezone}' is not a known timezone")

        if self.extraction.navigation_timeout_s <= 0:
            errors.append("EXTRACTION_TIMEOUT_SECONDS must be positive")
        if self.extraction.max_content_length < 1:
            errors.append("EXTRACTION_MAX_CONTENT_LENGTH must be at least 1")

        d = self.digest
        if d.enabled:
            if not d.delivery_times:
                errors.append("DIGEST_TIMES must list at least one HH:MM time")
            for t in d.delivery_times:
                if not _HHMM.match(t):
                    errors.append(f"DIGEST_TIMES entry '{t}' is not HH:MM")
            if not self.summarizer.api_key:
                errors.append("OPENAI_API_KEY is required when DIGEST_ENABLED is true")
        if d.lookback_hours < 1:
            errors.append("DIGEST_LOOKBACK_HOURS must be at least 1")
        if d.max_articles < 1:
            errors.append("DIGEST_MAX_ARTICLES must be at least 1")

        s = self.storage
        if s.backend not in STORAGE_BACKENDS:
            errors.append(f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}")
        elif s.backend == "postgres" and not s.pg_dsn:
            errors.append("PG_DSN is required when STORAGE_BACKEND=postgres")
        elif s.backend == "sqlite" and not s.db_path:
            errors.append("DB_PATH is required when STORAGE_BACKEND=sqlite")

        dl = self.delivery
        if dl.sink not in DELIVERY_SINKS:
            errors.append(f"DELIVERY_SINK must be one of {', '.join(DELIVERY_SINKS)}")
        elif dl.sink == "discord":
            if not dl.discord_bot_token:
                errors.append("DISCORD_BOT_TOKEN is required for Discord delivery")
            if not dl.discord_channel_id.isdigit():
                errors.append("DISCORD_CHANNEL_ID must be a numeric channel id")
        elif dl.sink == "telegram":
            if not dl.telegram_bot_token:
                errors.append("TELEGRAM_BOT_TOKEN is required for Telegram delivery")
            elif ":" not in dl.telegram_bot_token:
                errors.append("TELEGRAM_BOT_TOKEN appears to be invalid")
            if not dl.telegram_chat_id:
                errors.append("TELEGRAM_CHAT_ID is required for Telegram delivery")
        if dl.retry_attempts < 1:
            errors.append("NOTIFICATION_RETRY_ATTEMPTS must be at least 1")

        if not self.lock_file:
            errors.append("LOCK_FILE cannot be empty")
        if not self.status_file:
            errors.append("STATUS_FILE cannot be empty")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ValueError(error_msg)
