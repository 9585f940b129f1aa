"""YAML config loader."""

import os
from dataclasses import dataclass, field
from typing import Optional

import yaml

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/15.1 Safari/605.1.15"
)

MIN_CONCURRENT_DOWNLOADS = 1
MAX_CONCURRENT_DOWNLOADS = 24


def clamp_concurrency(value: int) -> int:
    return max(MIN_CONCURRENT_DOWNLOADS, min(MAX_CONCURRENT_DOWNLOADS, int(value)))


@dataclass
class HTTPConfig:
    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    rate_limit_ms: int = 250
    fetch_attempts: int = 3
    retry_backoff_ms: int = 200


@dataclass
class CrawlConfig:
    max_pages: Optional[int] = None
    commit_threshold: int = 100
    dedup_window: int = 200


@dataclass
class DownloadConfig:
    max_concurrent: int = 10
    overwrite: bool = False
    commit_every: int = 50
    reconcile_batch_size: int = 1000

    def __post_init__(self):
        self.max_concurrent = clamp_concurrency(self.max_concurrent)


@dataclass
class AppConfig:
    data_dir: str = "data"
    db_path: str = "comics.db"
    log_dir: str = "logs"
    http: HTTPConfig = field(default_factory=HTTPConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)


def _section(cls, raw: dict):
    return cls(**{k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__})


def load_config(config_path: str = "config.yaml") -> AppConfig:
    """Load settings from YAML; a missing file yields the defaults."""
    if not config_path or not os.path.exists(config_path):
        return AppConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return AppConfig(
        data_dir=raw.get("data_dir", "data"),
        db_path=raw.get("db_path", "comics.db"),
        log_dir=raw.get("log_dir", "logs"),
        http=_section(HTTPConfig, raw.get("http")),
        crawl=_section(CrawlConfig, raw.get("crawl")),
        download=_section(DownloadConfig, raw.get("download")),
    )
