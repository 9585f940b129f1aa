"""Data models for the scraper."""

from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple


@dataclass
class SourceInput:
    """User-editable fields of a source (also the shape of an exported profile)."""
    name: str
    author: str = ""
    description: str = ""
    url: str = ""
    first_page_url: str = ""
    selector_image: str = ""
    selector_title: str = ""
    selector_next: str = ""


@dataclass
class Source:
    id: int
    name: str
    author: str = ""
    description: str = ""
    url: str = ""
    first_page_url: str = ""
    selector_image: str = ""
    selector_title: str = ""
    selector_next: str = ""
    cover_image: Optional[bytes] = None
    # Running counters, kept in sync by the batcher and the downloader
    page_count: int = 0
    image_count: int = 0
    downloaded_image_count: int = 0


@dataclass
class Image:
    id: int
    page_id: int
    index: int
    page_url: str
    image_url: str
    download_path: str = ""


@dataclass
class Page:
    id: int
    source_id: int
    index: int
    title: str
    page_url: str
    images: List[Image] = field(default_factory=list)


@dataclass(frozen=True)
class PendingRecord:
    """One extracted image waiting to be committed as part of a Page."""
    page_url: str
    image_url: str
    title: str
    sequence: int


@dataclass
class FetchState:
    """Crawl cursor owned by a single crawl invocation."""
    current_url: str
    previous_url: Optional[str]
    initially_empty: bool
    max_index: int = 0
    visited: Set[str] = field(default_factory=set)
    dedup_keys: Set[Tuple[str, str]] = field(default_factory=set)
    pending: List[PendingRecord] = field(default_factory=list)
    pages_added: int = 0
    since_last_commit: int = 0
    cover_captured: bool = False


@dataclass
class DownloadItem:
    """An image scheduled for download together with its naming context."""
    image_id: int
    page_index: int
    image_index: int
    page_url: str
    image_url: str
    title: str = ""
    group_count: int = 1
    download_path: str = ""

    @property
    def sort_key(self) -> Tuple[int, int]:
        return self.page_index, self.image_index


@dataclass
class DownloadResult:
    image_id: int
    final_path: str = ""
    wrote: bool = False
    cover: Optional[bytes] = None
