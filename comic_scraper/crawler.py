"""Sequential page crawler: fetch, extract, dedup, buffer, follow "next".

One page is processed at a time. Extracted images become PendingRecords that
the CommitBatcher writes in bulk, either when the commit threshold is crossed
or when the crawl ends for any reason (including cancellation).
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from .batcher import CommitBatcher
from .concurrency import CancelToken, WriteGate
from .db import Catalog
from .errors import Cancelled, InvalidBaseURL, MissingSelector
from .extractor import PageExtraction, Selectors, extract_page
from .fetcher import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF_MS, fetch_bytes, fetch_html
from .http_client import HTTPClient
from .models import FetchState, PendingRecord, Source

logger = logging.getLogger("comic_scraper")

DEFAULT_COMMIT_THRESHOLD = 100
DEFAULT_DEDUP_WINDOW = 200


def _valid_page_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class Crawler:
    def __init__(self, catalog: Catalog, client: HTTPClient, gate: WriteGate,
                 commit_threshold: int = DEFAULT_COMMIT_THRESHOLD,
                 dedup_window: int = DEFAULT_DEDUP_WINDOW,
                 fetch_attempts: int = DEFAULT_ATTEMPTS,
                 retry_backoff_ms: int = DEFAULT_BACKOFF_MS):
        self.catalog = catalog
        self.client = client
        self.gate = gate
        self.batcher = CommitBatcher(catalog, gate)
        self.commit_threshold = max(1, commit_threshold)
        self.dedup_window = max(0, dedup_window)
        self.fetch_attempts = fetch_attempts
        self.retry_backoff_ms = retry_backoff_ms

    def initial_state(self, source: Source) -> FetchState:
        """Resume after the highest-indexed page, or start at the first page URL."""
        last, previous = self.catalog.last_pages(source.id)
        first_page_url = source.first_page_url.strip()

        if last is not None:
            current = last.page_url
            referer = previous.page_url if previous is not None else (first_page_url or None)
        else:
            current = first_page_url
            referer = None

        if not _valid_page_url(current):
            raise InvalidBaseURL(current)

        max_index = self.catalog.max_page_index(source.id)
        window_start = max(0, max_index - self.dedup_window)
        return FetchState(
            current_url=current,
            previous_url=referer,
            initially_empty=last is None,
            max_index=max_index,
            dedup_keys=self.catalog.pair_keys_since(source.id, window_start),
        )

    def fetch_pages(self, source_id: int, max_pages: Optional[int] = None,
                    token: Optional[CancelToken] = None) -> int:
        """Crawl forward from the resume point; returns the number of new records."""
        token = token or CancelToken()
        source = self.catalog.get_source(source_id)
        if not source.selector_image.strip():
            raise MissingSelector("image")
        selectors = Selectors(
            title=source.selector_title,
            image=source.selector_image,
            next=source.selector_next,
        )
        state = self.initial_state(source)
        logger.info(f"[{source.name}] Crawling from {state.current_url}")

        try:
            while True:
                token.raise_if_cancelled()
                if self.step(source, selectors, state, max_pages, token):
                    break
            self.batcher.flush(source.id, state)
        finally:
            if state.pending:
                try:
                    self.batcher.flush(source.id, state)
                except Exception as e:
                    logger.debug(f"[{source.name}] Final flush failed, "
                                 f"{len(state.pending)} records left for next run: {e}")

        logger.info(f"[{source.name}] Crawl done: {state.pages_added} new, "
                    f"{len(state.visited)} pages visited")
        return state.pages_added

    def step(self, source: Source, selectors: Selectors, state: FetchState,
             max_pages: Optional[int], token: CancelToken) -> bool:
        """Process the page at the cursor. Returns True when the crawl should stop."""
        if max_pages is not None and state.pages_added >= max_pages:
            return True
        if state.current_url in state.visited:
            return True
        state.visited.add(state.current_url)

        markup = fetch_html(self.client, state.current_url, referer=state.previous_url,
                            token=token, attempts=self.fetch_attempts,
                            backoff_ms=self.retry_backoff_ms)
        page = extract_page(markup, state.current_url, selectors)
        if not page.image_urls:
            logger.info(f"[{source.name}] No images on {state.current_url}, stopping")
            return True

        if state.initially_empty and not state.cover_captured:
            self.capture_cover(source, page, state, token)

        remaining = None if max_pages is None else max_pages - state.pages_added
        reached_max = self.prepare_records(page, state, remaining)

        if reached_max or state.since_last_commit >= self.commit_threshold:
            self.batcher.flush(source.id, state)
        if reached_max:
            return True

        next_url = page.next_url
        if not next_url or next_url in state.visited:
            return True

        state.previous_url = state.current_url
        state.current_url = next_url
        return False

    def prepare_records(self, page: PageExtraction, state: FetchState,
                        remaining: Optional[int]) -> bool:
        """Buffer unseen images of the current page. Returns True if the cap was hit."""
        added = 0
        for image_url in page.image_urls:
            key = (state.current_url, image_url)
            if key in state.dedup_keys:
                continue
            state.max_index += 1
            state.pending.append(PendingRecord(
                page_url=state.current_url,
                image_url=image_url,
                title=page.title or "",
                sequence=state.max_index,
            ))
            state.dedup_keys.add(key)
            state.pages_added += 1
            state.since_last_commit += 1
            added += 1
            if remaining is not None and added >= remaining:
                return True
        return False

    def capture_cover(self, source: Source, page: PageExtraction, state: FetchState,
                      token: CancelToken):
        """Best-effort: use the first image of a brand-new source as its cover."""
        try:
            data = fetch_bytes(self.client, page.image_urls[0],
                               referer=state.current_url, token=token)
            with self.gate.commit_section():
                with self.catalog.transaction():
                    self.catalog.set_cover_if_missing(source.id, data)
            state.cover_captured = True
        except Cancelled:
            raise
        except Exception as e:
            logger.debug(f"[{source.name}] Cover capture failed: {e}")
