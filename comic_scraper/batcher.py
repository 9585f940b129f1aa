"""Turns buffered crawl records into Page/Image rows in one gated commit."""

import logging
from collections import OrderedDict
from typing import Dict, List, Tuple

from .concurrency import WriteGate
from .db import Catalog
from .models import FetchState, PendingRecord

logger = logging.getLogger("comic_scraper")


def group_by_page(records: List[PendingRecord]) -> "OrderedDict[str, Tuple[str, List[str]]]":
    """page_url -> (title, image_urls), pages in first-seen order."""
    groups: Dict[str, Tuple[str, List[str]]] = OrderedDict()
    for record in records:
        if record.page_url not in groups:
            groups[record.page_url] = (record.title, [])
        groups[record.page_url][1].append(record.image_url)
    return groups


class CommitBatcher:
    def __init__(self, catalog: Catalog, gate: WriteGate):
        self.catalog = catalog
        self.gate = gate

    def flush(self, source_id: int, state: FetchState) -> Tuple[int, int]:
        """Commit ``state.pending``; returns (pages, images) created.

        On failure nothing is committed and the pending buffer is kept so the
        next flush retries the same batch.
        """
        if not state.pending:
            return 0, 0

        groups = group_by_page(state.pending)
        image_total = sum(len(urls) for _, urls in groups.values())

        with self.gate.commit_section():
            with self.catalog.transaction():
                next_index = self.catalog.max_page_index(source_id) + 1
                first_index = next_index
                for page_url, (title, image_urls) in groups.items():
                    page_id = self.catalog.insert_page(source_id, next_index, title, page_url)
                    for position, image_url in enumerate(image_urls):
                        self.catalog.insert_image(page_id, position, page_url, image_url)
                    next_index += 1
                self.catalog.bump_counters(source_id, pages=len(groups), images=image_total)

        logger.info(
            f"Committed {len(groups)} pages ({first_index}-{next_index - 1}), "
            f"{image_total} images, records #{state.pending[0].sequence}-#{state.pending[-1].sequence}"
        )
        state.pending.clear()
        state.since_last_commit = 0
        return len(groups), image_total
