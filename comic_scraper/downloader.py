"""Bounded-concurrency image downloader with on-disk reconciliation.

Worker threads only fetch and write files; they return a DownloadResult and
never touch the catalog. The scheduler thread applies every result, keeps the
window of in-flight downloads full, and commits through the write gate every
``commit_every`` written files and once more at the end.
"""

import logging
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .concurrency import CancelToken, WriteGate
from .config import clamp_concurrency
from .db import Catalog
from .errors import Cancelled, NetworkError
from .http_client import HTTPClient
from .models import DownloadItem, DownloadResult, Source
from .naming import build_filename, decode_data_url, file_extension, folder_name, url_path_extension

logger = logging.getLogger("comic_scraper")

DEFAULT_MAX_CONCURRENT = 10
DEFAULT_COMMIT_EVERY = 50
DEFAULT_RECONCILE_BATCH = 1000


def source_folder(source: Source, root: str) -> str:
    return os.path.join(root, folder_name(source.name))


def target_filename(item: DownloadItem, ext: str) -> str:
    return build_filename(item.page_index, item.title, ext,
                          group_count=item.group_count, sub_number=item.image_index + 1)


class DownloadScheduler:
    def __init__(self, catalog: Catalog, client: HTTPClient, gate: WriteGate,
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT,
                 commit_every: int = DEFAULT_COMMIT_EVERY,
                 reconcile_batch_size: int = DEFAULT_RECONCILE_BATCH):
        self.catalog = catalog
        self.client = client
        self.gate = gate
        self.max_concurrent = clamp_concurrency(max_concurrent)
        self.commit_every = max(1, commit_every)
        self.reconcile_batch_size = max(1, reconcile_batch_size)

    # --- work set ---

    def missing_on_disk(self, source_id: int, folder: str) -> Iterator[DownloadItem]:
        """Images whose recorded download path no longer points at a file."""
        folder = os.path.abspath(folder)
        try:
            listing: Set[str] = set(os.listdir(folder))
        except FileNotFoundError:
            listing = set()

        offset = 0
        while True:
            batch = self.catalog.downloaded_images(source_id, self.reconcile_batch_size, offset)
            if not batch:
                return
            for item in batch:
                path = os.path.abspath(item.download_path)
                if os.path.dirname(path) == folder:
                    present = os.path.basename(path) in listing
                else:
                    present = os.path.isfile(path)
                if not present:
                    yield item
            offset += len(batch)

    def build_work_set(self, source_id: int, folder: str) -> List[DownloadItem]:
        items: Dict[int, DownloadItem] = {}
        for item in self.catalog.fresh_images(source_id):
            items[item.image_id] = item
        missing = 0
        for item in self.missing_on_disk(source_id, folder):
            if item.image_id not in items:
                items[item.image_id] = item
                missing += 1
        if missing:
            logger.info(f"{missing} previously downloaded images are missing on disk")
        return sorted(items.values(), key=lambda i: i.sort_key)

    # --- single item ---

    def download_asset(self, item: DownloadItem, folder: str, overwrite: bool,
                       want_cover: bool = False,
                       token: Optional[CancelToken] = None) -> DownloadResult:
        if item.image_url.startswith("data:"):
            return self._write_data_url(item, folder, overwrite, want_cover)

        if token is not None:
            token.raise_if_cancelled()
        temp_path, resp = self.client.download_to_temp(
            item.image_url, referer=item.page_url, token=token, directory=folder,
        )
        try:
            if not resp.ok:
                logger.warning(f"HTTP {resp.status} for {item.image_url}")
                return DownloadResult(item.image_id)

            ext = file_extension(resp.content_type, url_path_extension(item.image_url))
            final_path = os.path.join(folder, target_filename(item, ext))
            if os.path.exists(final_path):
                if not overwrite:
                    return DownloadResult(item.image_id, final_path, wrote=False)
                os.remove(final_path)

            os.replace(temp_path, final_path)
            cover = None
            if want_cover:
                with open(final_path, "rb") as f:
                    cover = f.read()
            return DownloadResult(item.image_id, final_path, wrote=True, cover=cover)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)

    def _write_data_url(self, item: DownloadItem, folder: str, overwrite: bool,
                        want_cover: bool) -> DownloadResult:
        decoded = decode_data_url(item.image_url)
        if decoded is None:
            logger.warning(f"Undecodable data URL for image {item.image_id}")
            return DownloadResult(item.image_id)
        media_type, data = decoded
        final_path = os.path.join(folder, target_filename(item, file_extension(media_type, None)))
        if not overwrite and os.path.exists(final_path):
            return DownloadResult(item.image_id, final_path, wrote=False)
        with open(final_path, "wb") as f:
            f.write(data)
        return DownloadResult(item.image_id, final_path, wrote=True,
                              cover=data if want_cover else None)

    def _run_item(self, item: DownloadItem, folder: str, overwrite: bool,
                  want_cover: bool, token: CancelToken) -> DownloadResult:
        """Item boundary: everything except transport failures becomes "not written"."""
        try:
            return self.download_asset(item, folder, overwrite, want_cover, token)
        except NetworkError:
            raise
        except Cancelled:
            return DownloadResult(item.image_id)
        except Exception as e:
            logger.warning(f"Download failed for {item.image_url}: {e}")
            return DownloadResult(item.image_id)

    # --- scheduling ---

    def download_images(self, source_id: int, root: str, overwrite: bool = False,
                        token: Optional[CancelToken] = None) -> int:
        """Download every missing image of a source; returns files written."""
        token = token or CancelToken()
        source = self.catalog.get_source(source_id)
        folder = os.path.abspath(source_folder(source, root))
        os.makedirs(folder, exist_ok=True)

        items = self.build_work_set(source_id, folder)
        logger.info(f"[{source.name}] {len(items)} images to download into {folder}")

        run = _RunState(need_cover=source.cover_image is None)
        try:
            self._drain(source_id, items, folder, overwrite, token, run)
        except BaseException:
            self._save_quietly(source_id, run)
            raise
        self._save(source_id, run)

        logger.info(f"[{source.name}] Download done: {run.written} written, "
                    f"{run.processed}/{len(items)} processed")
        if token.cancelled:
            raise Cancelled()
        return run.written

    def _drain(self, source_id: int, items: List[DownloadItem], folder: str,
               overwrite: bool, token: CancelToken, run: "_RunState"):
        queue = iter(items)
        in_flight: Dict[Future, DownloadItem] = {}

        with ThreadPoolExecutor(max_workers=self.max_concurrent,
                                thread_name_prefix="comic-download") as executor:
            def submit_next() -> bool:
                if token.cancelled:
                    return False
                item = next(queue, None)
                if item is None:
                    return False
                future = executor.submit(self._run_item, item, folder, overwrite,
                                         run.need_cover, token)
                in_flight[future] = item
                return True

            for _ in range(self.max_concurrent):
                if not submit_next():
                    break

            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    item = in_flight.pop(future)
                    self._apply(item, future.result(), run)
                    if run.written_since_save >= self.commit_every:
                        self._save(source_id, run)
                    submit_next()

    def _apply(self, item: DownloadItem, result: DownloadResult, run: "_RunState"):
        run.processed += 1
        previous = item.download_path
        if result.final_path or previous:
            # An empty final_path on a previously downloaded item clears it
            if result.final_path != previous:
                run.path_updates.append((item.image_id, result.final_path))
                if result.final_path and not previous:
                    run.downloaded_delta += 1
                elif previous and not result.final_path:
                    run.downloaded_delta -= 1
                item.download_path = result.final_path
        if result.wrote:
            run.written += 1
            run.written_since_save += 1
        if result.cover is not None and run.need_cover:
            run.cover = result.cover
            run.need_cover = False

    def _save(self, source_id: int, run: "_RunState"):
        with self.gate.commit_section():
            with self.catalog.transaction():
                if run.path_updates:
                    self.catalog.set_download_paths(run.path_updates)
                if run.downloaded_delta:
                    self.catalog.bump_counters(source_id, downloaded=run.downloaded_delta)
                if run.cover is not None:
                    self.catalog.set_cover_if_missing(source_id, run.cover)
        if run.path_updates:
            logger.debug(f"Saved {len(run.path_updates)} download paths")
        run.path_updates = []
        run.downloaded_delta = 0
        run.cover = None
        run.written_since_save = 0

    def _save_quietly(self, source_id: int, run: "_RunState"):
        try:
            self._save(source_id, run)
        except Exception as e:
            logger.error(f"Could not save download progress: {e}")


class _RunState:
    """Mutable bookkeeping owned by the scheduler thread."""

    def __init__(self, need_cover: bool):
        self.need_cover = need_cover
        self.processed = 0
        self.written = 0
        self.written_since_save = 0
        self.path_updates: List[Tuple[int, str]] = []
        self.downloaded_delta = 0
        self.cover: Optional[bytes] = None
