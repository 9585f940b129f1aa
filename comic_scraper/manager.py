"""Source-level operations: add/edit/delete, crawl, download, sync, profiles."""

import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

from .concurrency import CancelToken, WriteGate
from .config import AppConfig
from .crawler import Crawler
from .db import Catalog
from .downloader import DownloadScheduler, source_folder
from .errors import Cancelled, ScraperError
from .http_client import HTTPClient
from .models import SourceInput
from .naming import folder_name
from .profiles import export_profile, import_profile

logger = logging.getLogger("comic_scraper")


class SourceManager:
    def __init__(self, config: AppConfig, catalog: Catalog, client: HTTPClient,
                 gate: Optional[WriteGate] = None):
        self.config = config
        self.catalog = catalog
        self.client = client
        self.gate = gate or WriteGate()
        self.crawler = Crawler(
            catalog, client, self.gate,
            commit_threshold=config.crawl.commit_threshold,
            dedup_window=config.crawl.dedup_window,
            fetch_attempts=config.http.fetch_attempts,
            retry_backoff_ms=config.http.retry_backoff_ms,
        )
        self.scheduler = DownloadScheduler(
            catalog, client, self.gate,
            max_concurrent=config.download.max_concurrent,
            commit_every=config.download.commit_every,
            reconcile_batch_size=config.download.reconcile_batch_size,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "SourceManager":
        catalog = Catalog(config.db_path)
        client = HTTPClient(
            user_agent=config.http.user_agent,
            timeout=config.http.timeout,
            rate_limit_ms=config.http.rate_limit_ms,
        )
        return cls(config, catalog, client)

    def close(self):
        self.client.close()
        self.catalog.close()

    # --- source records ---

    def add_source(self, data: SourceInput) -> int:
        source_id = self.catalog.create_source(data)
        logger.info(f"Added source {source_id}: {data.name}")
        return source_id

    def _folder_for(self, name: str) -> str:
        return os.path.abspath(os.path.join(self.config.data_dir, folder_name(name)))

    def _inside_data_dir(self, folder: str) -> bool:
        root = os.path.abspath(self.config.data_dir)
        folder = os.path.abspath(folder)
        return folder != root and os.path.commonpath([root, folder]) == root

    def edit_source(self, source_id: int, data: SourceInput):
        """Update a source; a rename also moves its download folder."""
        old = self.catalog.get_source(source_id)
        with self.gate.commit_section():
            self.catalog.update_source(source_id, data)

        if old.name == data.name:
            return
        old_folder = self._folder_for(old.name)
        new_folder = self._folder_for(data.name)
        if old_folder == new_folder:
            return
        if not (self._inside_data_dir(old_folder) and self._inside_data_dir(new_folder)):
            logger.error(f"Refusing to move {old_folder} -> {new_folder}: outside {self.config.data_dir}")
            return

        if os.path.exists(old_folder) and not os.path.exists(new_folder):
            try:
                shutil.move(old_folder, new_folder)
            except OSError as e:
                logger.error(f"Failed to rename folder {old_folder} -> {new_folder}: {e}")
                return
        if os.path.isdir(new_folder):
            with self.gate.commit_section():
                moved = self.catalog.rename_download_paths(
                    source_id, old_folder + os.sep, new_folder + os.sep,
                )
            logger.info(f"Renamed download folder for source {source_id} ({moved} paths updated)")

    def delete_download_folder(self, source_id: int) -> bool:
        source = self.catalog.get_source(source_id)
        folder = os.path.abspath(source_folder(source, self.config.data_dir))
        if not self._inside_data_dir(folder):
            logger.error(f"Refusing to delete {folder}: not a source folder under {self.config.data_dir}")
            return False
        if not os.path.isdir(folder):
            return False
        shutil.rmtree(folder)
        logger.info(f"Deleted {folder}")
        return True

    def delete_source(self, source_id: int, delete_files: bool = False):
        if delete_files:
            self.delete_download_folder(source_id)
        with self.gate.commit_section():
            self.catalog.delete_source(source_id)
        logger.info(f"Deleted source {source_id}")

    def refresh_counters(self, source_id: int) -> Tuple[int, int, int]:
        with self.gate.commit_section():
            return self.catalog.recount(source_id)

    # --- profiles ---

    def export_profile(self, source_id: int) -> str:
        return export_profile(self.catalog.get_source(source_id))

    def import_profile(self, document) -> int:
        return self.add_source(import_profile(document))

    # --- background operations ---

    def fetch_pages_for_source(self, source_id: int, max_pages: Optional[int] = None,
                               token: Optional[CancelToken] = None) -> int:
        """Crawl a source; cancellation is swallowed, other failures are logged."""
        if max_pages is None:
            max_pages = self.config.crawl.max_pages
        try:
            return self.crawler.fetch_pages(source_id, max_pages=max_pages, token=token)
        except Cancelled:
            logger.info(f"Crawl of source {source_id} cancelled")
        except ScraperError as e:
            logger.error(f"Error fetching pages for source {source_id}: {e}")
        return 0

    def download_images_for_source(self, source_id: int, overwrite: Optional[bool] = None,
                                   token: Optional[CancelToken] = None) -> int:
        if overwrite is None:
            overwrite = self.config.download.overwrite
        try:
            return self.scheduler.download_images(
                source_id, self.config.data_dir, overwrite=overwrite, token=token,
            )
        except Cancelled:
            logger.info(f"Download for source {source_id} cancelled")
        except (ScraperError, OSError) as e:
            logger.error(f"Error downloading images for source {source_id}: {e}")
        return 0

    def sync_source(self, source_id: int, max_pages: Optional[int] = None,
                    overwrite: Optional[bool] = None,
                    token: Optional[CancelToken] = None) -> Tuple[int, int]:
        """Crawl and download the same source side by side.

        Returns (records added, files written).
        """
        token = token or CancelToken()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="comic-sync") as pool:
            crawl = pool.submit(self._on_worker, self.fetch_pages_for_source,
                                source_id, max_pages, token)
            download = pool.submit(self._on_worker, self.download_images_for_source,
                                   source_id, overwrite, token)
            return crawl.result(), download.result()

    def _on_worker(self, operation, *args):
        # Catalog connections are per thread; release the worker's before it exits
        try:
            return operation(*args)
        finally:
            self.catalog.close()
