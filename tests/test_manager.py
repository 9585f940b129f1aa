"""Tests for source-level operations."""

import dataclasses
import os
import threading

import pytest

from comic_scraper.concurrency import CancelToken
from comic_scraper.config import AppConfig, CrawlConfig, HTTPConfig
from comic_scraper.errors import SourceNotFound
from comic_scraper.manager import SourceManager
from comic_scraper.models import SourceInput

from .conftest import BASE, comic_page


def _chain(site, count):
    for n in range(1, count + 1):
        next_href = f"/{n + 1}" if n < count else None
        site.html(f"{BASE}/{n}", comic_page(f"Page {n}", [f"/img/{n}.png"], next_href))
        site.image(f"{BASE}/img/{n}.png")


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        data_dir=str(tmp_path / "data"),
        db_path=str(tmp_path / "comics.db"),
        log_dir=str(tmp_path / "logs"),
        http=HTTPConfig(rate_limit_ms=0, fetch_attempts=1, retry_backoff_ms=0),
        crawl=CrawlConfig(),
    )


@pytest.fixture
def manager(config, catalog, client, gate):
    return SourceManager(config, catalog, client, gate)


def _folder(config, name):
    return os.path.abspath(os.path.join(config.data_dir, name))


class TestSourceRecords:
    def test_add_and_edit(self, manager, catalog) -> None:
        source_id = manager.add_source(SourceInput(name="Test Comic", url=BASE))
        source = catalog.get_source(source_id)
        assert (source.name, source.url, source.page_count) == ("Test Comic", BASE, 0)

        manager.edit_source(source_id, _input(source, selector_next="a[rel=next]"))
        assert catalog.get_source(source_id).selector_next == "a[rel=next]"

    def test_edit_unknown_source(self, manager, catalog, make_source) -> None:
        source = catalog.get_source(make_source())
        with pytest.raises(SourceNotFound):
            manager.edit_source(999, _input(source))

    def test_rename_moves_folder_and_paths(self, manager, config, catalog, site,
                                           make_source) -> None:
        _chain(site, 2)
        source_id = make_source()
        manager.fetch_pages_for_source(source_id)
        assert manager.download_images_for_source(source_id) == 2

        manager.edit_source(source_id, _input(catalog.get_source(source_id), name="Renamed"))

        assert not os.path.exists(_folder(config, "Test Comic"))
        paths = [i.download_path for p in catalog.get_pages(source_id) for i in p.images]
        assert paths == [os.path.join(_folder(config, "Renamed"), n)
                         for n in ("00001 Page 1.png", "00002 Page 2.png")]
        assert all(os.path.isfile(p) for p in paths)
        # Nothing left to download after the move
        assert manager.download_images_for_source(source_id) == 0

    def test_delete_with_files(self, manager, config, catalog, site, make_source) -> None:
        _chain(site, 1)
        source_id = make_source()
        manager.fetch_pages_for_source(source_id)
        manager.download_images_for_source(source_id)
        assert os.path.isdir(_folder(config, "Test Comic"))

        manager.delete_source(source_id, delete_files=True)

        assert not os.path.exists(_folder(config, "Test Comic"))
        with pytest.raises(SourceNotFound):
            catalog.get_source(source_id)
        assert catalog.get_pages(source_id) == []

    def test_delete_keeps_files_by_default(self, manager, config, site, make_source) -> None:
        _chain(site, 1)
        source_id = make_source()
        manager.fetch_pages_for_source(source_id)
        manager.download_images_for_source(source_id)

        manager.delete_source(source_id)
        assert os.path.isdir(_folder(config, "Test Comic"))

    def test_unnamable_source_cannot_delete_other_folders(self, manager, config,
                                                           make_source) -> None:
        """A name that sanitises to nothing gets its own folder, not the data root."""
        other = os.path.join(_folder(config, "Other Comic"), "00001.png")
        os.makedirs(os.path.dirname(other))
        open(other, "wb").close()
        own = _folder(config, "Untitled")
        os.makedirs(own)

        for name in ("???", "..", "."):
            source_id = make_source(name=name)
            manager.delete_source(source_id, delete_files=True)
            os.makedirs(own, exist_ok=True)

        assert os.path.isfile(other)

    def test_unnamable_source_folder_is_deleted(self, manager, config, make_source) -> None:
        source_id = make_source(name="<>")
        own = _folder(config, "Untitled")
        os.makedirs(own)

        assert manager.delete_download_folder(source_id) is True
        assert not os.path.exists(own)
        assert os.path.isdir(config.data_dir)

    def test_delete_refuses_folder_outside_data_dir(self, manager, config, make_source,
                                                    monkeypatch) -> None:
        os.makedirs(config.data_dir)
        monkeypatch.setattr("comic_scraper.manager.source_folder",
                            lambda source, root: root)

        assert manager.delete_download_folder(make_source()) is False
        assert os.path.isdir(config.data_dir)

    def test_rename_from_unnamable_name(self, manager, config, catalog, site,
                                        make_source) -> None:
        _chain(site, 1)
        source_id = make_source(name="???")
        manager.fetch_pages_for_source(source_id)
        manager.download_images_for_source(source_id)
        assert os.listdir(config.data_dir) == ["Untitled"]

        manager.edit_source(source_id, _input(catalog.get_source(source_id), name="Named"))

        assert os.listdir(config.data_dir) == ["Named"]
        assert manager.download_images_for_source(source_id) == 0

    def test_delete_folder_when_absent(self, manager, make_source) -> None:
        assert manager.delete_download_folder(make_source()) is False

    def test_refresh_counters(self, manager, catalog, site, make_source) -> None:
        _chain(site, 2)
        source_id = make_source()
        manager.fetch_pages_for_source(source_id)
        with catalog.transaction():
            catalog.bump_counters(source_id, pages=10, images=10, downloaded=5)

        assert manager.refresh_counters(source_id) == (2, 2, 0)
        source = catalog.get_source(source_id)
        assert (source.page_count, source.image_count, source.downloaded_image_count) == (2, 2, 0)


class TestProfiles:
    def test_export_then_import_creates_copy(self, manager, catalog, make_source) -> None:
        source_id = make_source()
        copy_id = manager.import_profile(manager.export_profile(source_id))

        original, copy = catalog.get_source(source_id), catalog.get_source(copy_id)
        assert copy_id != source_id
        assert _input(copy) == _input(original)


class TestBackgroundOperations:
    def test_fetch_errors_are_logged_not_raised(self, manager, make_source) -> None:
        source_id = make_source(selector_image="")
        assert manager.fetch_pages_for_source(source_id) == 0

    def test_cancelled_fetch_is_swallowed(self, manager, site, make_source) -> None:
        _chain(site, 2)
        token = CancelToken()
        token.cancel()
        assert manager.fetch_pages_for_source(make_source(), token=token) == 0

    def test_cancelled_download_is_swallowed(self, manager, site, make_source) -> None:
        _chain(site, 1)
        source_id = make_source()
        manager.fetch_pages_for_source(source_id)
        token = CancelToken()
        token.cancel()
        assert manager.download_images_for_source(source_id, token=token) == 0

    def test_max_pages_from_config(self, config, catalog, client, gate, site,
                                   make_source) -> None:
        _chain(site, 4)
        config.crawl.max_pages = 3
        manager = SourceManager(config, catalog, client, gate)

        assert manager.fetch_pages_for_source(make_source()) == 3

    def test_sync_crawls_and_downloads(self, manager, catalog, site, make_source) -> None:
        _chain(site, 3)
        source_id = make_source()

        added, _ = manager.sync_source(source_id)
        manager.download_images_for_source(source_id)

        assert added == 3
        source = catalog.get_source(source_id)
        assert (source.page_count, source.image_count, source.downloaded_image_count) == (3, 3, 3)
        assert not manager.gate.paused

    def test_sync_closes_worker_connections(self, manager, catalog, site, make_source,
                                            monkeypatch) -> None:
        _chain(site, 2)
        source_id = make_source()
        closed_on = []
        real_close = catalog.close

        def spy():
            closed_on.append(threading.current_thread())
            real_close()

        monkeypatch.setattr(catalog, "close", spy)
        manager.sync_source(source_id)

        assert len(closed_on) == 2
        assert threading.main_thread() not in closed_on
        # The calling thread's connection is still usable
        assert catalog.get_source(source_id).page_count == 2


def _input(source, **changes):
    values = {f.name: getattr(source, f.name) for f in dataclasses.fields(SourceInput)}
    values.update(changes)
    return SourceInput(**values)
