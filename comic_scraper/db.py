"""SQLite catalog of sources, crawled pages and their images.

Mutating helpers do not commit on their own; callers group them inside
``Catalog.transaction()`` so a whole batch lands or none of it does.
"""

import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from .errors import SourceNotFound
from .models import DownloadItem, Image, Page, Source, SourceInput

SOURCE_FIELDS = (
    "name", "author", "description", "url", "first_page_url",
    "selector_image", "selector_title", "selector_next",
)

_ITEM_QUERY = """
    SELECT i.id, i.idx AS image_idx, i.image_url, i.download_path,
           p.idx AS page_idx, p.page_url, p.title,
           (SELECT COUNT(*) FROM images g WHERE g.page_id = p.id) AS group_count
    FROM images i
    JOIN pages p ON p.id = i.page_id
    WHERE p.source_id = ? AND {condition}
    ORDER BY p.idx, i.idx
"""


class Catalog:
    def __init__(self, db_path: str = "comics.db", timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self._local = threading.local()
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA foreign_keys=ON")
        return self._local.conn

    def close(self):
        """Close the calling thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS sources (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                author TEXT DEFAULT '',
                description TEXT DEFAULT '',
                url TEXT DEFAULT '',
                first_page_url TEXT DEFAULT '',
                selector_image TEXT DEFAULT '',
                selector_title TEXT DEFAULT '',
                selector_next TEXT DEFAULT '',
                cover_image BLOB,
                page_count INTEGER DEFAULT 0,
                image_count INTEGER DEFAULT 0,
                downloaded_image_count INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS pages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
                idx INTEGER NOT NULL,
                title TEXT DEFAULT '',
                page_url TEXT NOT NULL,
                date_fetched TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(source_id, idx)
            );

            CREATE TABLE IF NOT EXISTS images (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                page_id INTEGER NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
                idx INTEGER NOT NULL,
                page_url TEXT NOT NULL,
                image_url TEXT NOT NULL,
                download_path TEXT DEFAULT '',
                date_downloaded TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_pages_source ON pages(source_id, idx);
            CREATE INDEX IF NOT EXISTS idx_images_page ON images(page_id, idx);
            CREATE INDEX IF NOT EXISTS idx_images_pair ON images(page_url, image_url);
        """)
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    # --- sources ---

    def create_source(self, data: SourceInput) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                f"INSERT INTO sources ({', '.join(SOURCE_FIELDS)}) VALUES ({', '.join('?' * len(SOURCE_FIELDS))})",
                tuple(getattr(data, f) for f in SOURCE_FIELDS),
            )
        return cur.lastrowid

    def update_source(self, source_id: int, data: SourceInput):
        assignments = ", ".join(f"{f} = ?" for f in SOURCE_FIELDS)
        with self.transaction() as conn:
            cur = conn.execute(
                f"UPDATE sources SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                tuple(getattr(data, f) for f in SOURCE_FIELDS) + (source_id,),
            )
        if cur.rowcount == 0:
            raise SourceNotFound(source_id)

    def delete_source(self, source_id: int):
        with self.transaction() as conn:
            conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))

    def get_source(self, source_id: int) -> Source:
        row = self._conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        if row is None:
            raise SourceNotFound(source_id)
        return _source_from_row(row)

    def list_sources(self) -> List[Source]:
        rows = self._conn.execute("SELECT * FROM sources ORDER BY id").fetchall()
        return [_source_from_row(r) for r in rows]

    def set_cover_if_missing(self, source_id: int, data: bytes) -> bool:
        cur = self._conn.execute(
            "UPDATE sources SET cover_image = ? WHERE id = ? AND cover_image IS NULL",
            (sqlite3.Binary(data), source_id),
        )
        return cur.rowcount > 0

    def bump_counters(self, source_id: int, pages: int = 0, images: int = 0, downloaded: int = 0):
        self._conn.execute(
            """UPDATE sources SET page_count = page_count + ?, image_count = image_count + ?,
               downloaded_image_count = MAX(0, downloaded_image_count + ?),
               updated_at = CURRENT_TIMESTAMP
               WHERE id = ?""",
            (pages, images, downloaded, source_id),
        )

    def recount(self, source_id: int) -> Tuple[int, int, int]:
        """Recompute the cached counters from the page/image rows."""
        row = self._conn.execute(
            """SELECT
                 (SELECT COUNT(*) FROM pages WHERE source_id = ?) AS pages,
                 (SELECT COUNT(*) FROM images i JOIN pages p ON p.id = i.page_id
                  WHERE p.source_id = ?) AS images,
                 (SELECT COUNT(*) FROM images i JOIN pages p ON p.id = i.page_id
                  WHERE p.source_id = ? AND i.download_path != '') AS downloaded""",
            (source_id, source_id, source_id),
        ).fetchone()
        counts = (row["pages"], row["images"], row["downloaded"])
        with self.transaction() as conn:
            conn.execute(
                """UPDATE sources SET page_count = ?, image_count = ?, downloaded_image_count = ?,
                   updated_at = CURRENT_TIMESTAMP WHERE id = ?""",
                counts + (source_id,),
            )
        return counts

    # --- pages ---

    def max_page_index(self, source_id: int) -> int:
        row = self._conn.execute(
            "SELECT COALESCE(MAX(idx), 0) AS m FROM pages WHERE source_id = ?", (source_id,)
        ).fetchone()
        return row["m"]

    def last_pages(self, source_id: int) -> Tuple[Optional[Page], Optional[Page]]:
        """Return the highest-indexed page and the one just below it."""
        rows = self._conn.execute(
            "SELECT * FROM pages WHERE source_id = ? ORDER BY idx DESC LIMIT 2", (source_id,)
        ).fetchall()
        pages = [_page_from_row(r) for r in rows]
        last = pages[0] if pages else None
        previous = pages[1] if len(pages) > 1 else None
        return last, previous

    def get_pages(self, source_id: int) -> List[Page]:
        pages = {}
        ordered = []
        for row in self._conn.execute(
            "SELECT * FROM pages WHERE source_id = ? ORDER BY idx", (source_id,)
        ):
            page = _page_from_row(row)
            pages[page.id] = page
            ordered.append(page)
        for row in self._conn.execute(
            """SELECT i.* FROM images i JOIN pages p ON p.id = i.page_id
               WHERE p.source_id = ? ORDER BY p.idx, i.idx""",
            (source_id,),
        ):
            pages[row["page_id"]].images.append(Image(
                id=row["id"], page_id=row["page_id"], index=row["idx"],
                page_url=row["page_url"], image_url=row["image_url"],
                download_path=row["download_path"] or "",
            ))
        return ordered

    def pair_keys_since(self, source_id: int, min_index: int) -> Set[Tuple[str, str]]:
        """(page_url, image_url) pairs of pages with idx >= min_index."""
        rows = self._conn.execute(
            """SELECT i.page_url, i.image_url FROM images i JOIN pages p ON p.id = i.page_id
               WHERE p.source_id = ? AND p.idx >= ?""",
            (source_id, min_index),
        ).fetchall()
        return {(r["page_url"], r["image_url"]) for r in rows}

    def insert_page(self, source_id: int, index: int, title: str, page_url: str) -> int:
        cur = self._conn.execute(
            "INSERT INTO pages (source_id, idx, title, page_url) VALUES (?, ?, ?, ?)",
            (source_id, index, title, page_url),
        )
        return cur.lastrowid

    def insert_image(self, page_id: int, index: int, page_url: str, image_url: str) -> int:
        cur = self._conn.execute(
            "INSERT INTO images (page_id, idx, page_url, image_url) VALUES (?, ?, ?, ?)",
            (page_id, index, page_url, image_url),
        )
        return cur.lastrowid

    # --- images / downloads ---

    def fresh_images(self, source_id: int) -> List[DownloadItem]:
        rows = self._conn.execute(
            _ITEM_QUERY.format(condition="(i.download_path IS NULL OR i.download_path = '')"),
            (source_id,),
        ).fetchall()
        return [_item_from_row(r) for r in rows]

    def downloaded_images(self, source_id: int, limit: int, offset: int = 0) -> List[DownloadItem]:
        rows = self._conn.execute(
            _ITEM_QUERY.format(condition="i.download_path != ''") + " LIMIT ? OFFSET ?",
            (source_id, limit, offset),
        ).fetchall()
        return [_item_from_row(r) for r in rows]

    def set_download_paths(self, updates: Iterable[Tuple[int, str]]):
        self._conn.executemany(
            """UPDATE images SET download_path = ?,
               date_downloaded = CASE WHEN ? != '' THEN CURRENT_TIMESTAMP ELSE NULL END
               WHERE id = ?""",
            [(path, path, image_id) for image_id, path in updates],
        )

    def rename_download_paths(self, source_id: int, old_prefix: str, new_prefix: str) -> int:
        rows = self._conn.execute(
            """SELECT i.id, i.download_path FROM images i JOIN pages p ON p.id = i.page_id
               WHERE p.source_id = ? AND i.download_path != ''""",
            (source_id,),
        ).fetchall()
        updates = [
            (new_prefix + r["download_path"][len(old_prefix):], r["id"])
            for r in rows if r["download_path"].startswith(old_prefix)
        ]
        with self.transaction() as conn:
            conn.executemany("UPDATE images SET download_path = ? WHERE id = ?", updates)
        return len(updates)

    def get_stats(self) -> List[Tuple]:
        rows = self._conn.execute(
            """SELECT name, page_count, image_count, downloaded_image_count
               FROM sources ORDER BY name"""
        ).fetchall()
        return [tuple(r) for r in rows]


def _source_from_row(row: sqlite3.Row) -> Source:
    cover = row["cover_image"]
    return Source(
        id=row["id"],
        cover_image=bytes(cover) if cover is not None else None,
        page_count=row["page_count"],
        image_count=row["image_count"],
        downloaded_image_count=row["downloaded_image_count"],
        **{f: row[f] or "" for f in SOURCE_FIELDS},
    )


def _page_from_row(row: sqlite3.Row) -> Page:
    return Page(
        id=row["id"], source_id=row["source_id"], index=row["idx"],
        title=row["title"] or "", page_url=row["page_url"],
    )


def _item_from_row(row: sqlite3.Row) -> DownloadItem:
    return DownloadItem(
        image_id=row["id"],
        page_index=row["page_idx"],
        image_index=row["image_idx"],
        page_url=row["page_url"],
        image_url=row["image_url"],
        title=row["title"] or "",
        group_count=row["group_count"],
        download_path=row["download_path"] or "",
    )
