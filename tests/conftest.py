"""Pytest configuration and fixtures for comic_scraper tests.

Provides a temporary catalog, a fake comic site served through
httpx.MockTransport, and a client wired to it.
"""

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from comic_scraper.concurrency import WriteGate
from comic_scraper.db import Catalog
from comic_scraper.http_client import HTTPClient
from comic_scraper.models import SourceInput

BASE = "https://comic.test"

# 1x1 transparent PNG
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06"
    b"\x00\x00\x00\x1f\x15\xc4\x89\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01"
    b"\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)

Route = Union[Tuple[int, Dict[str, str], bytes], Callable[[httpx.Request], httpx.Response]]


def comic_page(title: str = "", images: Optional[List[str]] = None,
               next_href: Optional[str] = None) -> str:
    """Minimal comic page: <h1> title, images in #comic, a.next link."""
    imgs = "".join(f'<img src="{src}">' for src in (images or []))
    link = f'<a class="next" href="{next_href}">Next</a>' if next_href else ""
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<h1 class=\"title\">{title}</h1><div id=\"comic\">{imgs}</div>{link}"
        f"</body></html>"
    )


class FakeSite:
    """Routes URL -> canned response and records every request it sees."""

    def __init__(self):
        self.routes: Dict[str, Route] = {}
        self.requests: List[httpx.Request] = []
        self.delay = 0.0
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def html(self, url: str, markup: str, status: int = 200, charset: str = "utf-8"):
        self.routes[url] = (status, {"content-type": f"text/html; charset={charset}"},
                            markup.encode(charset))

    def image(self, url: str, data: bytes = PNG_BYTES, content_type: str = "image/png",
              status: int = 200):
        self.routes[url] = (status, {"content-type": content_type}, data)

    def requested(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            route = self.routes.get(str(request.url))
            if route is None:
                return httpx.Response(404, content=b"not found")
            if callable(route):
                return route(request)
            status, headers, body = route
            return httpx.Response(status, headers=headers, content=body)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def catalog(tmp_path):
    db = Catalog(str(tmp_path / "comics.db"))
    yield db
    db.close()


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def client(site):
    http = HTTPClient(rate_limit_ms=0, transport=httpx.MockTransport(site.handle))
    yield http
    http.close()


@pytest.fixture
def gate():
    return WriteGate()


@pytest.fixture
def make_source(catalog):
    """Factory creating a source whose selectors match comic_page()."""

    def _make(name: str = "Test Comic", first_page_url: str = f"{BASE}/1",
              **overrides) -> int:
        fields = dict(
            name=name,
            author="Someone",
            description="",
            url=BASE,
            first_page_url=first_page_url,
            selector_image="#comic img",
            selector_title="h1.title",
            selector_next="a.next",
        )
        fields.update(overrides)
        return catalog.create_source(SourceInput(**fields))

    return _make
