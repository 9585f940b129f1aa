"""HTTP transport: GET, HEAD and download-to-temp over a shared httpx client.

Every request carries the configured User-Agent and, when given, a Referer.
Non-2xx responses are returned as-is; callers decide what a status means.
Transport failures surface as ``NetworkError`` and a cancelled token as
``Cancelled``.
"""

import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import httpx

from .concurrency import CancelToken
from .config import DEFAULT_USER_AGENT
from .errors import Cancelled, NetworkError

logger = logging.getLogger("comic_scraper")

CHUNK_SIZE = 65536


@dataclass
class HTTPResponse:
    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes = b""
    charset: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")


class RateLimiter:
    """Minimum interval between two requests to the same host."""

    def __init__(self, min_interval: float):
        self.min_interval = max(0.0, float(min_interval))
        self._lock = threading.Lock()
        self._next_slot: Dict[str, float] = {}

    def acquire(self, url: str, token: Optional[CancelToken] = None):
        if self.min_interval <= 0:
            return
        host = urlparse(url).hostname
        if not host:
            return
        # Reserve a slot under the lock, sleep outside it
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot.get(host, 0.0))
            self._next_slot[host] = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            if token is not None:
                if token.wait(delay):
                    raise Cancelled()
            else:
                time.sleep(delay)


class HTTPClient:
    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, timeout: float = 30.0,
                 rate_limit_ms: int = 250, transport: Optional[httpx.BaseTransport] = None,
                 max_connections: int = 32):
        self.user_agent = user_agent
        self.timeout = timeout
        self.transport = transport
        self.max_connections = max_connections
        self.rate_limiter = RateLimiter(rate_limit_ms / 1000.0)
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 30)),
                    follow_redirects=True,
                    headers={"User-Agent": self.user_agent},
                    limits=httpx.Limits(max_connections=self.max_connections),
                    transport=self.transport,
                )
            return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def _headers(self, referer: Optional[str]) -> dict:
        return {"Referer": referer} if referer else {}

    def _before_request(self, url: str, token: Optional[CancelToken]):
        if token is not None:
            token.raise_if_cancelled()
        self.rate_limiter.acquire(url, token)
        if token is not None:
            token.raise_if_cancelled()

    def get(self, url: str, referer: Optional[str] = None,
            token: Optional[CancelToken] = None) -> HTTPResponse:
        self._before_request(url, token)
        try:
            resp = self.client.get(url, headers=self._headers(referer))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(e) from e
        return HTTPResponse(
            status=resp.status_code,
            headers=resp.headers,
            content=resp.content,
            charset=resp.charset_encoding,
        )

    def head(self, url: str, referer: Optional[str] = None,
             token: Optional[CancelToken] = None) -> HTTPResponse:
        self._before_request(url, token)
        try:
            resp = self.client.head(url, headers=self._headers(referer))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(e) from e
        return HTTPResponse(status=resp.status_code, headers=resp.headers,
                            charset=resp.charset_encoding)

    def download_to_temp(self, url: str, referer: Optional[str] = None,
                         token: Optional[CancelToken] = None,
                         directory: Optional[str] = None) -> Tuple[str, HTTPResponse]:
        """Stream the body into a temp file and return (temp_path, response).

        The temp file is created in ``directory`` when given so the caller can
        move it into place with an atomic rename. The caller owns the file.
        """
        self._before_request(url, token)
        fd, temp_path = tempfile.mkstemp(prefix=".comic-", suffix=".part", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                with self.client.stream("GET", url, headers=self._headers(referer)) as resp:
                    for chunk in resp.iter_bytes(chunk_size=CHUNK_SIZE):
                        if token is not None and token.cancelled:
                            raise Cancelled()
                        f.write(chunk)
                    result = HTTPResponse(status=resp.status_code, headers=resp.headers,
                                          charset=resp.charset_encoding)
        except BaseException as e:
            _remove_quietly(temp_path)
            if isinstance(e, (httpx.HTTPError, httpx.InvalidURL)):
                raise NetworkError(e) from e
            raise
        logger.debug(f"Downloaded {url} -> {temp_path} (HTTP {result.status})")
        return temp_path, result


def _remove_quietly(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
