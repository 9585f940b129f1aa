"""HTML fetching with charset fallbacks and linear-backoff retries."""

import codecs
import logging
import time
from typing import List, Optional

import chardet

from .concurrency import CancelToken
from .errors import BadStatus, Cancelled, ParseError, ScraperError
from .http_client import HTTPClient
from .naming import decode_data_url

logger = logging.getLogger("comic_scraper")

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 200
MIN_DETECTION_CONFIDENCE = 0.5

# Tried last, in order, once the declared charset, UTF-8 and detection failed
LEGACY_ENCODINGS = ("cp1252", "ascii")


def _normalize_encoding(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    try:
        return codecs.lookup(name.strip()).name
    except LookupError:
        return None


def decode_html(content: bytes, declared: Optional[str] = None) -> str:
    """Decode a body: declared charset, UTF-8, chardet guess, then legacy codecs."""
    candidates: List[str] = []
    declared = _normalize_encoding(declared)
    if declared:
        candidates.append(declared)
    candidates.append("utf-8")

    for encoding in candidates:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue

    detected = chardet.detect(content) or {}
    guess = _normalize_encoding(detected.get("encoding"))
    if guess and (detected.get("confidence") or 0) >= MIN_DETECTION_CONFIDENCE:
        try:
            return content.decode(guess)
        except UnicodeDecodeError:
            logger.debug(f"Detected encoding {guess} failed to decode body")

    for encoding in LEGACY_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise ParseError(f"Could not decode {len(content)} bytes of HTML")


def fetch_html_once(client: HTTPClient, url: str, referer: Optional[str] = None,
                    token: Optional[CancelToken] = None) -> str:
    resp = client.get(url, referer=referer, token=token)
    if not resp.ok:
        raise BadStatus(resp.status)
    return decode_html(resp.content, resp.charset)


def fetch_html(client: HTTPClient, url: str, referer: Optional[str] = None,
               token: Optional[CancelToken] = None, attempts: int = DEFAULT_ATTEMPTS,
               backoff_ms: int = DEFAULT_BACKOFF_MS) -> str:
    """GET ``url`` as text, retrying with ``backoff_ms * attempt`` pauses.

    Cancellation is never retried and interrupts a pending back-off.
    """
    attempts = max(1, attempts)
    last_error: Optional[ScraperError] = None

    for attempt in range(1, attempts + 1):
        if token is not None:
            token.raise_if_cancelled()
        try:
            return fetch_html_once(client, url, referer, token)
        except Cancelled:
            raise
        except ScraperError as e:
            last_error = e
            if attempt == attempts:
                break
            wait = backoff_ms * attempt / 1000.0
            logger.warning(f"Retry {attempt}/{attempts} for {url}: {e} (wait {wait:.1f}s)")
            if token is not None:
                if token.wait(wait):
                    raise Cancelled()
            elif wait > 0:
                time.sleep(wait)

    raise last_error


def fetch_bytes(client: HTTPClient, url: str, referer: Optional[str] = None,
                token: Optional[CancelToken] = None) -> bytes:
    """Raw body of ``url``; ``data:`` URLs are decoded locally."""
    if url.startswith("data:"):
        decoded = decode_data_url(url)
        if decoded is None:
            raise ParseError(f"Malformed data URL ({len(url)} chars)")
        return decoded[1]
    resp = client.get(url, referer=referer, token=token)
    if not resp.ok:
        raise BadStatus(resp.status)
    return resp.content
