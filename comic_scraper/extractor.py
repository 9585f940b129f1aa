"""Selector-driven extraction of a page title, image URLs and the next link.

Selectors are plain CSS, matched with BeautifulSoup/soupsieve. An empty or
invalid selector yields an empty result rather than an error.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger("comic_scraper")


@dataclass
class Selectors:
    title: str = ""
    image: str = ""
    next: str = ""


@dataclass
class PageExtraction:
    title: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    next_url: Optional[str] = None


def parse_document(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup, "html.parser")


def resolve_url(value: str, base_url: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    resolved = urljoin(base_url, value)
    return resolved or None


def _select(soup: BeautifulSoup, selector: str) -> List[Tag]:
    selector = (selector or "").strip()
    if not selector:
        return []
    try:
        return soup.select(selector)
    except (SelectorSyntaxError, ValueError, NotImplementedError) as e:
        logger.debug(f"Selector {selector!r} could not be applied: {e}")
        return []


def _select_first(soup: BeautifulSoup, selector: str) -> Optional[Tag]:
    matches = _select(soup, selector)
    return matches[0] if matches else None


def parse_srcset(srcset: str) -> List[Tuple[int, str]]:
    """Split ``srcset`` into (width, url) pairs; non-``w`` descriptors count as 0."""
    candidates = []
    for item in srcset.split(","):
        parts = item.strip().split()
        if not parts:
            continue
        url, last = parts[0], parts[-1]
        width = 0
        if last.endswith("w"):
            try:
                width = int(last[:-1])
            except ValueError:
                width = 0
        candidates.append((width, url))
    return candidates


def _element_url(element: Tag) -> Optional[str]:
    srcset = element.get("srcset")
    if srcset:
        candidates = parse_srcset(srcset)
        if candidates:
            # max() keeps the first candidate on ties
            return max(candidates, key=lambda c: c[0])[1]
    src = element.get("src")
    if src:
        return src
    data_src = element.get("data-src")
    if data_src:
        return data_src
    return None


def extract_title(soup: BeautifulSoup, selector: str) -> Optional[str]:
    element = _select_first(soup, selector)
    if element is None:
        return None
    # get_text() has already decoded entities
    text = element.get_text().strip()
    return text or None


def extract_image_urls(soup: BeautifulSoup, selector: str, base_url: str) -> List[str]:
    urls = []
    seen = set()
    for element in _select(soup, selector):
        raw = _element_url(element)
        if not raw:
            continue
        resolved = resolve_url(raw, base_url)
        if not resolved or resolved in seen:
            continue
        seen.add(resolved)
        urls.append(resolved)
    return urls


def extract_next_url(soup: BeautifulSoup, selector: str, base_url: str) -> Optional[str]:
    element = _select_first(soup, selector)
    if element is None:
        return None
    href = element.get("href")
    if not href:
        return None
    return resolve_url(href, base_url)


def extract_page(markup: str, base_url: str, selectors: Selectors) -> PageExtraction:
    soup = parse_document(markup)
    return PageExtraction(
        title=extract_title(soup, selectors.title),
        image_urls=extract_image_urls(soup, selectors.image, base_url),
        next_url=extract_next_url(soup, selectors.next, base_url),
    )
