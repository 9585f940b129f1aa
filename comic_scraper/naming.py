"""File naming, content-type to extension mapping and data: URL decoding."""

import base64
import binascii
import mimetypes
import os
import re
from typing import Optional, Tuple
from urllib.parse import unquote_to_bytes, urlparse

ILLEGAL_FILENAME_CHARS = re.compile(r'[/\\?%*|"<>:]')
INDEX_WIDTH = 5
DEFAULT_EXTENSION = "png"
UNTITLED_FOLDER = "Untitled"

# mimetypes differs across platforms and Python versions for these
PREFERRED_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
    "image/tiff": "tiff",
}


def sanitize_filename(name: str) -> str:
    """Strip characters that are illegal in file names and trim whitespace."""
    return ILLEGAL_FILENAME_CHARS.sub("", name).strip()


def folder_name(name: str) -> str:
    """Per-source folder name; never empty, ``.`` or ``..``."""
    cleaned = sanitize_filename(name).strip(". ")
    return cleaned or UNTITLED_FOLDER


def format_index(page_index: int, group_count: int = 1, sub_number: Optional[int] = None) -> str:
    """``00007`` for a single-image page, ``00007-2`` for the second of several."""
    formatted = str(page_index).zfill(INDEX_WIDTH)
    if group_count > 1:
        formatted += f"-{max(1, sub_number or 1)}"
    return formatted


def build_filename(page_index: int, title: str, ext: str,
                   group_count: int = 1, sub_number: Optional[int] = None) -> str:
    title_part = sanitize_filename(title or "")
    name = format_index(page_index, group_count, sub_number)
    if title_part:
        name += f" {title_part}"
    return f"{name}.{ext}"


def url_path_extension(url: str) -> str:
    path = urlparse(url).path
    return os.path.splitext(path)[1].lstrip(".")


def file_extension(content_type: Optional[str], url_extension: Optional[str],
                   fallback: str = DEFAULT_EXTENSION) -> str:
    """Pick an extension from the Content-Type, then the URL path, then the fallback."""
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in PREFERRED_EXTENSIONS:
            return PREFERRED_EXTENSIONS[mime]
        if mime and mime != "application/octet-stream":
            guessed = mimetypes.guess_extension(mime)
            if guessed:
                return guessed.lstrip(".")
    if url_extension:
        return url_extension
    return fallback


def decode_data_url(url: str) -> Optional[Tuple[str, bytes]]:
    """Decode ``data:[<mediatype>][;base64],<data>`` into (mediatype, payload)."""
    if not url.startswith("data:"):
        return None
    meta, sep, payload = url[5:].partition(",")
    if not sep:
        return None

    media_type = meta.split(";")[0].strip() or "application/octet-stream"
    if ";base64" in meta:
        try:
            return media_type, base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return None
    return media_type, unquote_to_bytes(payload)
