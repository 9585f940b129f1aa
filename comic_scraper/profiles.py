"""Export/import of a source's settings as a portable JSON profile."""

import json
from typing import Union

from .errors import ProfileError
from .models import Source, SourceInput

PROFILE_VERSION = 1

# JSON key -> SourceInput attribute
PROFILE_FIELDS = {
    "name": "name",
    "author": "author",
    "descriptionText": "description",
    "url": "url",
    "firstPageURL": "first_page_url",
    "selectorImage": "selector_image",
    "selectorTitle": "selector_title",
    "selectorNext": "selector_next",
}
REQUIRED_KEYS = ("version",) + tuple(PROFILE_FIELDS)


def profile_dict(source: Union[Source, SourceInput]) -> dict:
    data = {key: getattr(source, attr) for key, attr in PROFILE_FIELDS.items()}
    data["version"] = PROFILE_VERSION
    return data


def export_profile(source: Union[Source, SourceInput]) -> str:
    return json.dumps(profile_dict(source), indent=2, sort_keys=True, ensure_ascii=False)


def import_profile(document: Union[str, bytes]) -> SourceInput:
    if isinstance(document, bytes):
        try:
            document = document.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProfileError(f"Profile is not valid UTF-8: {e}") from e
    try:
        raw = json.loads(document)
    except json.JSONDecodeError as e:
        raise ProfileError(f"Profile is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ProfileError("Profile root must be a JSON object")
    missing = [key for key in REQUIRED_KEYS if key not in raw]
    if missing:
        raise ProfileError(f"Profile is missing required keys: {', '.join(missing)}")

    values = {}
    for key, attr in PROFILE_FIELDS.items():
        value = raw[key]
        if not isinstance(value, str):
            raise ProfileError(f"Profile key {key!r} must be a string")
        values[attr] = value
    return SourceInput(**values)
