"""URL helpers for mastered renders: variants, extensions, download formats."""

import re
from collections.abc import Iterable

from masterlink.cdn.candidates import NO_VARIANT_RANK

VARIANT_COUNT = 5

_VARIANT_TAIL = re.compile(r"(?:/|_)v(\d+)\.(mp3|wav|m4a|flac)$", re.IGNORECASE)
_EXTENSION = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)
_AUDIO_EXTENSION = re.compile(r"\.(mp3|wav|m4a|flac)$", re.IGNORECASE)

# mp3 plays everywhere and loads fastest
_EXTENSION_PREFERENCE = {"mp3": 0, "m4a": 1, "wav": 2}


def build_variants_from(url: str) -> list[str]:
    """Expand `.../name_v3.mp3` (or `.../v3.mp3`) into all five `_vN` siblings."""
    match = _VARIANT_TAIL.search(url)
    if not match:
        return [url]
    ext = match.group(2)
    base = url[: match.start()]
    return [f"{base}_v{i}.{ext}" for i in range(1, VARIANT_COUNT + 1)]


def extract_extension(url: str | None) -> str | None:
    if not url:
        return None
    path = url.split("?", 1)[0]
    match = _EXTENSION.search(path)
    return match.group(1).lower() if match else None


def swap_extension(url: str | None, next_ext: str | None) -> str | None:
    if not url or not next_ext:
        return url
    normalized = next_ext.lower()
    path, sep, query = url.partition("?")
    current = extract_extension(path)
    if current is None or current == normalized:
        return url
    updated = _AUDIO_EXTENSION.sub(f".{normalized}", path)
    return f"{updated}{sep}{query}"


def download_formats(url: str | None) -> list[tuple[str, str]]:
    """(value, label) pairs offered for downloading `url`: its own format, plus WAV."""
    if not url:
        return []
    base = extract_extension(url) or "mp3"
    options = [(base, base.upper())]
    if base != "wav":
        options.append(("wav", "WAV"))
    return options


def variant_number(url: str) -> int:
    match = _VARIANT_TAIL.search(url)
    return int(match.group(1)) if match else NO_VARIANT_RANK


def rank_found_urls(urls: Iterable[str]) -> list[str]:
    """Order CDN hits for playback: preferred format, then variant, then shortest."""
    return sorted(
        urls,
        key=lambda u: (_EXTENSION_PREFERENCE.get(extract_extension(u) or "", 3), variant_number(u), len(u)),
    )
