"""Candidate output paths for a mastered upload.

The mastering pipeline writes its renders next to (or below) the uploaded
source object, but the exact layout is not part of the partner API. Given the
storage key of the upload we enumerate the layouts seen in practice so the
prober can check which of them exist on the CDN.
"""

import re
from collections.abc import Iterable, Sequence
from urllib.parse import quote

# Same directory first, then the usual render folders
OUTPUT_FOLDERS = ("", "mastered", "master", "outputs", "render", "out", "final", "export")

# {F} = folder, {N} = base name, {E} = extension. Order is ranking order.
PATTERNS = (
    "{F}/{N}_v1.{E}",
    "{F}/{N}_v2.{E}",
    "{F}/{N}_v3.{E}",
    "{F}/{N}_v4.{E}",
    "{F}/{N}_v5.{E}",
    "{F}/{N}.{E}",
    "{F}/v1.{E}",
    "{F}/v2.{E}",
    "{F}/{N}/v1.{E}",
    "{F}/{N}/v2.{E}",
    "{F}/{N}/{N}_v1.{E}",
    "{F}/{N}/{N}.{E}",
)

AUDIO_EXTENSIONS = ("mp3", "wav", "m4a", "flac")
NO_VARIANT_RANK = 999

_DUPLICATE_SLASHES = re.compile(r"/{2,}")
_UNRESOLVED_TEMPLATE = re.compile(r"%7B|%7D|\{|\}", re.IGNORECASE)
_VARIANT_SUFFIX = re.compile(r"_v(\d+)\.(?:mp3|wav|m4a|flac)$", re.IGNORECASE)


def split_storage_key(storage_key: str) -> tuple[str, str, str]:
    """Split a storage key into (directory, base name, extension).

    The extension is whatever follows the last dot of the final path segment;
    dots inside directory names are left alone.
    """
    directory, _, filename = storage_key.rpartition("/")
    if "." in filename:
        name, _, ext = filename.rpartition(".")
    else:
        name, ext = filename, ""
    return directory.strip("/"), name, ext


def _folder_paths(directory: str) -> list[str]:
    folders = []
    for folder in OUTPUT_FOLDERS:
        if directory:
            path = f"{directory}/{folder}" if folder else directory
        else:
            path = folder
        folders.append(path.strip("/"))
    return folders


def normalize_path(path: str) -> str:
    return _DUPLICATE_SLASHES.sub("/", path).lstrip("/")


def generate_candidates(storage_key: str, extensions: Sequence[str]) -> list[str]:
    """Enumerate plausible relative paths of the mastered renders of `storage_key`.

    Folders iterate outermost, then extensions, then patterns, so candidates in
    the upload's own directory with the first extension rank first. The result
    is deduplicated keeping first-seen order.
    """
    directory, name, _ = split_storage_key(storage_key)

    candidates: dict[str, None] = {}
    for folder in _folder_paths(directory):
        for ext in extensions:
            for pattern in PATTERNS:
                rel = normalize_path(pattern.replace("{F}", folder).replace("{N}", name).replace("{E}", ext))
                if rel:
                    candidates.setdefault(rel, None)
    return list(candidates)


def parse_extensions(raw: str | None, default: Sequence[str] = AUDIO_EXTENSIONS) -> list[str]:
    """Parse a comma separated extension list (`"mp3, WAV"` -> `["mp3", "wav"]`)."""
    if not raw:
        return list(default)
    parsed = [part.strip().lower().lstrip(".") for part in raw.split(",")]
    return [ext for ext in parsed if ext] or list(default)


def join_url(host: str, path: str) -> str:
    """Absolute https URL for `path` on the CDN `host`; `/` stays unescaped."""
    bare_host = re.sub(r"^https?://", "", host.strip()).rstrip("/")
    rel = quote(str(path).lstrip("/"), safe="/!~*'()")
    return f"https://{bare_host}/{rel}"


def variant_rank(url: str) -> int:
    """Variant number from a `_v<N>.<ext>` suffix, or NO_VARIANT_RANK."""
    match = _VARIANT_SUFFIX.search(url)
    return int(match.group(1)) if match else NO_VARIANT_RANK


def sort_by_variant(urls: Iterable[str]) -> list[str]:
    # stable, so equal ranks keep discovery order
    return sorted(urls, key=variant_rank)


def sanitize_urls(urls: Iterable[str | None]) -> list[str]:
    """Drop empty and template-looking URLs, deduplicate keeping order."""
    seen: dict[str, None] = {}
    for url in urls:
        if not url or _UNRESOLVED_TEMPLATE.search(url):
            continue
        seen.setdefault(url, None)
    return list(seen)
