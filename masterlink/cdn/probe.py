"""Existence checks of candidate render paths against the CDN origin."""

import asyncio
from collections.abc import Sequence

import httpx
from loguru import logger

from masterlink.cdn.candidates import generate_candidates, join_url, sort_by_variant

PROBE_TIMEOUT_SECONDS = 8.0
PROBE_MAX_HITS = 3

# First two bytes only, the body is never read
PROBE_HEADERS = {"Range": "bytes=0-1", "Cache-Control": "no-cache"}


async def exists(client: httpx.AsyncClient, url: str, timeout: float = PROBE_TIMEOUT_SECONDS) -> bool:
    """True if the CDN answers 200 or 206 for `url` within `timeout` seconds.

    Network errors, non-success statuses and timeouts all count as "not there
    yet"; nothing is raised to the caller.
    """
    try:
        async with asyncio.timeout(timeout):
            async with client.stream("GET", url, headers=PROBE_HEADERS) as response:
                return response.status_code in (200, 206)
    except TimeoutError:
        logger.debug(f"Probe timed out after {timeout}s: {url}")
        return False
    except Exception as e:
        logger.debug(f"Probe failed for {url}: {e}")
        return False


async def probe_candidates(
    client: httpx.AsyncClient,
    cdn_host: str,
    storage_key: str,
    extensions: Sequence[str],
    max_hits: int = PROBE_MAX_HITS,
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> list[str]:
    """Probe candidates one at a time and return the found URLs, lowest variant first.

    Candidates are checked sequentially in generator order to keep the load on
    the origin down; probing stops after `max_hits` matches.
    """
    candidates = generate_candidates(storage_key, extensions)
    found: list[str] = []
    for rel in candidates:
        url = join_url(cdn_host, rel)
        if await exists(client, url, timeout=timeout):
            found.append(url)
            if len(found) >= max_hits:
                break

    logger.info(f"Probed {storage_key!r}: {len(found)} hit(s) across {len(candidates)} candidate(s)")
    return sort_by_variant(found)
