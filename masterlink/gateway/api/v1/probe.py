from fastapi import APIRouter, Query

from masterlink.cdn.candidates import parse_extensions
from masterlink.cdn.probe import probe_candidates
from masterlink.contracts import ProbeResponse
from masterlink.gateway.deps import HttpClient, SettingsDep
from masterlink.gateway.exceptions import BadRequestError, ConfigurationError

router = APIRouter(prefix="/api", tags=["probe"])


@router.get("/cf-probe")
async def cf_probe(
    settings: SettingsDep,
    http: HttpClient,
    key: str | None = Query(None, description="Storage key of the uploaded source"),
    ext: str | None = Query(None, description="Comma separated extensions to try, in order"),
) -> ProbeResponse:
    """Guess where the mastered renders of `key` landed and check them on the CDN."""
    if not settings.cdn_url:
        raise ConfigurationError("Missing MASTERING_CLOUDFRONT_URL")
    if not key:
        raise BadRequestError("Missing key")

    urls = await probe_candidates(
        http,
        settings.cdn_url,
        key,
        parse_extensions(ext, default=settings.probe_default_extensions),
        max_hits=settings.probe_max_hits,
        timeout=settings.probe_timeout_seconds,
    )
    return ProbeResponse(success=True, mastered=bool(urls), urls=urls)
