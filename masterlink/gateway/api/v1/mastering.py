from typing import Any

import httpx
from fastapi import APIRouter, Header, Request, Response
from loguru import logger

from masterlink.gateway.deps import PartnerClientDep
from masterlink.gateway.exceptions import BadRequestError

router = APIRouter(prefix="/api/mastering", tags=["mastering"])


async def read_json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise BadRequestError("Invalid JSON body", detail=str(e))
    if not isinstance(body, dict):
        raise BadRequestError("Invalid JSON body", detail="expected a JSON object")
    return body


def _normalize_size(body: dict[str, Any]) -> dict[str, Any]:
    size = body.get("size")
    if isinstance(size, str):
        try:
            body["size"] = float(size) if "." in size else int(size)
        except ValueError:
            pass  # upstream validates
    return body


@router.post("")
async def submit_mastering(
    request: Request,
    partner: PartnerClientDep,
    idempotency_key: str | None = Header(default=None, alias="idempotency-key"),
) -> Response:
    """Enqueue a mastering job; the upstream status is passed through as-is."""
    partner.ensure_configured()
    body = _normalize_size(await read_json_body(request))
    upstream = await partner.submit_job(body, idempotency_key=idempotency_key)
    if upstream.status_code >= 400:
        logger.warning(f"Mastering submit rejected upstream ({upstream.status_code}): {upstream.peek}")
    return upstream.to_response()


@router.get("/{job_id}")
async def get_job_status(job_id: str, request: Request, partner: PartnerClientDep) -> Response:
    """Current status of a mastering job."""
    logger.debug(f"Status poll for job {job_id}")
    upstream = await partner.get_job_status(job_id, params=httpx.QueryParams(request.url.query))
    return upstream.to_response()


@router.get("/{job_id}/audio")
async def get_job_audio(job_id: str, request: Request, partner: PartnerClientDep) -> Response:
    """Intensity URLs of a job; pass `?intensity=all` for every level."""
    upstream = await partner.get_intensities(job_id, params=httpx.QueryParams(request.url.query))
    return upstream.to_response()
