"""Client for the upstream partner mastering API.

The gateway only forwards: it adds the partner key, applies per-call timeouts
and hands the upstream status and body back untouched. Transport failures are
translated into APIError subclasses so the routes stay thin.
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from fastapi import Response
from loguru import logger

from masterlink.gateway.config import Settings
from masterlink.gateway.exceptions import (
    ConfigurationError,
    ProxyError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

REQUEST_ID_HEADERS = ("x-request-id", "x-amzn-requestid", "x-upstream-request-id")
PEEK_CHARS = 300


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    text: str
    content_type: str
    request_id: str | None = None

    @property
    def peek(self) -> str:
        return self.text if len(self.text) <= PEEK_CHARS else f"{self.text[:PEEK_CHARS]}…"

    def to_response(self, *, keep_content_type: bool = False) -> Response:
        """Pass the upstream status and body through; JSON unless `keep_content_type`."""
        headers = {"Cache-Control": "no-store"}
        if self.request_id:
            headers["x-upstream-request-id"] = self.request_id
        return Response(
            content=self.text or "{}",
            status_code=self.status_code or 502,
            media_type=self.content_type if keep_content_type else "application/json",
            headers=headers,
        )


def redact(value: Any) -> str:
    """Keep the first and last six characters of an identifier."""
    text = str(value or "")
    if len(text) <= 18:
        return "***"
    return f"{text[:6]}…{text[-6:]}"


def _to_upstream_response(response: httpx.Response) -> UpstreamResponse:
    request_id = next((response.headers[h] for h in REQUEST_ID_HEADERS if response.headers.get(h)), None)
    return UpstreamResponse(
        status_code=response.status_code,
        text=response.text,
        content_type=response.headers.get("content-type", "application/json"),
        request_id=request_id,
    )


class PartnerClient:
    """Forwards calls to `{parent_base_url}/api/b2b/mastering` with the partner key."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self._http = http
        self._settings = settings
        self._base = settings.parent_base_url

    def ensure_configured(self) -> None:
        if not self._settings.partner_api_key:
            raise ConfigurationError("Missing PARTNER_API_KEY/CM_API_KEY in server env")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        self.ensure_configured()
        return {"Accept": "application/json", "x-api-key": self._settings.partner_api_key, **(extra or {})}

    async def _forward(self, method: str, path: str, *, timeout: float, log_name: str, **kwargs: Any) -> UpstreamResponse:
        url = f"{self._base}/api/b2b/mastering{path}"
        try:
            response = await self._http.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"[{log_name}] upstream timeout after {timeout}s: {e!r}")
            raise UpstreamTimeoutError("Upstream timeout")
        except httpx.RequestError as e:
            logger.warning(f"[{log_name}] upstream connect error: {e!r}")
            raise UpstreamUnavailableError("Upstream connect error", detail=str(e) or repr(e), parentBase=self._base)

        upstream = _to_upstream_response(response)
        logger.info(f"[{log_name}] upstream status: {upstream.status_code}")
        if upstream.request_id:
            logger.info(f"[{log_name}] upstream request-id: {upstream.request_id}")
        logger.debug(f"[{log_name}] upstream body (peek): {upstream.peek}")
        return upstream

    async def ping(self) -> int:
        """HEAD the parent host's robots.txt to fail fast when it's unreachable."""
        try:
            response = await self._http.head(f"{self._base}/robots.txt", timeout=self._settings.status_timeout_seconds)
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError("Cannot reach parent host", detail=str(e) or repr(e), parentBase=self._base)
        logger.debug(f"ping {self._base}/robots.txt -> {response.status_code}")
        return response.status_code

    async def request_upload_url(self, file_name: str, file_type: str) -> UpstreamResponse:
        headers = self._headers()
        try:
            return await self._forward(
                "POST",
                "/upload-url",
                timeout=self._settings.upload_url_timeout_seconds,
                log_name="upload-url",
                headers=headers,
                json={"fileName": file_name, "fileType": file_type},
            )
        except UpstreamTimeoutError:
            # Signed URL requests report every transport failure the same way
            raise UpstreamUnavailableError("Upstream connect error", detail="timeout")

    async def submit_job(self, body: dict[str, Any], idempotency_key: str | None = None) -> UpstreamResponse:
        extra = {"idempotency-key": idempotency_key} if idempotency_key else {}
        headers = self._headers(extra)
        logger.info(
            f"[mastering] submit s3Key={redact(body.get('s3Key'))} ext={body.get('ext')} "
            f"size={body.get('size')} mode={body.get('mode')}"
        )
        await self.ping()
        try:
            return await self._forward(
                "POST",
                "",
                timeout=self._settings.submit_timeout_seconds,
                log_name="mastering",
                headers=headers,
                json=body,
            )
        except UpstreamTimeoutError:
            raise UpstreamUnavailableError("Upstream connect error", detail="timeout", parentBase=self._base)

    async def get_job_status(self, job_id: str, params: httpx.QueryParams | None = None) -> UpstreamResponse:
        return await self._forward(
            "GET",
            f"/{quote(job_id, safe='')}",
            timeout=self._settings.status_timeout_seconds,
            log_name="mastering/status",
            headers=self._headers(),
            params=params,
        )

    async def get_intensities(self, job_id: str, params: httpx.QueryParams | None = None) -> UpstreamResponse:
        headers = self._headers()
        try:
            return await self._forward(
                "GET",
                f"/{quote(job_id, safe='')}/audio",
                timeout=self._settings.status_timeout_seconds,
                log_name="mastering/audio",
                headers=headers,
                params=params,
            )
        except (UpstreamTimeoutError, UpstreamUnavailableError) as e:
            raise ProxyError(f"Proxy intensities error: {e.detail or e}")
