"""Async client for the gateway endpoints, used by the mastering workflow."""

from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from masterlink.cdn.candidates import AUDIO_EXTENSIONS
from masterlink.contracts import IntensityReport, JobStatus, SubmitRequest, UploadTicket

UPLOAD_CHUNK_SIZE = 256 * 1024


class GatewayError(Exception):
    """Non-2xx answer from the gateway."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{message} ({status_code})")
        self.status_code = status_code
        self.message = message


@dataclass
class SubmitResult:
    status_code: int
    text: str
    payload: dict[str, Any] | None
    request_id: str | None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def accepted(self) -> bool:
        return self.status_code == 202

    @property
    def job_id(self) -> str | None:
        return (self.payload or {}).get("jobId") or None

    @property
    def error_message(self) -> str:
        payload = self.payload or {}
        return payload.get("details") or payload.get("error") or self.text or "Failed to trigger mastering"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Unknown error"
    if isinstance(body, dict):
        return str(body.get("details") or body.get("error") or body.get("detail") or body)
    return str(body)


class GatewayClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        probe_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # cf-probe waits for a full sequential CDN scan; unbounded unless probe_timeout is set
        self._probe_timeout = httpx.Timeout(probe_timeout)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request_upload_url(self, file_name: str, file_type: str) -> UploadTicket:
        response = await self._client.post("/api/upload-url", json={"fileName": file_name, "fileType": file_type})
        if response.is_error:
            raise GatewayError(response.status_code, f"Upload-URL failed: {_error_message(response)}")
        try:
            return UploadTicket.model_validate(response.json())
        except ValueError:
            raise GatewayError(response.status_code, "Upload-URL returned non-JSON")

    async def upload(
        self,
        ticket: UploadTicket,
        data: bytes,
        on_progress: Callable[[int], None] | None = None,
    ) -> None:
        """PUT `data` to the signed URL, reporting whole-percent progress."""
        total = len(data)

        async def body() -> AsyncIterator[bytes]:
            last_pct = -1
            for offset in range(0, total, UPLOAD_CHUNK_SIZE):
                chunk = data[offset : offset + UPLOAD_CHUNK_SIZE]
                yield chunk
                pct = round((offset + len(chunk)) * 100 / total)
                if on_progress and pct != last_pct:
                    last_pct = pct
                    on_progress(pct)

        # Signed URLs reject chunked transfer encoding, so send an explicit length
        headers = {**ticket.headers, "Content-Length": str(total)}
        try:
            response = await self._client.put(ticket.upload_url, content=body(), headers=headers)
        except httpx.HTTPError as e:
            raise GatewayError(0, f"Storage upload failed: {e}")
        if response.is_error:
            raise GatewayError(response.status_code, f"Storage upload failed: {response.text[:300]}")

    async def submit(self, request: SubmitRequest, idempotency_key: str) -> SubmitResult:
        """Submit a mastering job. Never raises on HTTP status, the caller decides."""
        response = await self._client.post(
            "/api/mastering",
            json=request.model_dump(mode="json", by_alias=True),
            headers={"Accept": "application/json", "Idempotency-Key": idempotency_key},
        )
        try:
            payload = response.json() if response.text else None
        except ValueError:
            payload = None
        request_id = response.headers.get("x-upstream-request-id") or response.headers.get("x-request-id")
        return SubmitResult(
            status_code=response.status_code,
            text=response.text,
            payload=payload if isinstance(payload, dict) else None,
            request_id=request_id,
        )

    async def job_status(self, job_id: str) -> JobStatus:
        response = await self._client.get(f"/api/mastering/{quote(job_id, safe='')}")
        if response.is_error:
            raise GatewayError(response.status_code, _error_message(response))
        return JobStatus.model_validate(response.json())

    async def intensities(self, job_id: str) -> IntensityReport:
        response = await self._client.get(
            f"/api/mastering/{quote(job_id, safe='')}/audio", params={"intensity": "all"}
        )
        if response.is_error:
            raise GatewayError(response.status_code, _error_message(response))
        return IntensityReport.model_validate(response.json())

    async def cf_probe(self, storage_key: str, extensions: Sequence[str] = AUDIO_EXTENSIONS) -> list[str]:
        """URLs the gateway found on the CDN for `storage_key`; empty when nothing is there yet."""
        response = await self._client.get(
            "/api/cf-probe",
            params={"key": storage_key, "ext": ",".join(extensions)},
            timeout=self._probe_timeout,
        )
        if response.is_error:
            logger.debug(f"cf-probe returned {response.status_code}: {response.text[:200]}")
            return []
        data = response.json()
        if not data.get("mastered"):
            return []
        return [url for url in data.get("urls") or [] if url]
