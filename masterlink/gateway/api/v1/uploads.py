from fastapi import APIRouter, Request, Response

from masterlink.gateway.api.v1.mastering import read_json_body
from masterlink.gateway.deps import PartnerClientDep
from masterlink.gateway.exceptions import BadRequestError

router = APIRouter(prefix="/api", tags=["uploads"])


@router.post("/upload-url")
async def request_upload_url(request: Request, partner: PartnerClientDep) -> Response:
    """Ask the partner API for a signed upload URL for `fileName`."""
    body = await read_json_body(request)
    file_name = str(body.get("fileName") or "").strip()
    file_type = str(body.get("fileType") or "audio/wav").strip()
    if not file_name:
        raise BadRequestError("Missing fileName")

    upstream = await partner.request_upload_url(file_name, file_type)
    return upstream.to_response(keep_content_type=True)
