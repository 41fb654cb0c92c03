from typing import Annotated

import httpx
from fastapi import Depends, Request

from masterlink.gateway.config import Settings, get_settings
from masterlink.gateway.partner import PartnerClient

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared outbound HTTP client from app state."""
    return request.app.state.http_client


HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]


def get_partner_client(settings: SettingsDep, http: HttpClient) -> PartnerClient:
    return PartnerClient(http, settings)


PartnerClientDep = Annotated[PartnerClient, Depends(get_partner_client)]
