from collections.abc import Callable

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from masterlink.gateway import create_app
from masterlink.gateway.config import Settings
from masterlink.gateway.deps import get_http_client

PARENT = "https://parent.example.com"
CDN = "d123.cloudfront.net"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Records outbound requests and answers them with `handler`."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Handler = lambda request: httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def last(self, path_suffix: str) -> httpx.Request:
        return next(r for r in reversed(self.requests) if r.url.path.endswith(path_suffix))


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        parent_base_url=f"{PARENT}/",
        partner_api_key="pk_test_1234567890abcdef",
        cdn_url=CDN,
        cors_origins=["*"],
    )


@pytest_asyncio.fixture
async def app(settings, upstream) -> FastAPI:
    app = create_app(settings)
    outbound = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_http_client] = lambda: outbound

    async with app.router.lifespan_context(app):
        yield app

    await outbound.aclose()


@pytest_asyncio.fixture
async def client(app) -> httpx.AsyncClient:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
