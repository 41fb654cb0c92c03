from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from masterlink.gateway.api.v1 import routers as v1_routers
from masterlink.gateway.config import Settings, get_settings
from masterlink.gateway.exceptions import APIError
from masterlink.gateway.logging_config import (
    RequestContextMiddleware,
    api_error_handler,
    unhandled_exception_handler,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.dependency_overrides[get_settings]()
    assert isinstance(settings, Settings)

    # Per-call timeouts are set by the callers; this is only the fallback
    app.state.http_client = httpx.AsyncClient(timeout=settings.submit_timeout_seconds)

    yield

    await app.state.http_client.aclose()


def create_app(
    settings: Settings | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings()  # type: ignore

    app = FastAPI(
        title="Masterlink Gateway",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "x-api-key", "authorization", "idempotency-key"],
        expose_headers=["x-upstream-request-id"],
        max_age=86400,
    )
    app.add_exception_handler(APIError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for r in v1_routers:
        app.include_router(r)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
