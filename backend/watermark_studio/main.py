from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from watermark_studio.api.routes import router
from watermark_studio.core.errors import GalleryError, InputError
from watermark_studio.core.log import configure_logging, mask_secret
from watermark_studio.core.settings import Settings, ensure_directories, get_settings, settings as default_settings
from watermark_studio.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)


def create_app(config: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the application.

    ``config`` replaces the environment-derived settings and ``transport``
    is handed to the shared HTTP client; both exist so tests can run the
    app without touching the network.
    """
    config = config or default_settings
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_directories(config)
        app.state.http_client = httpx.AsyncClient(timeout=config.provider_timeout_s, transport=transport)
        app.state.progress_store = ProgressStore(max_entries=config.session_max_entries, ttl_s=config.session_ttl_s)
        logger.info(
            "%s started: provider=%s demo=%s key=%s",
            config.app_name,
            config.provider.value,
            config.demo_active,
            mask_secret(config.api_key) or "none",
        )
        try:
            yield
        finally:
            await app.state.http_client.aclose()

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.dependency_overrides[get_settings] = lambda: config
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Malformed request"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=config.uploads_dir, check_dir=False), name="uploads")

    @app.get("/health")
    def health():
        return {"ok": True, "service": config.app_name}

    return app


app = create_app()
