from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from watermark_studio.api.deps import (
    get_gallery_scraper,
    get_http_client,
    get_progress_store,
    get_resolver,
    get_scheduler,
    get_watermark_provider,
)
from watermark_studio.core.errors import GalleryError, InputError
from watermark_studio.core.log import mask_secret
from watermark_studio.core.settings import Settings, get_settings
from watermark_studio.schemas.contracts import (
    ConnectionTestResponse,
    ExtractGalleryRequest,
    ExtractGalleryResponse,
    ProcessResponse,
    ProgressSnapshot,
    ProviderKind,
    StatusResponse,
    ValidateKeyRequest,
    ValidateKeyResponse,
)
from watermark_studio.services.demo import DEMO_TASKS
from watermark_studio.services.gallery import GalleryScraper
from watermark_studio.services.image_providers import WatermarkProvider, get_provider, parse_provider_kind
from watermark_studio.services.progress_store import ProgressStore
from watermark_studio.services.resolver import ImageSourceResolver, UploadedImage
from watermark_studio.services.scheduler import BatchScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["api"])

MIN_KEY_LENGTH = 10


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_uploads(form, file_count: int) -> list[UploadedImage]:
    uploads = []
    for i in range(file_count):
        item = form.get(f"file_{i}")
        if not isinstance(item, UploadFile):
            continue
        uploads.append(
            UploadedImage(
                filename=item.filename or f"upload_{i}",
                data=await item.read(),
                content_type=item.content_type or "",
            )
        )
    return uploads


@router.post("/process", response_model=ProcessResponse, response_model_exclude_none=True)
async def process_images(
    request: Request,
    settings: Settings = Depends(get_settings),
    resolver: ImageSourceResolver = Depends(get_resolver),
    scheduler: BatchScheduler = Depends(get_scheduler),
):
    form = await request.form()
    session_id = str(form.get("sessionId") or "").strip()
    if not session_id:
        raise InputError("Session ID required")
    try:
        file_count = int(form.get("fileCount") or 0)
    except (TypeError, ValueError):
        raise InputError("fileCount must be an integer") from None
    if file_count < 0:
        raise InputError("fileCount must not be negative")
    if file_count > settings.max_upload_files:
        raise InputError(f"Too many files: at most {settings.max_upload_files} images per batch")

    if settings.demo_active:
        logger.info("Session %s: running in demo mode", session_id)
        results = await scheduler.run(session_id, DEMO_TASKS)
        return ProcessResponse(results=results, session_id=session_id, demo_mode=True)

    try:
        uploads = await _read_uploads(form, file_count)
        gallery_url = form.get("galleryUrl")
        tasks = await resolver.resolve(uploads, gallery_url if isinstance(gallery_url, str) else None)
        results = await scheduler.run(session_id, tasks)
    except (InputError, GalleryError) as exc:
        if exc.status_code == 400:
            raise
        logger.error("Session %s: %s", session_id, exc)
        return error_response(str(exc), 500)
    except Exception as exc:
        logger.exception("Session %s: processing error", session_id)
        return error_response(str(exc) or "Failed to process images", 500)
    return ProcessResponse(results=results, session_id=session_id)


@router.get("/process", response_model=ProgressSnapshot)
def get_progress(sessionId: Optional[str] = None, store: ProgressStore = Depends(get_progress_store)):
    if not sessionId:
        return error_response("Session ID required", 400)
    snapshot = store.get(sessionId)
    if snapshot is None:
        return error_response("Session not found", 404)
    return snapshot


@router.post("/extract-gallery", response_model=ExtractGalleryResponse)
async def extract_gallery(req: ExtractGalleryRequest, scraper: GalleryScraper = Depends(get_gallery_scraper)):
    try:
        images = await scraper.extract(req.gallery_url.strip())
    except GalleryError:
        raise
    except Exception as exc:
        logger.exception("Gallery extraction error")
        return error_response(str(exc) or "Failed to extract gallery", 500)
    return ExtractGalleryResponse(images=images)


@router.get("/status", response_model=StatusResponse)
def status(settings: Settings = Depends(get_settings)):
    key = settings.api_key
    valid_format = len(key) > MIN_KEY_LENGTH
    if settings.demo_mode:
        message = "Running in demo mode (DEMO_MODE=true)"
    elif key:
        hint = "(format looks correct)" if valid_format else "(please check format)"
        message = f"{settings.provider.value} API key configured {hint}"
    else:
        message = "No API key found - running in demo mode"
    return StatusResponse(
        demo_mode=settings.demo_active,
        api_configured=bool(key),
        api_key_format="valid" if valid_format else "invalid",
        provider="demo" if settings.demo_active else settings.provider.value,
        message=message,
        key_length=len(key),
        key_prefix=mask_secret(key) or None,
        storage_configured=bool(settings.blob_read_write_token or settings.public_base_url),
        sample_fallback_enabled=settings.sample_fallback_enabled,
    )


@router.post("/test-provider-connection", response_model=ConnectionTestResponse)
async def test_provider_connection(
    settings: Settings = Depends(get_settings),
    provider: WatermarkProvider = Depends(get_watermark_provider),
):
    if not settings.api_key:
        return error_response("No API key configured", 400)
    logger.info("Testing %s connection with key %s", provider.label, mask_secret(settings.api_key, 8))
    return await provider.test_connection()


@router.post("/validate-api-key", response_model=ValidateKeyResponse)
async def validate_api_key(req: ValidateKeyRequest, client: httpx.AsyncClient = Depends(get_http_client)):
    if not req.api_key:
        raise InputError("API key is required")
    kind = parse_provider_kind(req.provider)
    if kind is ProviderKind.CUSTOM and not req.endpoint:
        raise InputError("Custom endpoint URL is required")
    provider = get_provider(kind, req.api_key, client, req.endpoint or "")
    if await provider.validate_key():
        return ValidateKeyResponse(valid=True)
    return error_response("Invalid API key or service unavailable", 401)
