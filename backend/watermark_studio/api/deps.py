import httpx
from fastapi import Depends, Request

from watermark_studio.core.settings import Settings, get_settings
from watermark_studio.services.gallery import GalleryScraper
from watermark_studio.schemas.contracts import ProviderKind
from watermark_studio.services.image_providers import WatermarkProvider, get_provider
from watermark_studio.services.progress_store import ProgressStore
from watermark_studio.services.resolver import ImageSourceResolver
from watermark_studio.services.retry import RetryPolicy
from watermark_studio.services.scheduler import BatchScheduler
from watermark_studio.services.storage import build_storage


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_progress_store(request: Request) -> ProgressStore:
    return request.app.state.progress_store


def get_watermark_provider(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> WatermarkProvider:
    if settings.demo_active:
        return get_provider(ProviderKind.DEMO, "", client)
    return get_provider(settings.provider, settings.api_key, client, settings.provider_endpoint)


def get_gallery_scraper(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> GalleryScraper:
    return GalleryScraper(
        client,
        user_agent=settings.user_agent,
        timeout_s=settings.scraper_timeout_s,
        max_images=settings.gallery_max_images,
        use_browser=settings.scraper_use_browser,
    )


def get_resolver(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
    scraper: GalleryScraper = Depends(get_gallery_scraper),
) -> ImageSourceResolver:
    storage = build_storage(settings.blob_read_write_token, settings.uploads_dir, settings.public_base_url, client)
    return ImageSourceResolver(
        storage,
        scraper,
        max_uploads=settings.max_upload_files,
        sample_fallback=settings.sample_fallback_enabled,
    )


def get_scheduler(
    settings: Settings = Depends(get_settings),
    provider: WatermarkProvider = Depends(get_watermark_provider),
    store: ProgressStore = Depends(get_progress_store),
) -> BatchScheduler:
    policy = RetryPolicy(
        max_retries=settings.max_retries,
        delay=settings.retry_delay_s,
        multiplier=settings.backoff_multiplier,
        classify_errors=settings.retry_classify_errors,
    )
    return BatchScheduler(provider, store, concurrency_limit=settings.concurrency_limit, retry_policy=policy)
