from __future__ import annotations

import json
import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from watermark_studio.core.errors import (
    InputError,
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    ProviderPermissionError,
    ProviderResponseError,
    SourceImageError,
)
from watermark_studio.core.log import mask_secret
from watermark_studio.schemas.contracts import ConnectionTestResponse, ProviderKind, RemovalResult
from watermark_studio.services.demo import DEMO_MESSAGE, demo_processed_url
from watermark_studio.utils.urls import is_local_reference

logger = logging.getLogger(__name__)

FAL_KONTEXT_URL = "https://fal.run/fal-ai/flux-pro/kontext"
REMOVAL_PROMPT = "Remove watermark, clean image, high quality, professional photo editing, restore original content"
TEST_IMAGE_URL = "https://images.unsplash.com/photo-1503023345310-bd7c1de61c7d?w=400&h=300&fit=crop"


def _is_transient(status_code: int) -> bool:
    return status_code in (408, 429) or status_code >= 500


class WatermarkProvider(ABC):
    label = "Provider"

    def __init__(self, api_key: str, client: httpx.AsyncClient, endpoint: str = ""):
        self.api_key = api_key
        self.client = client
        self.endpoint = endpoint

    async def remove_watermark(self, image_url: str, filename: str) -> RemovalResult:
        try:
            return await self._remove(image_url, filename)
        except ProviderError as exc:
            logger.warning("%s failed on %s: %s", self.label, filename, exc)
            return RemovalResult(success=False, error=str(exc), retryable=exc.retryable)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("%s request error on %s: %s", self.label, filename, exc)
            return RemovalResult(success=False, error=f"{self.label} request failed: {exc}", retryable=True)

    @abstractmethod
    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        raise NotImplementedError

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _status_url(self) -> str:
        raise ProviderConfigError(f"{self.label} does not expose a status endpoint")

    async def validate_key(self) -> bool:
        try:
            resp = await self.client.get(self._status_url(), headers=self._headers())
        except (httpx.HTTPError, httpx.InvalidURL, ProviderError):
            return False
        return resp.is_success

    async def test_connection(self) -> ConnectionTestResponse:
        if await self.validate_key():
            return ConnectionTestResponse(success=True, message=f"{self.label} API key is valid")
        return ConnectionTestResponse(success=False, message="Invalid API key or service unavailable")

    async def _post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self.client.post(url, json=payload, headers=self._headers())
        if not resp.is_success:
            self._raise_for_status(resp)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderResponseError(f"Invalid JSON response from {self.label}") from exc

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code == 401:
            raise ProviderAuthError(f"Invalid API key. Please check your {self.label} API key.")
        if resp.status_code == 403:
            raise ProviderPermissionError(f"Access forbidden. Please check your {self.label} API key permissions.")
        raise ProviderResponseError(
            f"API request failed: {resp.status_code} {resp.reason_phrase}",
            retryable=_is_transient(resp.status_code),
        )


class FalKontextProvider(WatermarkProvider):
    """Flux Kontext image editing on fal.ai, prompted to remove watermarks."""

    label = "Fal.ai"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.api_key}", "Content-Type": "application/json"}

    async def _probe(self, image_url: str) -> None:
        try:
            resp = await self.client.head(image_url, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise SourceImageError(f"Cannot access image URL: {image_url}", retryable=True) from exc
        if not resp.is_success:
            raise SourceImageError(
                f"Cannot access image URL: {image_url} ({resp.status_code} {resp.reason_phrase})",
                retryable=_is_transient(resp.status_code),
            )

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        logger.info("Processing %s with Flux Kontext (key %s)", filename, mask_secret(self.api_key, 8))
        if is_local_reference(image_url):
            raise SourceImageError("Image URL must be publicly accessible. Local URLs are not supported by Fal.ai")
        await self._probe(image_url)

        payload = {
            "prompt": REMOVAL_PROMPT,
            "image_url": image_url,
            "num_inference_steps": 28,
            "guidance_scale": 3.5,
            "num_images": 1,
            "enable_safety_checker": True,
            "output_format": "jpeg",
            "output_quality": 95,
            "strength": 0.8,
            "seed": random.randint(0, 999999),
        }
        resp = await self.client.post(FAL_KONTEXT_URL, json=payload, headers=self._headers())
        text = resp.text
        if not resp.is_success:
            self._raise_fal_error(resp, text, image_url)

        try:
            result = json.loads(text)
        except ValueError as exc:
            raise ProviderResponseError(f"Invalid JSON response from Fal.ai: {text[:100]}") from exc

        images = [img["url"] for img in result.get("images") or [] if isinstance(img, dict) and img.get("url")]
        if not images:
            raise ProviderResponseError("No processed images returned from Flux Kontext")
        return RemovalResult(
            success=True,
            processed_image_url=images[0],
            job_id=result.get("request_id") or f"flux_{int(time.time() * 1000)}",
        )

    def _raise_fal_error(self, resp: httpx.Response, text: str, image_url: str) -> None:
        try:
            data = json.loads(text)
        except ValueError:
            raise ProviderResponseError(
                f"Fal API error: {resp.status_code} - {resp.reason_phrase}. Response: {text[:100]}",
                retryable=_is_transient(resp.status_code),
            )

        if resp.status_code == 422:
            detail = data.get("detail") if isinstance(data, dict) else None
            first = detail[0] if isinstance(detail, list) and detail else {}
            if isinstance(first, dict) and first.get("type") == "file_download_error":
                raise SourceImageError(
                    f"Cannot download image from URL: {image_url}. Please ensure the URL is publicly accessible."
                )
        if resp.status_code in (401, 403):
            self._raise_for_status(resp)

        detail = data.get("detail") if isinstance(data, dict) else None
        raise ProviderResponseError(
            f"Fal API error: {resp.status_code} - {detail or resp.reason_phrase}",
            retryable=_is_transient(resp.status_code),
        )

    async def _test_call(self) -> httpx.Response:
        payload = {
            "prompt": "test image",
            "image_url": TEST_IMAGE_URL,
            "num_inference_steps": 10,
            "guidance_scale": 3.5,
            "num_images": 1,
        }
        return await self.client.post(FAL_KONTEXT_URL, json=payload, headers=self._headers())

    async def validate_key(self) -> bool:
        try:
            resp = await self._test_call()
        except httpx.HTTPError:
            return False
        if resp.status_code == 401:
            return False
        return resp.status_code == 400 or resp.is_success

    async def test_connection(self) -> ConnectionTestResponse:
        try:
            resp = await self._test_call()
        except httpx.HTTPError as exc:
            return ConnectionTestResponse(success=False, message=f"Connection failed: {exc}")

        snippet = {"response": resp.text[:200]}
        if resp.status_code == 401:
            return ConnectionTestResponse(success=False, message="Invalid API key - Authentication failed", details=snippet)
        if resp.status_code == 403:
            return ConnectionTestResponse(
                success=False, message="Access forbidden - Check API key permissions", details=snippet
            )
        try:
            result = resp.json()
        except ValueError:
            return ConnectionTestResponse(
                success=False, message=f"API test failed: {resp.status_code} {resp.reason_phrase}", details=snippet
            )
        if resp.status_code == 400 and isinstance(result, dict) and result.get("detail"):
            return ConnectionTestResponse(success=True, message="API key is valid - Ready for watermark removal")
        if not resp.is_success:
            return ConnectionTestResponse(success=False, message=f"API test failed: {resp.status_code}", details=snippet)
        return ConnectionTestResponse(
            success=True,
            message="API key is valid and working",
            details={
                "status": resp.status_code,
                "hasImages": bool(result.get("images")),
                "requestId": result.get("request_id"),
            },
        )


class LightPDFProvider(WatermarkProvider):
    label = "LightPDF"
    base_url = "https://api.lightpdf.com/api/v1"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def _status_url(self) -> str:
        return f"{self.base_url}/account/info"

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        upload = await self._post_json(f"{self.base_url}/file/upload", {"url": image_url, "filename": filename})
        processed = await self._post_json(
            f"{self.base_url}/watermark/remove", {"file_id": upload.get("file_id"), "auto_detect": True}
        )
        return RemovalResult(
            success=True, processed_image_url=processed.get("download_url"), job_id=processed.get("job_id")
        )


class WatermarkRemoverProvider(WatermarkProvider):
    label = "WatermarkRemover.io"
    base_url = "https://api.watermarkremover.io/v1"

    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key, "Content-Type": "application/json"}

    def _status_url(self) -> str:
        return f"{self.base_url}/account"

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        result = await self._post_json(
            f"{self.base_url}/remove", {"image_url": image_url, "filename": filename, "quality": "high"}
        )
        return RemovalResult(success=True, processed_image_url=result.get("result_url"), job_id=result.get("job_id"))


class RapidAPIProvider(WatermarkProvider):
    label = "RapidAPI"
    host = "watermark-remover.p.rapidapi.com"

    def _headers(self) -> dict[str, str]:
        return {"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.host, "Content-Type": "application/json"}

    def _status_url(self) -> str:
        return f"https://{self.host}/status"

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        result = await self._post_json(f"https://{self.host}/remove", {"image_url": image_url, "filename": filename})
        return RemovalResult(
            success=True, processed_image_url=result.get("output_url"), job_id=result.get("request_id")
        )


class CustomEndpointProvider(WatermarkProvider):
    label = "Custom endpoint"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def _base(self) -> str:
        if not self.endpoint:
            raise ProviderConfigError("Custom endpoint not configured")
        return self.endpoint.rstrip("/")

    def _status_url(self) -> str:
        return f"{self._base()}/status"

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        result = await self._post_json(f"{self._base()}/remove", {"image_url": image_url, "filename": filename})
        return RemovalResult(success=True, processed_image_url=result.get("processed_url"), job_id=result.get("job_id"))


class DemoProvider(WatermarkProvider):
    """Offline stand-in for demo mode; never touches the network."""

    label = "Demo"

    def _headers(self) -> dict[str, str]:
        return {}

    async def _remove(self, image_url: str, filename: str) -> RemovalResult:
        return RemovalResult(success=True, processed_image_url=demo_processed_url(image_url), message=DEMO_MESSAGE)

    async def validate_key(self) -> bool:
        return True

    async def test_connection(self) -> ConnectionTestResponse:
        return ConnectionTestResponse(success=True, message="Demo mode: no external calls are made")


PROVIDERS: dict[ProviderKind, type[WatermarkProvider]] = {
    ProviderKind.FAL: FalKontextProvider,
    ProviderKind.LIGHTPDF: LightPDFProvider,
    ProviderKind.WATERMARKREMOVER: WatermarkRemoverProvider,
    ProviderKind.RAPIDAPI: RapidAPIProvider,
    ProviderKind.CUSTOM: CustomEndpointProvider,
    ProviderKind.DEMO: DemoProvider,
}


def parse_provider_kind(name: str) -> ProviderKind:
    """Parse a user-selected provider; demo is not selectable."""
    try:
        kind = ProviderKind(name)
    except ValueError:
        raise InputError("Unsupported API provider") from None
    if kind is ProviderKind.DEMO:
        raise InputError("Unsupported API provider")
    return kind


def get_provider(kind: ProviderKind, api_key: str, client: httpx.AsyncClient, endpoint: str = "") -> WatermarkProvider:
    return PROVIDERS[kind](api_key, client, endpoint)
