from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Sequence
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup

from watermark_studio.core.errors import (
    GalleryError,
    GalleryFetchError,
    InvalidGalleryUrl,
    NoImagesFound,
    NotAGalleryPage,
    PasswordProtectedGallery,
    UnsupportedGallery,
)
from watermark_studio.schemas.contracts import GalleryImage
from watermark_studio.utils.urls import is_http_url, upgrade_resolution

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}


@dataclass(frozen=True)
class Candidate:
    url: str
    thumbnail: str
    prefix: str


class ExtractionStrategy(ABC):
    prefix = "image"

    def __init__(self, marker: str):
        self.marker = marker

    @abstractmethod
    def extract(self, soup: BeautifulSoup) -> List[Candidate]:
        raise NotImplementedError


class LazyLoadStrategy(ExtractionStrategy):
    prefix = "pixieset_image"

    def extract(self, soup: BeautifulSoup) -> List[Candidate]:
        found = []
        for img in soup.select("img[data-src]"):
            src = img.get("data-src") or ""
            if self.marker in src:
                found.append(Candidate(upgrade_resolution(src), src, self.prefix))
        return found


class ImageSrcStrategy(ExtractionStrategy):
    prefix = "pixieset_image"
    skip_words = ("logo", "icon")

    def extract(self, soup: BeautifulSoup) -> List[Candidate]:
        found = []
        for img in soup.select("img[src]"):
            src = img.get("src") or ""
            if self.marker in src and not any(word in src for word in self.skip_words):
                found.append(Candidate(upgrade_resolution(src), src, self.prefix))
        return found


class JsonLdStrategy(ExtractionStrategy):
    prefix = "structured_image"

    def extract(self, soup: BeautifulSoup) -> List[Candidate]:
        found = []
        for script in soup.select('script[type="application/ld+json"]'):
            try:
                data = json.loads(script.string or "{}")
            except ValueError:
                continue
            for entry in data if isinstance(data, list) else [data]:
                if not isinstance(entry, dict) or not entry.get("image"):
                    continue
                images = entry["image"] if isinstance(entry["image"], list) else [entry["image"]]
                for url in images:
                    if isinstance(url, str) and self.marker in url:
                        found.append(Candidate(url, url, self.prefix))
        return found


class ScriptLiteralStrategy(ExtractionStrategy):
    prefix = "js_extracted"

    def __init__(self, marker: str):
        super().__init__(marker)
        self.pattern = re.compile(rf"https://[^\"'\s]+{re.escape(marker)}[^\"'\s]+\.(?:jpg|jpeg|png)", re.IGNORECASE)

    def extract(self, soup: BeautifulSoup) -> List[Candidate]:
        found = []
        for script in soup.find_all("script"):
            for url in self.pattern.findall(script.string or ""):
                found.append(Candidate(url, url, self.prefix))
        return found


def default_strategies(marker: str) -> List[ExtractionStrategy]:
    return [LazyLoadStrategy(marker), ImageSrcStrategy(marker), JsonLdStrategy(marker), ScriptLiteralStrategy(marker)]


def collect_images(candidates: Iterable[Candidate], limit: int) -> List[GalleryImage]:
    seen: set[str] = set()
    images: List[GalleryImage] = []
    for candidate in candidates:
        if candidate.url in seen:
            continue
        seen.add(candidate.url)
        images.append(
            GalleryImage(
                url=candidate.url,
                filename=f"{candidate.prefix}_{len(images) + 1}.jpg",
                thumbnail=candidate.thumbnail,
            )
        )
    return images[:limit]


class GalleryScraper:
    """Pull image URLs out of a public Pixieset gallery page."""

    platform_domain = "pixieset.com"
    marker = "pixieset"

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str,
        timeout_s: float = 15,
        max_images: int = 20,
        use_browser: bool = False,
        strategies: Sequence[ExtractionStrategy] | None = None,
    ):
        self.client = client
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.max_images = max_images
        self.use_browser = use_browser
        self.strategies = list(strategies) if strategies is not None else default_strategies(self.marker)

    def validate_url(self, gallery_url: str) -> str:
        if not gallery_url:
            raise InvalidGalleryUrl("Gallery URL is required")
        if not is_http_url(gallery_url):
            raise InvalidGalleryUrl("Invalid URL format")
        if self.platform_domain not in urlsplit(gallery_url).netloc:
            raise UnsupportedGallery("Currently only Pixieset galleries are supported")
        return gallery_url

    async def extract(self, gallery_url: str) -> List[GalleryImage]:
        self.validate_url(gallery_url)
        logger.info("Extracting gallery from %s", gallery_url)
        html = await self._fetch(gallery_url)
        images = self.parse(html)
        logger.info("Found %d unique images in %s", len(images), gallery_url)
        return images

    def parse(self, html: str) -> List[GalleryImage]:
        soup = BeautifulSoup(html, "html.parser")
        candidates: List[Candidate] = []
        for strategy in self.strategies:
            candidates.extend(strategy.extract(soup))
        images = collect_images(candidates, self.max_images)
        if not images:
            logger.info("No images found, page starts with: %s", html[:500])
            self._raise_empty(html)
        return images

    def _raise_empty(self, html: str) -> None:
        if "password" in html.lower():
            raise PasswordProtectedGallery("Gallery appears to be password protected")
        if self.marker not in html:
            raise NotAGalleryPage("This doesn't appear to be a Pixieset gallery page")
        raise NoImagesFound("No images found in the gallery. Please check the URL and ensure it's a public gallery.")

    async def _fetch(self, url: str) -> str:
        try:
            if self.use_browser:
                return await self._fetch_with_browser(url)
            return await self._fetch_html(url)
        except GalleryError:
            raise
        except Exception as exc:
            raise GalleryFetchError(f"Failed to extract gallery: {exc}") from exc

    async def _fetch_html(self, url: str) -> str:
        resp = await self.client.get(
            url,
            headers={"User-Agent": self.user_agent, **BROWSER_HEADERS},
            timeout=self.timeout_s,
            follow_redirects=True,
        )
        if not resp.is_success:
            raise GalleryFetchError(f"Failed to extract gallery: HTTP {resp.status_code}: {resp.reason_phrase}")
        return resp.text

    async def _fetch_with_browser(self, url: str) -> str:
        from playwright.async_api import async_playwright

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                await page.goto(url, wait_until="networkidle", timeout=self.timeout_s * 1000)
                return await page.content()
            finally:
                await browser.close()
