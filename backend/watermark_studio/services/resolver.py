"""Turn uploads and gallery links into a flat list of image tasks."""
from __future__ import annotations

import base64
import logging
import re
import time
from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from watermark_studio.core.errors import GalleryError, InputError, StorageError
from watermark_studio.schemas.contracts import ImageOrigin, ImageTask
from watermark_studio.services.gallery import GalleryScraper
from watermark_studio.services.storage import ObjectStorage
from watermark_studio.utils.urls import normalize_gallery_url

logger = logging.getLogger(__name__)

SAMPLE_IMAGES = [
    ImageTask(
        source_url="https://images.unsplash.com/photo-1503023345310-bd7c1de61c7d?w=800&h=600&fit=crop",
        filename="sample_landscape.jpg",
        origin=ImageOrigin.SAMPLE,
    ),
    ImageTask(
        source_url="https://images.unsplash.com/photo-1516117172878-fd2c41f4a759?w=800&h=600&fit=crop",
        filename="sample_architecture.jpg",
        origin=ImageOrigin.SAMPLE,
    ),
]


@dataclass
class UploadedImage:
    filename: str
    data: bytes
    content_type: str = ""


def sniff_image(upload: UploadedImage) -> str:
    """Return the MIME type of an uploaded image, rejecting anything else."""
    if not upload.data:
        raise InputError(f"{upload.filename} is empty")
    try:
        with Image.open(BytesIO(upload.data)) as im:
            fmt = im.format
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise InputError(f"{upload.filename} is not a supported image") from exc
    return Image.MIME.get(fmt or "", upload.content_type or "application/octet-stream")


def _storage_key(filename: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", filename) or "image"
    return f"{int(time.time() * 1000)}_{safe}"


class ImageSourceResolver:
    def __init__(
        self,
        storage: ObjectStorage,
        scraper: GalleryScraper,
        max_uploads: int = 20,
        sample_fallback: bool = True,
    ):
        self.storage = storage
        self.scraper = scraper
        self.max_uploads = max_uploads
        self.sample_fallback = sample_fallback

    async def resolve(self, uploads: Sequence[UploadedImage], gallery_url: Optional[str] = None) -> List[ImageTask]:
        if len(uploads) > self.max_uploads:
            raise InputError(f"Too many files: at most {self.max_uploads} images per batch")

        tasks = [await self._store_upload(upload) for upload in uploads]

        if gallery_url and gallery_url.strip():
            try:
                tasks.extend(await self._gallery_tasks(gallery_url))
            except GalleryError as exc:
                if not tasks:
                    raise
                logger.warning("Gallery extraction failed, continuing with %d uploads: %s", len(tasks), exc)

        if not tasks:
            if not self.sample_fallback:
                raise InputError("No images to process: upload files or provide a gallery URL")
            logger.info("No input images, using %d sample images", len(SAMPLE_IMAGES))
            return list(SAMPLE_IMAGES)
        return tasks

    async def _store_upload(self, upload: UploadedImage) -> ImageTask:
        mime = sniff_image(upload)
        try:
            url = await self.storage.put(_storage_key(upload.filename), upload.data, mime)
            logger.info("Uploaded %s -> %s", upload.filename, url)
        except StorageError as exc:
            # providers reject data: URLs; the task still gets a terminal result
            logger.error("Failed to upload %s: %s", upload.filename, exc)
            url = f"data:{mime};base64,{base64.b64encode(upload.data).decode('ascii')}"
        return ImageTask(source_url=url, filename=upload.filename, origin=ImageOrigin.UPLOADED)

    async def _gallery_tasks(self, gallery_url: str) -> List[ImageTask]:
        normalized = normalize_gallery_url(gallery_url)
        if normalized != gallery_url.strip():
            logger.info("Converted individual image URL to gallery URL: %s", normalized)
        images = await self.scraper.extract(normalized)
        logger.info("Extracted %d images from gallery", len(images))
        return [ImageTask(source_url=img.url, filename=img.filename, origin=ImageOrigin.GALLERY) for img in images]
