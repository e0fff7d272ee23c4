import asyncio

import httpx
import pytest

from watermark_studio.core.errors import InputError, StorageError, UnsupportedGallery
from watermark_studio.schemas.contracts import GalleryImage, ImageOrigin
from watermark_studio.services.gallery import GalleryScraper
from watermark_studio.services.resolver import SAMPLE_IMAGES, ImageSourceResolver, UploadedImage
from watermark_studio.services.storage import BlobStorage, LocalStorage, ObjectStorage


class MemoryStorage(ObjectStorage):
    def __init__(self):
        self.saved = {}

    async def put(self, path, data, content_type):
        self.saved[path] = (data, content_type)
        return f"https://cdn.example.com/{path}"


class BrokenStorage(ObjectStorage):
    async def put(self, path, data, content_type):
        raise StorageError("blob store is down")


class FakeScraper(GalleryScraper):
    def __init__(self, images=None, error=None):
        super().__init__(client=None, user_agent="test")
        self.images = images or []
        self.error = error
        self.requested = []

    async def extract(self, gallery_url):
        self.requested.append(gallery_url)
        if self.error:
            raise self.error
        return self.images


GALLERY = [GalleryImage(url="https://images.pixieset.com/1.jpg", filename="pixieset_image_1.jpg")]


def resolve(resolver, uploads=(), gallery_url=None):
    return asyncio.run(resolver.resolve(list(uploads), gallery_url))


def test_uploads_come_first_then_gallery(png_bytes):
    storage = MemoryStorage()
    resolver = ImageSourceResolver(storage, FakeScraper(GALLERY))

    tasks = resolve(resolver, [UploadedImage("me.png", png_bytes)], "https://jane.pixieset.com/wedding/")

    assert [t.origin for t in tasks] == [ImageOrigin.UPLOADED, ImageOrigin.GALLERY]
    assert tasks[0].source_url.startswith("https://cdn.example.com/")
    assert tasks[0].source_url.endswith("_me.png")
    assert tasks[1].filename == "pixieset_image_1.jpg"
    (data, content_type), = storage.saved.values()
    assert data == png_bytes and content_type == "image/png"


def test_failed_storage_write_keeps_task_with_inline_data(png_bytes):
    tasks = resolve(ImageSourceResolver(BrokenStorage(), FakeScraper()), [UploadedImage("me.png", png_bytes)])

    assert len(tasks) == 1
    assert tasks[0].source_url.startswith("data:image/png;base64,")
    assert tasks[0].origin is ImageOrigin.UPLOADED


def test_non_image_upload_is_rejected():
    with pytest.raises(InputError, match="not a supported image"):
        resolve(ImageSourceResolver(MemoryStorage(), FakeScraper()), [UploadedImage("notes.txt", b"hello")])


def test_too_many_uploads(png_bytes):
    resolver = ImageSourceResolver(MemoryStorage(), FakeScraper(), max_uploads=2)
    with pytest.raises(InputError, match="Too many files"):
        resolve(resolver, [UploadedImage(f"{i}.png", png_bytes) for i in range(3)])


def test_individual_image_link_is_reduced_to_gallery():
    scraper = FakeScraper(GALLERY)
    resolve(ImageSourceResolver(MemoryStorage(), scraper), gallery_url=" https://jane.pixieset.com/wedding/?pid=42 ")
    assert scraper.requested == ["https://jane.pixieset.com/wedding/"]


def test_gallery_failure_is_tolerated_when_uploads_exist(png_bytes):
    scraper = FakeScraper(error=UnsupportedGallery("Currently only Pixieset galleries are supported"))
    tasks = resolve(ImageSourceResolver(MemoryStorage(), scraper), [UploadedImage("me.png", png_bytes)], "https://x.com/g")
    assert len(tasks) == 1


def test_gallery_failure_without_uploads_propagates():
    scraper = FakeScraper(error=UnsupportedGallery("Currently only Pixieset galleries are supported"))
    with pytest.raises(UnsupportedGallery):
        resolve(ImageSourceResolver(MemoryStorage(), scraper), gallery_url="https://x.com/g")


def test_empty_input_uses_samples():
    tasks = resolve(ImageSourceResolver(MemoryStorage(), FakeScraper()))
    assert tasks == SAMPLE_IMAGES
    assert all(t.origin is ImageOrigin.SAMPLE for t in tasks)


def test_empty_input_without_fallback_is_an_error():
    with pytest.raises(InputError, match="No images to process"):
        resolve(ImageSourceResolver(MemoryStorage(), FakeScraper(), sample_fallback=False))


def test_local_storage_serves_from_uploads_mount(tmp_path, png_bytes):
    storage = LocalStorage(str(tmp_path), "https://studio.example.com/")
    url = asyncio.run(storage.put("1_me.png", png_bytes, "image/png"))
    assert url == "https://studio.example.com/uploads/1_me.png"
    assert (tmp_path / "1_me.png").read_bytes() == png_bytes


def test_blob_storage_failure_raises_storage_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    with pytest.raises(StorageError):
        asyncio.run(BlobStorage("tok", client).put("a.png", b"x", "image/png"))
