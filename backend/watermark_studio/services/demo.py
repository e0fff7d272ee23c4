from watermark_studio.schemas.contracts import ImageOrigin, ImageTask

DEMO_MESSAGE = "Demo processing completed"

DEMO_TASKS = [
    ImageTask(
        source_url=f"/placeholder.svg?height=400&width=600&text=Sample+Image+{n}+with+Watermark",
        filename=f"sample_{n}.jpg",
        origin=ImageOrigin.SAMPLE,
    )
    for n in (1, 2, 3)
]


def demo_processed_url(image_url: str) -> str:
    return image_url.replace("with+Watermark", "Watermark+Removed")
