from io import BytesIO

import pytest
from PIL import Image


def make_png(color: str = "white", size: tuple[int, int] = (16, 16)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()
