import re
from urllib.parse import urlsplit

_SIZE_REWRITES = [
    (re.compile(r"/w_\d+"), "/w_2048"),
    (re.compile(r"/h_\d+"), "/h_2048"),
    (re.compile(r"/c_fill"), "/c_fit"),
]

PLACEHOLDER_MARKERS = ("placeholder.svg",)


def is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def normalize_gallery_url(url: str) -> str:
    cleaned = url.strip()
    if "?pid=" in cleaned or "&id=" in cleaned:
        return cleaned.split("?")[0]
    return cleaned


def is_local_reference(url: str) -> bool:
    if url.startswith("/") or url.startswith("data:"):
        return True
    return any(marker in url for marker in PLACEHOLDER_MARKERS)


def upgrade_resolution(src: str) -> str:
    for pattern, replacement in _SIZE_REWRITES:
        src = pattern.sub(replacement, src, count=1)
    return src
