import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs one INFO line per request
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_secret(value: str, visible: int = 4) -> str:
    if not value:
        return ""
    return f"{value[:visible]}..."
