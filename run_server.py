#!/usr/bin/env python3
"""Entry point for the watermark studio API."""
import os

import uvicorn

PORT = int(os.getenv("STUDIO_PORT", 8000))
HOST = os.getenv("STUDIO_HOST", "0.0.0.0")
RELOAD = os.getenv("STUDIO_DEV", "false").lower() == "true"


if __name__ == "__main__":
    print(f"Watermark studio on http://localhost:{PORT} (API docs at /docs)")
    uvicorn.run(
        "watermark_studio.main:app",
        app_dir="backend",
        host=HOST,
        port=PORT,
        reload=RELOAD,
        log_level="info",
    )
