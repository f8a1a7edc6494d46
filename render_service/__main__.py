"""
Run the render service: python -m render_service

Serves on HOST:PORT (default 0.0.0.0:10000).
"""

import uvicorn

from .config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "render_service.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
