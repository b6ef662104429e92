"""Entry point for running XOArena via ``python -m xoarena``."""

from __future__ import annotations

import uvicorn

from .config import Settings, configure_logging


def main() -> None:
    """Start the FastAPI-powered XOArena web server."""

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "xoarena.ui:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
