"""
TaskDesk — Entry Point.

Single entry point: `python main.py` serves the HTTP API.
"""

import logging

from taskdesk.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from taskdesk.api.server import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
