"""Entry point for ``timekeeper-cloud``."""

import logging

import uvicorn

from timekeeper.cloud.app import create_app
from timekeeper.cloud.config import CloudSettings


def run() -> None:
    """Serve the cloud API with uvicorn."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = CloudSettings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    run()
