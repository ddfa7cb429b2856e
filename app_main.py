"""Application entry point for the ExamHall service."""

from __future__ import annotations

import argparse
import logging
import socket

import uvicorn

from exam_app.constants.about import APP_NAME, APP_VERSION
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.exam_manager import ExamManager
from exam_app.core.services.countdown import CountdownTicker
from exam_app.server.api_server import create_api_app
from exam_app.utils.logging_config import configure_logging


def _determine_service_url(port: int) -> str:
    """Best-effort determination of the local IP for the client-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} exam service")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args()


def main() -> None:
    """Initialize logging, start the countdown ticker and serve the API."""
    args = _parse_args()
    logger = configure_logging(level=logging.DEBUG if args.debug else logging.INFO)
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    exam_manager = ExamManager()
    ticker = CountdownTicker(exam_manager)
    ticker.start()
    logger.info("API available at %s", _determine_service_url(args.port))

    try:
        uvicorn.run(create_api_app(exam_manager), host=args.host, port=args.port, log_level="info")
    finally:
        ticker.stop(timeout=2)


if __name__ == "__main__":
    main()
