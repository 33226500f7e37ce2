"""
Runnable script for eth-relay.
"""

import argparse
import multiprocessing
import sys
import time

import structlog
import uvicorn

from ethrelay.api.main import app as api_app
from ethrelay.config import settings
from ethrelay.main import main as run_scanner

logger = structlog.get_logger()


def start_scanner_process(debug=False):
    """Starts the block scanner in a separate process."""
    logger.info("Starting block scanner process...")
    sys.exit(run_scanner(debug=debug))


def start_api_server():
    """Starts the FastAPI server."""
    logger.info("Starting API server...", host=settings.API_HOST, port=settings.API_PORT)
    uvicorn.run(api_app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="eth-relay")
    parser.add_argument(
        "--scanner-only",
        action="store_true",
        help="Run only the block scanner (no API server)",
    )
    parser.add_argument(
        "--api-only",
        action="store_true",
        help="Run only the API server (no block scanner)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.scanner_only:
        sys.exit(run_scanner(debug=args.debug))
    elif args.api_only:
        start_api_server()
    else:
        scanner_process = multiprocessing.Process(target=start_scanner_process, args=(args.debug,))
        scanner_process.start()

        time.sleep(5)

        start_api_server()

        scanner_process.join()
