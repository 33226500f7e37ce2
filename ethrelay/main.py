"""
Main entry point for the eth-relay block scanner.
"""

import argparse
import signal
import sys
import time

import structlog

from .config import settings
from .database.connection import SessionLocal
from .services.block_scanner import BlockScanner
from .services.chain_store import ChainStore
from .services.error_handler import ErrorHandler
from .services.eth_rpc import EthereumRPCService
from .utils.exceptions import ScannerUsageError
from .utils.logging import setup_logging


def start_with_retry(scanner: BlockScanner, error_handler: ErrorHandler) -> None:
    """Start the scanner, retrying while the node or database is not ready yet"""
    attempt = 1
    while True:
        try:
            scanner.start()
            return
        except Exception as e:
            if not error_handler.should_retry(attempt):
                raise
            error_handler.handle_scan_error(e, {"phase": "start", "attempt": attempt})
            time.sleep(error_handler.get_retry_delay(attempt))
            attempt += 1


def main(debug=False) -> int:
    """Main application entry point; returns the process exit code"""
    setup_logging("DEBUG" if debug else settings.LOG_LEVEL)
    logger = structlog.get_logger()
    logger.info(
        "Starting eth-relay block scanner",
        rpc_url=settings.ETH_RPC_URL,
        scan_interval=settings.SCAN_INTERVAL,
        max_fork_depth=settings.MAX_FORK_DEPTH,
    )

    rpc = EthereumRPCService()
    scanner = BlockScanner(ChainStore(SessionLocal), rpc)

    try:
        start_with_retry(scanner, ErrorHandler())
    except Exception as e:
        logger.error("Unhandled exception", error=str(e))
        rpc.close()
        raise

    def handle_signal(signum, frame):
        logger.info("Shutdown signal received", signal=signum)
        try:
            scanner.stop()
        except ScannerUsageError:
            logger.debug("Block scanner already stopping")

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    # join with a timeout so signal handlers get a chance to run
    while scanner.is_running:
        scanner.join(timeout=1.0)

    rpc.close()

    if scanner.fatal_error is not None:
        logger.critical("Block scanner stopped on fatal error", error=str(scanner.fatal_error))
        return 1

    logger.info("eth-relay block scanner stopped")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="eth-relay block scanner")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()
    sys.exit(main(debug=args.debug))
