"""
Error handling and retry policy for the Ethereum relay.

This module provides strategies for handling the errors that may occur
while scanning: node (RPC) errors, database errors and retry timing.
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from ethrelay.config import settings
from ethrelay.utils.exceptions import RPCError, RetryTimeoutError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter.

    max_attempts=None retries forever, trusting the node to converge.
    """

    max_attempts: Optional[int] = None
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.BLOCK_FETCH_MAX_ATTEMPTS,
            base_delay=settings.BLOCK_FETCH_BASE_DELAY,
            max_delay=settings.BLOCK_FETCH_MAX_DELAY,
        )

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)  # nosec B311


class ErrorHandler:
    """Handle scanning errors"""

    def __init__(self):
        """Initialize the error handler"""
        self.logger = structlog.get_logger()

    def handle_rpc_error(self, error: Exception, context: Dict[str, Any]) -> bool:
        """
        Handle Ethereum node errors.

        Args:
            error: The exception that occurred
            context: Additional context about the error

        Returns:
            True if the operation should be retried, False otherwise
        """
        if isinstance(error, RPCError):
            error_message = f"RPC Error: code={error.code}, message={error.message}"
        else:
            error_message = str(error)

        self.logger.error("RPC error occurred", error=error_message, context=context)
        return True

    def handle_database_error(self, error: Exception, context: Dict[str, Any]) -> bool:
        """
        Handle database errors. The failed transaction has already been rolled back.

        Returns:
            True if the operation should be retried, False otherwise
        """
        self.logger.error("Database error occurred", error=str(error), context=context)
        return True

    def handle_scan_error(self, error: Exception, context: Dict[str, Any]) -> bool:
        """
        Log a failed scan step according to its kind.

        Returns:
            True if the step should be retried on the next tick
        """
        if isinstance(error, SQLAlchemyError):
            return self.handle_database_error(error, context)
        if isinstance(error, (RPCError, httpx.HTTPError, ConnectionError)):
            return self.handle_rpc_error(error, context)
        if isinstance(error, RetryTimeoutError):
            self.logger.warning("Retry budget exhausted", error=str(error), attempts=error.attempts, context=context)
            return True

        self.logger.error(
            "Unexpected scan error",
            error=str(error),
            error_type=type(error).__name__,
            context=context,
        )
        return True

    def should_retry(self, attempt: int) -> bool:
        return attempt < settings.MAX_RETRIES

    def get_retry_delay(self, attempt: int) -> int:
        """
        Calculate the retry delay with exponential backoff.

        Args:
            attempt: The current retry attempt number

        Returns:
            The delay in seconds
        """
        delay = settings.RETRY_DELAY * (2 ** (attempt - 1))
        self.logger.info("Retrying operation", attempt=attempt, delay=delay)
        return delay
