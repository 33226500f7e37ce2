"""
Ethereum JSON-RPC service for blockchain interaction.
"""

import itertools
import time
import random
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
import httpx
from ethrelay.config import settings
from ethrelay.utils.exceptions import RPCError, BlockNotFoundError
from ethrelay.utils.erc20 import build_balance_of_data
from ethrelay.utils.hexutil import hex_to_int, int_to_hex
import structlog
from functools import wraps
from enum import Enum

logger = structlog.get_logger()


class ConnectionState(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


def retry_on_rpc_error(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
    """
    Decorator for automatic retry with exponential backoff on transport errors.

    Errors the node answered with (RPCError) and missing blocks
    (BlockNotFoundError) are raised immediately; the caller owns those.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds between retries
        max_delay: Maximum delay in seconds between retries
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(self, *args, **kwargs)
                except (RPCError, BlockNotFoundError):
                    raise
                except (ConnectionError, httpx.HTTPError, ValueError) as e:
                    last_exception = e

                    if self._is_connection_error(e):
                        logger.warning(
                            "RPC connection error detected, forcing reconnection",
                            error=str(e),
                            attempt=attempt + 1,
                            max_retries=max_retries,
                        )
                        self._force_reconnect()
                        self._connection_state = ConnectionState.DEGRADED

                    if attempt == max_retries:
                        logger.error(
                            "RPC call failed after all retries",
                            function=func.__name__,
                            error=str(e),
                            attempts=attempt + 1,
                        )
                        break

                    delay = min(base_delay * (2**attempt), max_delay)
                    jitter = random.uniform(0, delay * 0.1)  # nosec B311
                    actual_delay = delay + jitter

                    logger.info(
                        "RPC call failed, retrying",
                        function=func.__name__,
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        retry_delay=actual_delay,
                    )

                    time.sleep(actual_delay)

            self._connection_state = ConnectionState.FAILED
            raise last_exception

        return wrapper

    return decorator


@dataclass
class RPCTransaction:
    hash: str
    nonce: int
    block_hash: Optional[str]
    block_number: Optional[int]
    transaction_index: Optional[int]
    from_address: str
    to_address: Optional[str]
    value: int
    gas_price: Optional[int]
    gas: int
    input: str

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "RPCTransaction":
        return cls(
            hash=data["hash"],
            nonce=hex_to_int(data.get("nonce")) or 0,
            block_hash=data.get("blockHash"),
            block_number=hex_to_int(data.get("blockNumber")),
            transaction_index=hex_to_int(data.get("transactionIndex")),
            from_address=data.get("from", ""),
            to_address=data.get("to"),
            value=hex_to_int(data.get("value")) or 0,
            gas_price=hex_to_int(data.get("gasPrice")),
            gas=hex_to_int(data.get("gas")) or 0,
            input=data.get("input", "0x"),
        )


@dataclass
class FullBlock:
    number: int
    hash: str
    parent_hash: str
    timestamp: int
    miner: Optional[str] = None
    gas_limit: Optional[int] = None
    gas_used: Optional[int] = None
    transactions: List[RPCTransaction] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "FullBlock":
        transactions = [
            RPCTransaction.from_rpc(tx) for tx in data.get("transactions", []) if isinstance(tx, dict)
        ]
        return cls(
            number=hex_to_int(data["number"]),
            hash=data["hash"],
            parent_hash=data["parentHash"],
            timestamp=hex_to_int(data.get("timestamp")) or 0,
            miner=data.get("miner"),
            gas_limit=hex_to_int(data.get("gasLimit")),
            gas_used=hex_to_int(data.get("gasUsed")),
            transactions=transactions,
        )


@dataclass
class ERC20BalanceRequest:
    contract_address: str
    user_address: str
    contract_decimals: int = 18


class EthereumRPCService:
    """
    Ethereum JSON-RPC 2.0 client over HTTP with retry on transport errors
    and connection health tracking.
    """

    def __init__(self, rpc_url: str = None, timeout: float = None):
        """
        Initialize Ethereum RPC service.

        Args:
            rpc_url: Node URL (default from settings)
            timeout: Request timeout in seconds (default from settings)
        """
        self.rpc_url = rpc_url or settings.ETH_RPC_URL
        self.timeout = timeout or settings.ETH_RPC_TIMEOUT

        if not self.rpc_url:
            raise ValueError("Ethereum RPC URL is required")
        if not self.rpc_url.startswith("http"):
            self.rpc_url = f"http://{self.rpc_url}"

        self._client = None
        self._ids = itertools.count(1)
        self._connection_state = ConnectionState.HEALTHY
        self._last_health_check = 0
        self._health_check_interval = 30
        self._consecutive_failures = 0
        self._max_consecutive_failures = 5

        logger.info(
            "Ethereum RPC service initialized",
            rpc_url=self.rpc_url,
            connection_state=self._connection_state.value,
        )

    def _is_connection_error(self, error: Exception) -> bool:
        """Check if an error is connection-related and should trigger reconnection."""
        if isinstance(error, (httpx.TransportError, ConnectionError)):
            return True
        error_str = str(error).lower()
        connection_error_indicators = [
            "connection refused",
            "connection reset",
            "connection aborted",
            "timeout",
            "timed out",
            "socket error",
            "connection closed",
        ]
        return any(indicator in error_str for indicator in connection_error_indicators)

    def _force_reconnect(self):
        """Force reconnection by closing existing client."""
        if self._client is not None:
            try:
                self._client.close()
            except httpx.HTTPError as e:
                logger.warning("Error during forced reconnection", error=str(e))
            self._client = None
            logger.info("Forced RPC reconnection")

    def _get_client(self) -> httpx.Client:
        if self._connection_state == ConnectionState.FAILED:
            self._force_reconnect()

        if self._client is None:
            logger.info("Creating new RPC client")
            self._client = httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0))
            self._connection_state = ConnectionState.HEALTHY

        return self._client

    def _post(self, payload: Any) -> Any:
        response = self._get_client().post(self.rpc_url, json=payload)
        response.raise_for_status()
        return response.json()

    def _call(self, method: str, *params) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        body = self._post(payload)
        error = body.get("error")
        if error:
            raise RPCError(
                f"{method} failed: {error.get('message', error)}",
                code=error.get("code"),
                method=method,
            )
        return body.get("result")

    def _batch_call(self, calls: List[Tuple[str, List[Any]]]) -> List[Any]:
        """Send one JSON-RPC batch and return results in request order."""
        if not calls:
            return []
        ids = [next(self._ids) for _ in calls]
        payload = [
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            for request_id, (method, params) in zip(ids, calls)
        ]
        body = self._post(payload)
        if isinstance(body, dict):
            error = body.get("error") or {}
            raise RPCError(f"batch call failed: {error.get('message', body)}", code=error.get("code"))

        by_id = {item.get("id"): item for item in body}
        results = []
        for request_id, (method, _) in zip(ids, calls):
            item = by_id.get(request_id)
            if item is None:
                raise RPCError(f"{method} missing from batch response", method=method)
            if item.get("error"):
                raise RPCError(
                    f"{method} failed: {item['error'].get('message')}",
                    code=item["error"].get("code"),
                    method=method,
                )
            results.append(item.get("result"))
        return results

    def _health_check(self) -> bool:
        """
        Perform health check on RPC connection.

        Returns:
            bool: True if connection is healthy
        """
        current_time = time.time()

        if current_time - self._last_health_check < self._health_check_interval:
            return self._connection_state == ConnectionState.HEALTHY

        try:
            self._call("eth_blockNumber")

            self._connection_state = ConnectionState.HEALTHY
            self._consecutive_failures = 0
            self._last_health_check = current_time

            logger.debug("RPC health check passed")
            return True

        except (httpx.HTTPError, RPCError, ValueError) as e:
            self._consecutive_failures += 1

            if self._consecutive_failures >= self._max_consecutive_failures:
                self._connection_state = ConnectionState.FAILED
                logger.error(
                    "RPC health check failed, connection marked as failed",
                    error=str(e),
                    consecutive_failures=self._consecutive_failures,
                )
            else:
                self._connection_state = ConnectionState.DEGRADED
                logger.warning(
                    "RPC health check failed, connection degraded",
                    error=str(e),
                    consecutive_failures=self._consecutive_failures,
                )

            self._last_health_check = current_time
            return False

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            "state": self._connection_state.value,
            "consecutive_failures": self._consecutive_failures,
            "last_health_check": self._last_health_check,
            "rpc_url": self.rpc_url,
            "healthy": self._connection_state == ConnectionState.HEALTHY,
        }

    def test_connection(self) -> bool:
        return self._health_check()

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_latest_block_number(self) -> int:
        """
        Get the height of the most recent block (eth_blockNumber).

        Raises:
            RPCError: If the node rejects the call
            httpx.HTTPError: If the node is unreachable after retries
        """
        return hex_to_int(self._call("eth_blockNumber"))

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_block_by_number(self, height: int) -> FullBlock:
        """
        Get a block with full transaction objects by height.

        Raises:
            BlockNotFoundError: If the node has no body for the height yet
        """
        result = self._call("eth_getBlockByNumber", int_to_hex(height), True)
        if not result or not result.get("number"):
            raise BlockNotFoundError(height)
        return FullBlock.from_rpc(result)

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_block_by_hash(self, block_hash: str) -> FullBlock:
        """
        Get a block with full transaction objects by hash.

        Raises:
            BlockNotFoundError: If the node does not know the hash (yet)
        """
        result = self._call("eth_getBlockByHash", block_hash, True)
        if not result or not result.get("number"):
            raise BlockNotFoundError(block_hash)
        return FullBlock.from_rpc(result)

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_balance(self, address: str) -> int:
        """Get ether balance in wei at the latest block."""
        result = self._call("eth_getBalance", address, "latest")
        if not result:
            raise RPCError("eth balance is null", method="eth_getBalance")
        return hex_to_int(result)

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_balances(self, addresses: List[str]) -> List[int]:
        results = self._batch_call([("eth_getBalance", [address, "latest"]) for address in addresses])
        return [hex_to_int(result) for result in results]

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_erc20_balances(self, requests: List[ERC20BalanceRequest]) -> List[Optional[int]]:
        """
        Query balanceOf for several (contract, holder) pairs in one batch.

        Returns:
            Raw token balances in base units, None where the contract returned no data
        """
        calls = [
            (
                "eth_call",
                [{"to": req.contract_address, "data": build_balance_of_data(req.user_address)}, "latest"],
            )
            for req in requests
        ]
        results = self._batch_call(calls)
        return [hex_to_int(result) if result and result != "0x" else None for result in results]

    @retry_on_rpc_error(max_retries=3, base_delay=1.0, max_delay=30.0)
    def get_pending_nonce(self, address: str) -> int:
        """Get the next nonce for an address including pending transactions."""
        return hex_to_int(self._call("eth_getTransactionCount", address, "pending"))

    def send_raw_transaction(self, raw_transaction: str) -> str:
        """
        Broadcast a signed transaction.

        Not retried: a resend after an ambiguous transport failure could
        duplicate the submission.
        """
        if not raw_transaction.startswith("0x"):
            raw_transaction = "0x" + raw_transaction
        return self._call("eth_sendRawTransaction", raw_transaction)

    def close(self):
        """Close HTTP client and reset state."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._connection_state = ConnectionState.HEALTHY
            self._consecutive_failures = 0
            logger.info("RPC connection closed")

