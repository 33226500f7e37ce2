"""
Ether and ERC-20 transfer submission.

Nonces come from an injected NonceCache to avoid a node round trip per send.
Sends for one address are serialized by a per-address lock so the cached
nonce is only bumped after the node accepted the previous transaction.
"""

import threading
from collections import defaultdict
from typing import Any, Dict, Optional

import structlog
from eth_utils import is_address, to_checksum_address

from ethrelay.config import settings
from ethrelay.utils.erc20 import ETH_DECIMALS, build_erc20_transfer_data, to_base_units
from ethrelay.utils.exceptions import RPCError, TransferError
from .credential_store import KeystoreCredentialStore
from .eth_rpc import EthereumRPCService
from .nonce_cache import NonceCache

logger = structlog.get_logger()

# Node messages meaning our cached nonce no longer matches the chain
STALE_NONCE_INDICATORS = ("nonce too low", "replacement transaction underpriced", "already known")


class TransferService:
    def __init__(
        self,
        rpc: EthereumRPCService,
        nonce_cache: NonceCache,
        credentials: KeystoreCredentialStore,
        chain_id: Optional[int] = None,
    ):
        self.rpc = rpc
        self.nonce_cache = nonce_cache
        self.credentials = credentials
        self.chain_id = chain_id if chain_id is not None else settings.CHAIN_ID
        self._address_locks = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def address_lock(self, address: str) -> threading.Lock:
        with self._locks_guard:
            return self._address_locks[address.lower()]

    def _next_nonce(self, address: str) -> int:
        nonce = self.nonce_cache.get(address)
        if nonce is None:
            nonce = self.rpc.get_pending_nonce(address)
            self.nonce_cache.set(address, nonce)
            logger.debug("Nonce seeded from node", address=address, nonce=nonce)
        return nonce

    def _submit(self, from_address: str, transaction: Dict[str, Any]) -> str:
        """Sign and broadcast; caller holds the address lock and set the nonce."""
        if self.chain_id is not None:
            transaction["chainId"] = self.chain_id

        raw_transaction = self.credentials.sign_transaction(from_address, transaction)

        try:
            tx_hash = self.rpc.send_raw_transaction(raw_transaction)
        except RPCError as e:
            if any(indicator in e.message.lower() for indicator in STALE_NONCE_INDICATORS):
                self.nonce_cache.clear(from_address)
                logger.warning("Cached nonce is stale, dropped", address=from_address, error=e.message)
            raise TransferError(f"send transaction failed: {e.message}")

        self.nonce_cache.increment(from_address)
        logger.info(
            "Transaction submitted",
            tx_hash=tx_hash,
            from_address=from_address,
            to_address=transaction.get("to"),
            nonce=transaction["nonce"],
        )
        return tx_hash

    def send_eth_transfer(
        self,
        from_address: str,
        to_address: str,
        value: str,
        gas_limit: int,
        gas_price: int,
    ) -> str:
        """
        Send ether.

        Args:
            value: Amount in ether as a decimal string, e.g. "0.5"
            gas_price: Gas price in wei

        Returns:
            Transaction hash
        """
        if not is_address(from_address) or not is_address(to_address):
            raise TransferError("invalid address")
        try:
            amount = to_base_units(value, ETH_DECIMALS)
        except ValueError as e:
            raise TransferError(f"invalid value: {e}")

        with self.address_lock(from_address):
            transaction = {
                "nonce": self._next_nonce(from_address),
                "to": to_checksum_address(to_address),
                "value": amount,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "data": b"",
            }
            return self._submit(from_address, transaction)

    def send_erc20_transfer(
        self,
        from_address: str,
        contract_address: str,
        receiver: str,
        value: str,
        gas_limit: int,
        gas_price: int,
        decimals: int,
    ) -> str:
        """
        Send ERC-20 tokens by calling transfer(receiver, amount) on the contract.

        The transaction value is zero; the amount travels in the call data.
        """
        if not all(is_address(address) for address in (from_address, contract_address, receiver)):
            raise TransferError("invalid address")
        try:
            data = build_erc20_transfer_data(receiver, value, decimals)
        except ValueError as e:
            raise TransferError(f"invalid value: {e}")

        with self.address_lock(from_address):
            transaction = {
                "nonce": self._next_nonce(from_address),
                "to": to_checksum_address(contract_address),
                "value": 0,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "data": data,
            }
            return self._submit(from_address, transaction)
