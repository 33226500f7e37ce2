import threading
from typing import Dict, Optional


class NonceCache:
    """
    In-memory next-nonce counter per sender address.

    Entries are seeded from the node's pending nonce and bumped after each
    successful send. Nothing is persisted, so a restart re-seeds from the
    node; transactions sent through other channels make entries stale.

    Map operations are thread-safe. Serializing send-then-increment for one
    address is the caller's job (see TransferService.address_lock).
    """

    def __init__(self):
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def get(self, address: str) -> Optional[int]:
        with self._lock:
            return self._nonces.get(self._key(address))

    def set(self, address: str, nonce: int) -> None:
        if nonce < 0:
            raise ValueError(f"Nonce cannot be negative: {nonce}")
        with self._lock:
            self._nonces[self._key(address)] = nonce

    def increment(self, address: str) -> None:
        """Add one to the cached nonce; no-op if the address is not cached."""
        key = self._key(address)
        with self._lock:
            if key in self._nonces:
                self._nonces[key] += 1

    def clear(self, address: Optional[str] = None) -> None:
        with self._lock:
            if address is None:
                self._nonces.clear()
            else:
                self._nonces.pop(self._key(address), None)
