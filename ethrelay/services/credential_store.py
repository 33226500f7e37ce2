"""
Keystore-backed credential store for transaction signing.

Unlocked accounts live only in this object's memory. The block scanner
never touches it; only the transfer path receives one.
"""

import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from ethrelay.config import settings
from ethrelay.utils.exceptions import CredentialError

logger = structlog.get_logger()

MIN_PASSWORD_LENGTH = 6


class KeystoreCredentialStore:
    """Create, unlock and sign with V3 keystore accounts in a directory"""

    def __init__(self, keystore_dir: Optional[str] = None, kdf: Optional[str] = None, iterations: Optional[int] = None):
        self.keystore_dir = keystore_dir or settings.KEYSTORE_DIR
        self.kdf = kdf
        self.iterations = iterations
        self._unlocked: Dict[str, LocalAccount] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def create_account(self, password: str) -> str:
        """
        Create a new account and write its encrypted keystore file.

        Returns:
            Checksum address of the new account
        """
        if not password:
            raise CredentialError("password cant empty")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise CredentialError(f"password's len must be at least {MIN_PASSWORD_LENGTH} characters")

        account = Account.create()
        keystore = Account.encrypt(account.key, password, kdf=self.kdf, iterations=self.iterations)

        os.makedirs(self.keystore_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%fZ")
        path = os.path.join(self.keystore_dir, f"UTC--{timestamp}--{account.address[2:].lower()}")
        with open(path, "w") as f:
            json.dump(keystore, f)

        logger.info("Wallet created", address=account.address, keystore_file=path)
        return account.address

    def _find_keystore(self, address: str) -> Dict[str, Any]:
        wanted = address[2:].lower() if address.startswith("0x") else address.lower()
        if not os.path.isdir(self.keystore_dir):
            raise CredentialError(f"Keystore directory {self.keystore_dir} does not exist")

        for name in sorted(os.listdir(self.keystore_dir)):
            path = os.path.join(self.keystore_dir, name)
            if not os.path.isfile(path):
                continue
            try:
                with open(path) as f:
                    keystore = json.load(f)
            except (OSError, ValueError):
                continue
            if str(keystore.get("address", "")).lower() == wanted:
                return keystore

        raise CredentialError(f"No keystore found for {address}")

    def unlock(self, address: str, password: str) -> None:
        if not is_address(address):
            raise CredentialError(f"Invalid address: {address}")

        keystore = self._find_keystore(address)
        try:
            private_key = Account.decrypt(keystore, password)
        except ValueError as e:
            raise CredentialError(f"unlock err : {e}")

        account = Account.from_key(private_key)
        if account.address.lower() != address.lower():
            raise CredentialError(f"Keystore for {address} decrypted to {account.address}")

        with self._lock:
            self._unlocked[self._key(address)] = account
        logger.info("Wallet unlocked", address=to_checksum_address(address))

    def lock(self, address: str) -> None:
        with self._lock:
            self._unlocked.pop(self._key(address), None)

    def is_unlocked(self, address: str) -> bool:
        with self._lock:
            return self._key(address) in self._unlocked

    def sign_transaction(self, address: str, transaction: Dict[str, Any]) -> str:
        """
        Sign a transaction dict with the unlocked account for address.

        Returns:
            0x-prefixed raw signed transaction
        """
        with self._lock:
            account = self._unlocked.get(self._key(address))
        if account is None:
            raise CredentialError(f"account {address} need to unlock first")

        signed = account.sign_transaction(transaction)
        return "0x" + bytes(signed.raw_transaction).hex()
