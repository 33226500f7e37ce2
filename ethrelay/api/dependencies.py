from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ethrelay.database.connection import get_db
from ethrelay.services.chain_query_service import ChainQueryService
from ethrelay.services.credential_store import KeystoreCredentialStore
from ethrelay.services.eth_rpc import EthereumRPCService
from ethrelay.services.nonce_cache import NonceCache
from ethrelay.services.transfer_service import TransferService


@lru_cache()
def get_rpc_service() -> EthereumRPCService:
    return EthereumRPCService()


@lru_cache()
def get_credential_store() -> KeystoreCredentialStore:
    return KeystoreCredentialStore()


@lru_cache()
def get_nonce_cache() -> NonceCache:
    return NonceCache()


def get_chain_query_service(db: Session = Depends(get_db)) -> ChainQueryService:
    return ChainQueryService(db)


def get_transfer_service(
    rpc: EthereumRPCService = Depends(get_rpc_service),
    nonce_cache: NonceCache = Depends(get_nonce_cache),
    credentials: KeystoreCredentialStore = Depends(get_credential_store),
) -> TransferService:
    return TransferService(rpc, nonce_cache, credentials)
