from fastapi import APIRouter, Depends, HTTPException
from typing import List
import structlog
from eth_utils import is_address

from ethrelay.api.dependencies import get_credential_store, get_rpc_service
from ethrelay.api.models import (
    AddressList,
    BalanceItem,
    ERC20BalanceItem,
    ERC20BalanceList,
    WalletCreate,
    WalletItem,
    WalletUnlock,
)
from ethrelay.services.credential_store import KeystoreCredentialStore
from ethrelay.services.eth_rpc import ERC20BalanceRequest, EthereumRPCService
from ethrelay.utils.exceptions import CredentialError, RPCError

logger = structlog.get_logger()

router = APIRouter(prefix="/v1")


def _check_addresses(*addresses: str) -> None:
    invalid = [address for address in addresses if not is_address(address)]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Invalid address: {invalid[0]}")


@router.get("/accounts/{address}/balance", response_model=BalanceItem)
def get_balance(address: str, rpc: EthereumRPCService = Depends(get_rpc_service)):
    _check_addresses(address)
    try:
        balance = rpc.get_balance(address)
    except RPCError as e:
        logger.error("Failed to get balance", address=address, error=e.message)
        raise HTTPException(status_code=502, detail=e.message)
    return BalanceItem(address=address, balance=str(balance))


@router.post("/accounts/balances", response_model=List[BalanceItem])
def get_balances(request: AddressList, rpc: EthereumRPCService = Depends(get_rpc_service)):
    _check_addresses(*request.addresses)
    try:
        balances = rpc.get_balances(request.addresses)
    except RPCError as e:
        logger.error("Failed to get balances", count=len(request.addresses), error=e.message)
        raise HTTPException(status_code=502, detail=e.message)
    return [
        BalanceItem(address=address, balance=str(balance))
        for address, balance in zip(request.addresses, balances)
    ]


@router.post("/erc20/balances", response_model=List[ERC20BalanceItem])
def get_erc20_balances(request: ERC20BalanceList, rpc: EthereumRPCService = Depends(get_rpc_service)):
    for query in request.requests:
        _check_addresses(query.contract_address, query.user_address)

    balance_requests = [
        ERC20BalanceRequest(
            contract_address=query.contract_address,
            user_address=query.user_address,
            contract_decimals=query.contract_decimals,
        )
        for query in request.requests
    ]
    try:
        balances = rpc.get_erc20_balances(balance_requests)
    except RPCError as e:
        logger.error("Failed to get ERC-20 balances", count=len(balance_requests), error=e.message)
        raise HTTPException(status_code=502, detail=e.message)

    return [
        ERC20BalanceItem(
            contract_address=req.contract_address,
            user_address=req.user_address,
            contract_decimals=req.contract_decimals,
            balance=str(balance) if balance is not None else None,
        )
        for req, balance in zip(balance_requests, balances)
    ]


@router.post("/wallets", response_model=WalletItem, status_code=201)
def create_wallet(request: WalletCreate, credentials: KeystoreCredentialStore = Depends(get_credential_store)):
    try:
        address = credentials.create_account(request.password)
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return WalletItem(address=address, unlocked=False)


@router.post("/wallets/{address}/unlock", response_model=WalletItem)
def unlock_wallet(
    address: str,
    request: WalletUnlock,
    credentials: KeystoreCredentialStore = Depends(get_credential_store),
):
    try:
        credentials.unlock(address, request.password)
    except CredentialError as e:
        logger.warning("Wallet unlock failed", address=address, error=e.message)
        raise HTTPException(status_code=400, detail=e.message)
    return WalletItem(address=address, unlocked=True)
