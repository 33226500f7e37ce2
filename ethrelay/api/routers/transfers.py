from fastapi import APIRouter, Depends, HTTPException
import structlog

from ethrelay.api.dependencies import get_transfer_service
from ethrelay.api.models import ERC20TransferRequest, EthTransferRequest, TransferResponse
from ethrelay.services.transfer_service import TransferService
from ethrelay.utils.exceptions import CredentialError, TransferError

logger = structlog.get_logger()

router = APIRouter(prefix="/v1/transfers")


@router.post("/eth", response_model=TransferResponse)
def send_eth(request: EthTransferRequest, transfers: TransferService = Depends(get_transfer_service)):
    try:
        tx_hash = transfers.send_eth_transfer(
            request.from_address,
            request.to_address,
            request.value,
            request.gas_limit,
            request.gas_price,
        )
    except CredentialError as e:
        raise HTTPException(status_code=403, detail=e.message)
    except TransferError as e:
        logger.error("ETH transfer failed", from_address=request.from_address, error=e.message)
        raise HTTPException(status_code=400, detail=e.message)
    return TransferResponse(tx_hash=tx_hash)


@router.post("/erc20", response_model=TransferResponse)
def send_erc20(request: ERC20TransferRequest, transfers: TransferService = Depends(get_transfer_service)):
    try:
        tx_hash = transfers.send_erc20_transfer(
            request.from_address,
            request.contract_address,
            request.receiver,
            request.value,
            request.gas_limit,
            request.gas_price,
            request.decimals,
        )
    except CredentialError as e:
        raise HTTPException(status_code=403, detail=e.message)
    except TransferError as e:
        logger.error(
            "ERC-20 transfer failed",
            from_address=request.from_address,
            contract_address=request.contract_address,
            error=e.message,
        )
        raise HTTPException(status_code=400, detail=e.message)
    return TransferResponse(tx_hash=tx_hash)
