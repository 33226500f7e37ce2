from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
import structlog

from ethrelay.api.dependencies import get_chain_query_service, get_rpc_service
from ethrelay.api.models import BlockItem, RelayStatus, TransactionItem
from ethrelay.services.chain_query_service import ChainQueryService
from ethrelay.services.eth_rpc import EthereumRPCService

logger = structlog.get_logger()

router = APIRouter(prefix="/v1")


@router.get("/health")
async def get_health_check():
    return {"status": "healthy", "message": "eth-relay API is running"}


@router.get("/status", response_model=RelayStatus)
def get_status(
    query_service: ChainQueryService = Depends(get_chain_query_service),
    rpc: EthereumRPCService = Depends(get_rpc_service),
):
    try:
        return RelayStatus(**query_service.get_status(rpc))
    except Exception as e:
        logger.error("Failed to get relay status", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/blocks", response_model=List[BlockItem])
async def get_blocks(
    from_height: int = Query(..., ge=0, description="First height (inclusive)"),
    to_height: int = Query(..., ge=0, description="Last height (inclusive)"),
    include_forked: bool = Query(False, description="Also return blocks flagged as forked"),
    query_service: ChainQueryService = Depends(get_chain_query_service),
):
    try:
        blocks = query_service.get_blocks(from_height, to_height, include_forked)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [BlockItem(**block) for block in blocks]


@router.get("/blocks/{block_hash}", response_model=BlockItem)
async def get_block(
    block_hash: str,
    query_service: ChainQueryService = Depends(get_chain_query_service),
):
    block = query_service.get_block(block_hash)
    if block is None:
        raise HTTPException(status_code=404, detail="Block not found")
    return BlockItem(**block)


@router.get("/blocks/{block_hash}/transactions", response_model=List[TransactionItem])
async def get_block_transactions(
    block_hash: str,
    query_service: ChainQueryService = Depends(get_chain_query_service),
):
    transactions = query_service.get_block_transactions(block_hash)
    if transactions is None:
        raise HTTPException(status_code=404, detail="Block not found")
    return [TransactionItem(**tx) for tx in transactions]


@router.get("/transactions/{tx_hash}", response_model=List[TransactionItem])
async def get_transaction(
    tx_hash: str,
    query_service: ChainQueryService = Depends(get_chain_query_service),
):
    """All stored rows for a transaction hash, canonical block first"""
    transactions = query_service.get_transaction(tx_hash)
    if not transactions:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return [TransactionItem(**tx) for tx in transactions]
