from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ethrelay.models.block import Block
from ethrelay.models.transaction import Transaction
from .chain_store import ChainStore
from .eth_rpc import EthereumRPCService

logger = structlog.get_logger()

MAX_BLOCK_RANGE = 1000


class ChainQueryService:
    """Read side over the persisted chain for the HTTP API"""

    def __init__(self, db_session: Session, store: Optional[ChainStore] = None):
        self.db = db_session
        self.store = store or ChainStore(lambda: db_session)

    @staticmethod
    def block_to_dict(block: Block) -> Dict:
        return {
            "block_hash": block.block_hash,
            "parent_hash": block.parent_hash,
            "block_number": int(block.block_number),
            "create_time": int(block.create_time),
            "fork": bool(block.fork),
        }

    @staticmethod
    def transaction_to_dict(tx: Transaction, fork: bool = False) -> Dict:
        return {
            "hash": tx.hash,
            "nonce": int(tx.nonce),
            "block_hash": tx.block_hash,
            "block_number": int(tx.block_number),
            "transaction_index": tx.transaction_index,
            "from_address": tx.from_address,
            "to_address": tx.to_address,
            "value": tx.value,
            "gas_price": tx.gas_price,
            "gas": tx.gas,
            "input": tx.input,
            "fork": fork,
        }

    def get_status(self, rpc: Optional[EthereumRPCService] = None) -> Dict:
        """Latest accepted block and, when the node answers, how far behind it we are and the
        node connection state"""
        latest = self.store.most_recent_non_forked_block(self.db)
        last_height = int(latest.block_number) if latest else None

        node_tip = None
        node_connection = None
        if rpc is not None:
            # health check is rate limited inside the service
            if rpc.test_connection():
                try:
                    node_tip = rpc.get_latest_block_number()
                except Exception as e:
                    logger.warning("Node tip unavailable for status", error=str(e))
            node_connection = rpc.get_connection_status()["state"]

        blocks_behind = None
        if node_tip is not None and last_height is not None:
            blocks_behind = max(node_tip - last_height, 0)

        return {
            "last_block_height": last_height,
            "last_block_hash": latest.block_hash if latest else None,
            "node_tip_height": node_tip,
            "blocks_behind": blocks_behind,
            "node_connection": node_connection,
        }

    def get_blocks(self, from_height: int, to_height: int, include_forked: bool = False) -> List[Dict]:
        if to_height < from_height:
            raise ValueError("to_height must not be lower than from_height")
        if to_height - from_height + 1 > MAX_BLOCK_RANGE:
            raise ValueError(f"Block range is limited to {MAX_BLOCK_RANGE} blocks")

        blocks = self.store.get_blocks_by_height_range(self.db, from_height, to_height, include_forked)
        return [self.block_to_dict(block) for block in blocks]

    def get_block(self, block_hash: str) -> Optional[Dict]:
        block = self.store.get_block_by_hash(self.db, block_hash)
        return self.block_to_dict(block) if block else None

    def get_block_transactions(self, block_hash: str) -> Optional[List[Dict]]:
        block = self.store.get_block_by_hash(self.db, block_hash)
        if block is None:
            return None
        return [
            self.transaction_to_dict(tx, bool(block.fork))
            for tx in self.store.get_transactions_by_block(self.db, block_hash)
        ]

    def get_transaction(self, tx_hash: str) -> List[Dict]:
        return [self.transaction_to_dict(tx, fork) for tx, fork in self.store.get_transactions_by_hash(self.db, tx_hash)]
