"""
Persisted chain store backed by SQLAlchemy.

The scanner is the only writer of eth_block / eth_transaction rows; API
readers share the same tables and rely on the database's isolation.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

import structlog
from sqlalchemy import desc
from sqlalchemy.orm import Session

from ethrelay.models.block import Block
from ethrelay.models.transaction import Transaction
from .eth_rpc import FullBlock


@dataclass(frozen=True)
class BlockDescriptor:
    """Detached view of an accepted block, safe to keep outside a session."""

    hash: str
    parent_hash: str
    height: int
    timestamp: int

    @classmethod
    def from_model(cls, block: Block) -> "BlockDescriptor":
        return cls(
            hash=block.block_hash,
            parent_hash=block.parent_hash,
            height=int(block.block_number),
            timestamp=int(block.create_time),
        )

    @classmethod
    def from_full_block(cls, block: FullBlock) -> "BlockDescriptor":
        return cls(
            hash=block.hash,
            parent_hash=block.parent_hash,
            height=block.number,
            timestamp=block.timestamp,
        )


class ChainStore:
    """Block and transaction persistence with explicit transaction scopes"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self.logger = structlog.get_logger()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Commit on success, roll back on any error, always release the session."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def most_recent_non_forked_block(self, session: Session) -> Optional[Block]:
        return (
            session.query(Block)
            .filter(Block.fork.is_(False))
            .order_by(desc(Block.create_time), desc(Block.block_number))
            .first()
        )

    def get_block_by_hash(self, session: Session, block_hash: str) -> Optional[Block]:
        return session.query(Block).filter_by(block_hash=block_hash).first()

    def get_blocks_by_height_range(
        self,
        session: Session,
        from_height: int,
        to_height: int,
        include_forked: bool = False,
    ) -> List[Block]:
        query = session.query(Block).filter(
            Block.block_number >= from_height,
            Block.block_number <= to_height,
        )
        if not include_forked:
            query = query.filter(Block.fork.is_(False))
        return query.order_by(Block.block_number, Block.id).all()

    def insert_block_if_absent(self, session: Session, full_block: FullBlock) -> Tuple[Block, bool]:
        """
        Insert the block keyed by hash unless it is already stored.

        Returns:
            (block, inserted)
        """
        existing = self.get_block_by_hash(session, full_block.hash)
        if existing is not None:
            return existing, False

        block = Block(
            block_hash=full_block.hash,
            parent_hash=full_block.parent_hash,
            block_number=full_block.number,
            create_time=full_block.timestamp,
            fork=False,
        )
        session.add(block)
        session.flush()
        return block, True

    def insert_transactions(self, session: Session, full_block: FullBlock) -> int:
        """
        Insert the block's transactions, skipping rows already stored for this block.

        Returns:
            Number of rows inserted
        """
        if not full_block.transactions:
            return 0

        stored = {
            tx_hash
            for (tx_hash,) in session.query(Transaction.hash).filter(Transaction.block_hash == full_block.hash)
        }

        rows = []
        for index, tx in enumerate(full_block.transactions):
            if tx.hash in stored:
                continue
            stored.add(tx.hash)
            rows.append(
                Transaction(
                    hash=tx.hash,
                    nonce=tx.nonce,
                    block_hash=full_block.hash,
                    block_number=full_block.number,
                    transaction_index=tx.transaction_index if tx.transaction_index is not None else index,
                    from_address=tx.from_address,
                    to_address=tx.to_address,
                    value=str(tx.value),
                    gas_price=str(tx.gas_price) if tx.gas_price is not None else None,
                    gas=str(tx.gas),
                    input=tx.input,
                )
            )

        session.add_all(rows)
        session.flush()
        return len(rows)

    def mark_fork_range(self, session: Session, from_height_exclusive: int, to_height_inclusive: int) -> int:
        """
        Flag every stored block with height in (from, to] as forked.

        Returns:
            Number of blocks flagged
        """
        return (
            session.query(Block)
            .filter(
                Block.block_number > from_height_exclusive,
                Block.block_number <= to_height_inclusive,
                Block.fork.is_(False),
            )
            .update({Block.fork: True}, synchronize_session="fetch")
        )

    def reinstate_block(self, session: Session, block: Block) -> None:
        """Clear the fork flag of a block that is canonical again, forking its siblings."""
        (
            session.query(Block)
            .filter(
                Block.block_number == block.block_number,
                Block.block_hash != block.block_hash,
                Block.fork.is_(False),
            )
            .update({Block.fork: True}, synchronize_session="fetch")
        )
        block.fork = False
        session.flush()
        self.logger.info(
            "Block reinstated on canonical chain",
            height=block.block_number,
            block_hash=block.block_hash,
        )

    def get_transactions_by_block(self, session: Session, block_hash: str) -> List[Transaction]:
        return (
            session.query(Transaction)
            .filter(Transaction.block_hash == block_hash)
            .order_by(Transaction.transaction_index)
            .all()
        )

    def get_transactions_by_hash(self, session: Session, tx_hash: str) -> List[Tuple[Transaction, bool]]:
        """
        Stored rows for a transaction hash with the fork flag of their block,
        canonical rows first.
        """
        rows = (
            session.query(Transaction, Block.fork)
            .join(Block, Block.block_hash == Transaction.block_hash)
            .filter(Transaction.hash == tx_hash)
            .order_by(Block.fork, desc(Transaction.block_number))
            .all()
        )
        return [(tx, bool(fork)) for tx, fork in rows]
