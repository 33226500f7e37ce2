"""
Reorg handling service for the Ethereum relay.

This service locates the fork point of a chain reorganization and flags
the invalidated range of persisted blocks. Forked blocks are never deleted.
"""

from typing import Callable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ethrelay.config import settings
from ethrelay.models.block import Block
from ethrelay.utils.exceptions import BlockNotFoundError, ForkResolutionError, RetryTimeoutError

from .chain_store import BlockDescriptor, ChainStore
from .eth_rpc import FullBlock


class ReorgHandler:
    """Handle blockchain reorganizations"""

    def __init__(
        self,
        store: ChainStore,
        fetch_block_by_hash: Callable[[str], FullBlock],
        max_depth: Optional[int] = None,
    ):
        """
        Initialize the reorg handler.

        Args:
            store: Persisted chain store
            fetch_block_by_hash: Gateway lookup, already wrapped in the caller's retry policy
            max_depth: Maximum number of gateway hops when walking back to the fork point,
                and of forked ancestors reinstated below it
        """
        self.store = store
        self.fetch_block_by_hash = fetch_block_by_hash
        self.max_depth = max_depth if max_depth is not None else settings.MAX_FORK_DEPTH
        self.logger = structlog.get_logger()

    @staticmethod
    def is_fork(last_accepted: BlockDescriptor, block_hash: str, parent_hash: str) -> bool:
        """
        A block continues the accepted chain when it is the accepted block
        itself (re-scan of the same height) or its direct child.
        """
        return last_accepted.hash not in (block_hash, parent_hash)

    def find_fork_point(self, session: Session, parent_hash: str) -> Block:
        """
        Walk back from parent_hash until a block already persisted is found.

        Hashes unknown to the store are resolved through the gateway and the
        walk continues with their parent.

        Raises:
            ForkResolutionError: If the gateway cannot provide an ancestor or
                the walk exceeds max_depth
        """
        current_hash = parent_hash

        for depth in range(self.max_depth + 1):
            stored = self.store.get_block_by_hash(session, current_hash)
            if stored is not None and stored.block_number is not None:
                self.logger.info(
                    "Found fork point",
                    fork_height=stored.block_number,
                    fork_hash=stored.block_hash,
                    gateway_hops=depth,
                )
                return stored

            try:
                ancestor = self.fetch_block_by_hash(current_hash)
            except (BlockNotFoundError, RetryTimeoutError) as e:
                raise ForkResolutionError(
                    f"Fork point lookup failed at {current_hash}, block scanner needs a restart: {e}"
                )

            self.logger.debug(
                "Ancestor not persisted, walking back",
                height=ancestor.number,
                block_hash=ancestor.hash,
                parent_hash=ancestor.parent_hash,
            )
            current_hash = ancestor.parent_hash

        raise ForkResolutionError(
            f"No persisted ancestor within {self.max_depth} blocks of {parent_hash}, block scanner needs a restart"
        )

    def forked_ancestry(self, session: Session, block: Block) -> List[Block]:
        """
        Stored blocks flagged as forked from block down to its nearest
        non-forked stored ancestor, oldest first.

        The walk follows stored parent hashes and ends early at the oldest
        stored block when its parent was never persisted.

        Raises:
            ForkResolutionError: If more than max_depth forked ancestors are stored
        """
        path = []
        current = block
        while current is not None and current.fork:
            if len(path) >= self.max_depth:
                raise ForkResolutionError(
                    f"More than {self.max_depth} forked ancestors below {block.block_hash}, "
                    "block scanner needs a restart"
                )
            path.append(current)
            current = self.store.get_block_by_hash(session, current.parent_hash)

        path.reverse()
        return path

    def handle_fork(self, session: Session, new_block: Block, last_accepted: BlockDescriptor) -> BlockDescriptor:
        """
        Resolve the fork point for new_block and flag the invalidated range.

        A fork point that sits on a previously abandoned branch is reinstated
        together with its forked ancestors, forking their same-height siblings.
        Every persisted block above the fork point up to the new block (or the
        last accepted block, whichever is higher) is flagged as forked.

        Returns:
            The fork point, which becomes the last accepted block
        """
        self.logger.warning(
            "Fork detected",
            height=new_block.block_number,
            block_hash=new_block.block_hash,
            parent_hash=new_block.parent_hash,
            last_accepted_height=last_accepted.height,
            last_accepted_hash=last_accepted.hash,
        )

        fork_point = self.find_fork_point(session, new_block.parent_hash)
        for block in self.forked_ancestry(session, fork_point):
            self.store.reinstate_block(session, block)

        to_height = max(int(new_block.block_number), last_accepted.height)
        flagged = self.store.mark_fork_range(session, fork_point.block_number, to_height)

        self.logger.warning(
            "Forked blocks flagged",
            from_height_exclusive=fork_point.block_number,
            to_height_inclusive=to_height,
            flagged_blocks=flagged,
        )

        return BlockDescriptor.from_model(fork_point)
