"""Block and node builders shared by the scanner, reorg and store tests"""

from ethrelay.services.eth_rpc import FullBlock, RPCTransaction
from ethrelay.utils.exceptions import BlockNotFoundError

BASE_TIMESTAMP = 1_700_000_000


def block_hash(label: str, number: int) -> str:
    return f"0x{label}{number:063x}"


def make_tx(block_label: str, number: int, index: int, value: int = 10**18) -> RPCTransaction:
    return RPCTransaction(
        hash=f"0x{index:02x}{number:062x}",
        nonce=index,
        block_hash=block_hash(block_label, number),
        block_number=number,
        transaction_index=index,
        from_address="0x" + "11" * 20,
        to_address="0x" + "22" * 20,
        value=value,
        gas_price=2 * 10**9,
        gas=21000,
        input="0x",
    )


def make_block(number: int, label: str = "a", parent: str = None, tx_count: int = 0, timestamp: int = None) -> FullBlock:
    """Block `label`-`number` whose parent defaults to the same-label block one below"""
    return FullBlock(
        number=number,
        hash=block_hash(label, number),
        parent_hash=parent if parent is not None else block_hash(label, number - 1),
        timestamp=timestamp if timestamp is not None else BASE_TIMESTAMP + number * 12,
        transactions=[make_tx(label, number, i) for i in range(tx_count)],
    )


class FakeNode:
    """In-memory stand-in for the Ethereum RPC gateway"""

    def __init__(self):
        self.by_number = {}
        self.by_hash = {}
        self.tip = 0
        self.missing = {}
        self.calls = []

    def add(self, block: FullBlock, canonical: bool = True) -> FullBlock:
        self.by_hash[block.hash] = block
        if canonical:
            self.by_number[block.number] = block
            self.tip = max(self.tip, block.number)
        return block

    def add_chain(self, start: int, end: int, label: str = "a", parent: str = None, tx_count: int = 0):
        blocks = []
        for number in range(start, end + 1):
            blocks.append(self.add(make_block(number, label, parent if number == start else None, tx_count)))
        return blocks

    def get_latest_block_number(self) -> int:
        self.calls.append(("get_latest_block_number",))
        return self.tip

    def get_block_by_number(self, height: int) -> FullBlock:
        self.calls.append(("get_block_by_number", height))
        if self.missing.get(height, 0) > 0:
            self.missing[height] -= 1
            raise BlockNotFoundError(height)
        block = self.by_number.get(height)
        if block is None:
            raise BlockNotFoundError(height)
        return block

    def get_block_by_hash(self, hash_: str) -> FullBlock:
        self.calls.append(("get_block_by_hash", hash_))
        block = self.by_hash.get(hash_)
        if block is None:
            raise BlockNotFoundError(hash_)
        return block
