from pydantic import BaseModel, Field
from typing import List, Optional


class OrmConfig(BaseModel):
    class Config:
        from_attributes = True


class RelayStatus(BaseModel):
    last_block_height: Optional[int] = Field(None, description="Height of the most recent non-forked block")
    last_block_hash: Optional[str] = Field(None, description="Hash of the most recent non-forked block")
    node_tip_height: Optional[int] = Field(None, description="Node's latest block number, None if unreachable")
    blocks_behind: Optional[int] = Field(None, description="Node tip minus last stored height")
    node_connection: Optional[str] = Field(None, description="RPC connection state: healthy, degraded or failed")


class BlockItem(OrmConfig):
    block_hash: str
    parent_hash: str
    block_number: int
    create_time: int = Field(description="Block timestamp (unix seconds)")
    fork: bool = Field(description="True once the block left the canonical chain")


class TransactionItem(OrmConfig):
    hash: str
    nonce: int
    block_hash: str
    block_number: int
    transaction_index: int
    from_address: str
    to_address: Optional[str] = Field(None, description="None for contract creation")
    value: str = Field(description="Value in wei (decimal string)")
    gas_price: Optional[str] = Field(None, description="Gas price in wei (decimal string)")
    gas: str
    input: Optional[str] = None
    fork: bool = Field(False, description="Fork flag of the containing block")


class BalanceItem(BaseModel):
    address: str
    balance: str = Field(description="Balance in wei (decimal string)")


class AddressList(BaseModel):
    addresses: List[str] = Field(min_length=1)


class ERC20BalanceQuery(BaseModel):
    contract_address: str
    user_address: str
    contract_decimals: int = Field(18, ge=0, le=77)


class ERC20BalanceList(BaseModel):
    requests: List[ERC20BalanceQuery] = Field(min_length=1)


class ERC20BalanceItem(BaseModel):
    contract_address: str
    user_address: str
    contract_decimals: int
    balance: Optional[str] = Field(None, description="Raw balance in base units, None if the call returned no data")


class WalletCreate(BaseModel):
    password: str


class WalletUnlock(BaseModel):
    password: str


class WalletItem(BaseModel):
    address: str
    unlocked: bool


class EthTransferRequest(BaseModel):
    from_address: str
    to_address: str
    value: str = Field(description="Amount in ether, e.g. '0.25'")
    gas_limit: int = Field(21000, gt=0)
    gas_price: int = Field(gt=0, description="Gas price in wei")


class ERC20TransferRequest(BaseModel):
    from_address: str
    contract_address: str
    receiver: str
    value: str = Field(description="Token amount in whole units, e.g. '12.5'")
    decimals: int = Field(18, ge=0, le=77)
    gas_limit: int = Field(100000, gt=0)
    gas_price: int = Field(gt=0, description="Gas price in wei")


class TransferResponse(BaseModel):
    tx_hash: str
