from sqlalchemy import Column, Integer, BigInteger, String, Text, UniqueConstraint
from .base import Base


class Transaction(Base):
    __tablename__ = "eth_transaction"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hash = Column(String(66), index=True, nullable=False)
    nonce = Column(BigInteger, nullable=False)
    block_hash = Column(String(66), index=True, nullable=False)
    block_number = Column(BigInteger, index=True, nullable=False)
    transaction_index = Column(Integer, nullable=False)
    from_address = Column(String(42), index=True, nullable=False)
    to_address = Column(String(42), index=True, nullable=True)  # None for contract creation

    # uint256 quantities kept as decimal strings
    value = Column(String(80), nullable=False)
    gas_price = Column(String(80), nullable=True)
    gas = Column(String(80), nullable=False)

    input = Column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("hash", "block_hash"),)
