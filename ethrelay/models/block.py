from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Index
from sqlalchemy.sql import func
from .base import Base


class Block(Base):
    __tablename__ = "eth_block"

    id = Column(Integer, primary_key=True, autoincrement=True)
    block_hash = Column(String(66), unique=True, nullable=False)
    parent_hash = Column(String(66), nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False, index=True)
    create_time = Column(BigInteger, nullable=False)  # block timestamp, seconds since epoch
    fork = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(DateTime, default=func.now())

    __table_args__ = (Index("ix_eth_block_fork_create_time", "fork", "create_time"),)

    def __repr__(self):
        return f"Block(number={self.block_number}, hash={self.block_hash}, fork={self.fork})"
