from .base import Base
from .block import Block
from .transaction import Transaction

__all__ = [
    "Base",
    "Block",
    "Transaction",
]
