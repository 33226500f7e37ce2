"""
Quantity encoding helpers for Ethereum JSON-RPC.
"""

from typing import Optional, Union


def hex_to_int(value: Optional[Union[str, int]]) -> Optional[int]:
    """Decode a JSON-RPC quantity.

    Accepts "0x"-prefixed hex as returned by the node and plain decimal
    strings as stored in the database.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    value = value.strip()
    if value.startswith(("0x", "0X")):
        digits = value[2:]
        return int(digits, 16) if digits else 0
    return int(value, 10)


def int_to_hex(value: int) -> str:
    if value < 0:
        raise ValueError(f"Quantity cannot be negative: {value}")
    return hex(value)
