"""
ERC-20 call data and amount helpers.
All amounts are handled as strings/ints to avoid float rounding.
"""

import re

from eth_utils import is_address, to_checksum_address

TRANSFER_METHOD_ID = "0xa9059cbb"
BALANCE_OF_METHOD_ID = "0x70a08231"
ETH_DECIMALS = 18

_AMOUNT_RE = re.compile(r"^[0-9]+(\.[0-9]*)?$")


def to_base_units(value: str, decimals: int) -> int:
    """Multiply a human readable amount by 10**decimals without floats.

    "0.5" with 18 decimals -> 500000000000000000

    Raises:
        ValueError: On malformed amounts or more fractional digits than decimals
    """
    value = str(value).strip()
    if not _AMOUNT_RE.match(value):
        raise ValueError(f"Invalid amount: {value}")

    if "." in value:
        whole, fraction = value.split(".")
    else:
        whole, fraction = value, ""

    if len(fraction) > decimals:
        raise ValueError(f"Amount {value} has more than {decimals} decimal places")

    return int(whole + fraction.ljust(decimals, "0"))


def _pad_word(hex_digits: str) -> str:
    if len(hex_digits) > 64:
        raise ValueError("Value does not fit in a 32-byte word")
    return hex_digits.rjust(64, "0")


def encode_address(address: str) -> str:
    if not is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return _pad_word(to_checksum_address(address)[2:].lower())


def encode_uint256(value: int) -> str:
    if value < 0:
        raise ValueError(f"uint256 cannot be negative: {value}")
    return _pad_word(format(value, "x"))


def build_erc20_transfer_data(receiver: str, value: str, decimals: int) -> str:
    """Build call data for transfer(address,uint256)."""
    amount = to_base_units(value, decimals)
    return TRANSFER_METHOD_ID + encode_address(receiver) + encode_uint256(amount)


def build_balance_of_data(owner: str) -> str:
    """Build call data for balanceOf(address)."""
    return BALANCE_OF_METHOD_ID + encode_address(owner)
