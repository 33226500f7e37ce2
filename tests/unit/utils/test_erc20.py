"""
Unit tests for ERC-20 call data and amount helpers
"""

import pytest

from ethrelay.utils.erc20 import (
    build_balance_of_data,
    build_erc20_transfer_data,
    encode_address,
    encode_uint256,
    to_base_units,
)

RECEIVER = "0x" + "ab" * 20


class TestToBaseUnits:

    @pytest.mark.parametrize(
        "value, decimals, expected",
        [
            ("1", 18, 10**18),
            ("0.5", 18, 5 * 10**17),
            ("12.", 6, 12_000_000),
            ("0.000001", 6, 1),
            ("100", 0, 100),
        ],
    )
    def test_valid_amounts(self, value, decimals, expected):
        assert to_base_units(value, decimals) == expected

    @pytest.mark.parametrize("value", ["", "-1", "1e18", "1.2.3", ".5", "abc"])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValueError, match="Invalid amount"):
            to_base_units(value, 18)

    def test_too_many_decimals(self):
        with pytest.raises(ValueError, match="decimal places"):
            to_base_units("0.1234567", 6)


class TestCallData:

    def test_encode_address_is_padded_lowercase(self):
        word = encode_address(RECEIVER)
        assert len(word) == 64
        assert word == "0" * 24 + ("ab" * 20)

    def test_encode_address_invalid(self):
        with pytest.raises(ValueError):
            encode_address("0x1234")

    def test_encode_uint256(self):
        assert encode_uint256(255) == "0" * 62 + "ff"
        with pytest.raises(ValueError):
            encode_uint256(-1)
        with pytest.raises(ValueError):
            encode_uint256(2**256)

    def test_build_erc20_transfer_data(self):
        data = build_erc20_transfer_data(RECEIVER, "2.5", 2)
        assert data == "0xa9059cbb" + "0" * 24 + "ab" * 20 + "0" * 62 + "fa"
        assert len(data) == 10 + 128

    def test_build_balance_of_data(self):
        assert build_balance_of_data(RECEIVER) == "0x70a08231" + "0" * 24 + "ab" * 20
