"""
Unit tests for JSON-RPC quantity helpers
"""

import pytest

from ethrelay.utils.hexutil import hex_to_int, int_to_hex


class TestHexUtil:

    def test_hex_to_int(self):
        assert hex_to_int("0x64") == 100
        assert hex_to_int("0X0") == 0
        assert hex_to_int("0x") == 0
        assert hex_to_int(" 0xff ") == 255

    def test_hex_to_int_passthrough(self):
        assert hex_to_int(None) is None
        assert hex_to_int(42) == 42

    def test_hex_to_int_decimal_string(self):
        assert hex_to_int("1000000000000000000") == 10**18

    def test_hex_to_int_invalid(self):
        with pytest.raises(ValueError):
            hex_to_int("0xzz")

    def test_int_to_hex(self):
        assert int_to_hex(0) == "0x0"
        assert int_to_hex(101) == "0x65"

    def test_int_to_hex_negative(self):
        with pytest.raises(ValueError):
            int_to_hex(-1)
