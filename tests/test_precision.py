"""Tests for fixed-point precision helpers."""

from decimal import Decimal

import pytest

from stakeflow_core.precision import (
    ACC_PRECISION,
    UNITS_PER_TOKEN,
    format_amount,
    index_increment,
    share_of,
    tokens_to_units,
    units_to_tokens,
)


class TestIndexMath:
    def test_precision_scale(self):
        assert ACC_PRECISION == 10 ** 12

    def test_share_of(self):
        assert share_of(100, 100 * ACC_PRECISION) == 10_000

    def test_share_of_floors(self):
        assert share_of(1, ACC_PRECISION - 1) == 0

    def test_index_increment(self):
        assert index_increment(10_000, 100) == 100 * ACC_PRECISION

    def test_index_increment_empty_pool(self):
        assert index_increment(10_000, 0) == 0

    def test_small_balance_not_erased(self):
        # 1 unit reward over a huge pool still moves the index
        inc = index_increment(1, 10 ** 9)
        assert inc == 1000
        assert share_of(10 ** 9, inc) == 1


class TestConversions:
    def test_units_to_tokens(self):
        assert units_to_tokens(150_000_000) == Decimal("1.5")

    def test_tokens_to_units(self):
        assert tokens_to_units("1.5") == 150_000_000
        assert tokens_to_units(2) == 2 * UNITS_PER_TOKEN

    def test_tokens_to_units_rejects_dust(self):
        with pytest.raises(ValueError):
            tokens_to_units("0.000000001")

    def test_format_amount(self):
        assert format_amount(1) == "0.00000001 SFT"
        assert format_amount(UNITS_PER_TOKEN, "XYZ") == "1.00000000 XYZ"
