from decimal import Decimal

import pytest

from paycall.amounts import (
    DEFAULT_ATOMIC_AMOUNT,
    atomic_to_usdc,
    format_usdc,
    normalize_amount,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0.03", 30_000),
        ("30000", 30_000),
        (None, DEFAULT_ATOMIC_AMOUNT),
        (0.01, 10_000),
        (0.02, 20_000),
        (30_000, 30_000),
        (30_000.9, 30_000),
        ("1.5", 1_500_000),
        ("0.0000019", 1),
        (" 250 ", 250),
    ],
)
def test_normalize_amount(raw, expected):
    assert normalize_amount(raw) == expected


def test_decimal_strings_do_not_lose_precision():
    # 0.29 * 1e6 is 289999.99999999994 in binary floating point
    assert normalize_amount("0.29") == 290_000
    assert normalize_amount(0.29) == 290_000


@pytest.mark.parametrize("raw", ["abc", "1.2.3", "", "nan", [1], {"a": 1}, True, "-5", -1])
def test_garbage_falls_back_to_default(raw):
    assert normalize_amount(raw) == DEFAULT_ATOMIC_AMOUNT


def test_zero_falls_back_to_default():
    assert normalize_amount(0) == normalize_amount("0") == normalize_amount("0.0") == 10_000
    assert normalize_amount(0.0000001) == 10_000


def test_usdc_helpers():
    assert atomic_to_usdc(30_000) == Decimal("0.03")
    assert format_usdc(30_000) == "0.0300"
