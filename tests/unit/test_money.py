"""
Unit tests for the Money value object.

Verifies:
- Float constructor prohibition
- Currency tag normalization and mismatch detection
- Arithmetic and comparison semantics
"""

from decimal import Decimal

import pytest

from invoice_kernel.domain.currency import CurrencyRegistry
from invoice_kernel.domain.values import Money
from invoice_kernel.exceptions import CurrencyMismatchError


class TestMoneyConstruction:
    """Tests for Money construction and validation."""

    def test_from_string(self):
        money = Money.of("100.50", "AED")
        assert money.amount == Decimal("100.50")
        assert money.currency == "AED"

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            Money.of(100.5, "AED")

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            Money.of("NaN", "AED")

    def test_unparseable_rejected(self):
        with pytest.raises(ValueError):
            Money.of("ten dirhams", "AED")

    def test_currency_tag_normalized(self):
        assert Money.of("1", " aed ").currency == "AED"

    def test_empty_currency_rejected(self):
        with pytest.raises(ValueError):
            Money.of("1", "  ")


class TestMoneyArithmetic:
    """Tests for arithmetic between Money values."""

    def test_add_and_subtract(self):
        a = Money.of("1000.00", "AED")
        b = Money.of("250.25", "AED")
        assert (a + b).amount == Decimal("1250.25")
        assert (a - b).amount == Decimal("749.75")

    def test_negation_is_exact(self):
        assert (-Money.of("200.00", "AED")).amount == Decimal("-200.00")

    def test_mixed_currency_addition_raises(self):
        with pytest.raises(CurrencyMismatchError) as exc_info:
            Money.of("1", "AED") + Money.of("1", "USD")
        assert exc_info.value.code == "CURRENCY_MISMATCH"

    def test_mixed_currency_comparison_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "AED") < Money.of("2", "USD")

    def test_max(self):
        zero = Money.zero("AED")
        assert Money.of("-5", "AED").max(zero) == zero
        assert Money.of("5", "AED").max(zero) == Money.of("5", "AED")

    def test_round_uses_currency_precision(self):
        assert Money.of("10.555", "AED").round().amount == Decimal("10.56")
        assert Money.of("10.5555", "KWD").round().amount == Decimal("10.556")
        assert Money.of("10.5", "JPY").round().amount == Decimal("11")


class TestCurrencyRegistry:
    """Tests for minor-unit lookup."""

    def test_known_currencies(self):
        assert CurrencyRegistry.get_minor_unit("AED") == Decimal("0.01")
        assert CurrencyRegistry.get_minor_unit("JPY") == Decimal("1")
        assert CurrencyRegistry.get_minor_unit("BHD") == Decimal("0.001")

    def test_unknown_currency_defaults_to_two_places(self):
        assert CurrencyRegistry.get_minor_unit("XYZ") == Decimal("0.01")
