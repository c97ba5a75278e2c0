"""Unit tests for Currency precision and balance tolerance."""

from decimal import Decimal

import pytest

from voucher_kernel.domain.values import Currency


class TestCurrency:

    def test_code_normalized(self):
        assert Currency(" inr ").code == "INR"

    @pytest.mark.parametrize("code", ["", "IN", "INRR", "12A"])
    def test_invalid_code(self, code):
        with pytest.raises(ValueError, match="Invalid currency code"):
            Currency(code)

    @pytest.mark.parametrize("digits", [-1, 5])
    def test_invalid_digits(self, digits):
        with pytest.raises(ValueError, match="minor unit digits"):
            Currency("INR", digits)

    def test_minor_unit(self):
        assert Currency("INR").minor_unit == Decimal("0.01")
        assert Currency("BHD", 3).minor_unit == Decimal("0.001")
        assert Currency("JPY", 0).minor_unit == Decimal("1")

    def test_balance_tolerance_is_one_minor_unit(self):
        for digits in range(5):
            currency = Currency("XXX", digits)
            assert currency.balance_tolerance == currency.minor_unit

    def test_round(self):
        assert Currency("INR").round(Decimal("44.995")) == Decimal("45.00")

    def test_equality(self):
        assert Currency("INR") == Currency("inr")
        assert Currency("INR", 2) != Currency("INR", 3)
