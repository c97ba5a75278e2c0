"""
Line Item Calculator - keep each stock line internally consistent.

Derives amount = quantity x rate, tax_amount = amount x tax_rate / 100 and
total_amount = amount + tax_amount. Each derived field is rounded once at the
currency's minor unit (round-half-to-even). Pure functions, no I/O.

Usage:
    from voucher_engines.line_items import LineItemCalculator
    from voucher_kernel.domain.voucher import StockEntry
    from decimal import Decimal

    calc = LineItemCalculator(minor_unit_digits=2)
    line = calc.derive(StockEntry(quantity=Decimal("5"), rate=Decimal("100"),
                                  tax_rate=Decimal("18")))
    print(line.amount, line.tax_amount, line.total_amount)  # 500.00 90.00 590.00
"""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from typing import Any

from voucher_engines.tracer import traced_engine
from voucher_kernel.domain.values import HUNDRED, ZERO, round_minor
from voucher_kernel.domain.voucher import StockEntry, validate_stock_inputs

INPUT_FIELDS = frozenset(
    {
        "item_name",
        "item_ref",
        "quantity",
        "rate",
        "tax_rate",
        "godown_ref",
        "batch",
        "serial",
    }
)
DERIVED_FIELDS = frozenset({"amount", "tax_amount", "total_amount"})

_AMOUNT_INPUTS = frozenset({"quantity", "rate"})


class LineItemCalculator:
    """
    Derives monetary fields of a stock line from its inputs.

    Negative quantities are rejected unless allow_negative_quantity is set
    explicitly (stock returns). Negative rates and tax rates are always
    rejected.
    """

    def __init__(
        self,
        minor_unit_digits: int = 2,
        allow_negative_quantity: bool = False,
    ):
        self.minor_unit_digits = minor_unit_digits
        self.allow_negative_quantity = allow_negative_quantity

    @staticmethod
    def effective_tax_rate(line: StockEntry, default_tax_rate: Decimal = ZERO) -> Decimal:
        return line.tax_rate if line.tax_rate is not None else default_tax_rate

    def amount_for(self, quantity: Decimal, rate: Decimal) -> Decimal:
        return round_minor(quantity * rate, self.minor_unit_digits)

    def tax_for(self, amount: Decimal, tax_rate: Decimal) -> Decimal:
        return round_minor(amount * tax_rate / HUNDRED, self.minor_unit_digits)

    def _validate(self, line: StockEntry, index: int | None) -> None:
        validate_stock_inputs(
            line.quantity,
            line.rate,
            line.tax_rate,
            allow_negative_quantity=self.allow_negative_quantity,
            index=index,
        )

    @traced_engine("line_item", "1.0", fingerprint_fields=("line", "default_tax_rate"))
    def derive(
        self,
        line: StockEntry,
        default_tax_rate: Decimal = ZERO,
        index: int | None = None,
    ) -> StockEntry:
        """Recompute every derived field from the line's inputs."""
        self._validate(line, index)
        amount = self.amount_for(line.quantity, line.rate)
        tax_amount = self.tax_for(amount, self.effective_tax_rate(line, default_tax_rate))
        return dataclasses.replace(
            line,
            amount=amount,
            tax_amount=tax_amount,
            total_amount=amount + tax_amount,
        )

    def update(
        self,
        line: StockEntry,
        *,
        default_tax_rate: Decimal = ZERO,
        index: int | None = None,
        **changes: Any,
    ) -> StockEntry:
        """
        Apply input changes and re-derive only what depends on them.

        quantity or rate -> amount, tax_amount, total_amount.
        tax_rate -> tax_amount, total_amount.
        Anything else leaves derived fields untouched.

        Raises:
            TypeError: If a derived or unknown field is passed.
        """
        derived = DERIVED_FIELDS & changes.keys()
        if derived:
            raise TypeError(f"Derived fields cannot be set directly: {sorted(derived)}")
        unknown = changes.keys() - INPUT_FIELDS
        if unknown:
            raise TypeError(f"Unknown stock line fields: {sorted(unknown)}")

        updated = dataclasses.replace(line, **changes)
        self._validate(updated, index)

        if _AMOUNT_INPUTS & changes.keys():
            return self.derive(updated, default_tax_rate, index)
        if "tax_rate" in changes:
            tax_amount = self.tax_for(
                updated.amount, self.effective_tax_rate(updated, default_tax_rate)
            )
            return dataclasses.replace(
                updated, tax_amount=tax_amount, total_amount=updated.amount + tax_amount
            )
        return updated
