"""
Voucher Engines - pure calculation functions for voucher drafts.

These engines are stateless, have no I/O, and take all configuration
(jurisdiction rules, currency precision) as parameters.

Engines:
    - line_items: quantity x rate, tax amount and line total
    - tax: jurisdiction-driven tax component split
    - aggregator: journal lines, debit/credit totals, balance check
    - derivation: re-derive every computed field of a draft

Usage:
    from voucher_engines import LineItemCalculator, TaxRuleEngine, VoucherAggregator
"""

from voucher_engines.aggregator import (
    JournalLine,
    LineRole,
    VoucherAggregator,
    VoucherTotals,
)
from voucher_engines.derivation import derive_draft
from voucher_engines.line_items import LineItemCalculator
from voucher_engines.tax import TaxRuleEngine, compute_tax_split
from voucher_engines.tracer import traced_engine

__all__ = [
    "LineItemCalculator",
    "TaxRuleEngine",
    "compute_tax_split",
    "VoucherAggregator",
    "VoucherTotals",
    "JournalLine",
    "LineRole",
    "derive_draft",
    "traced_engine",
]
