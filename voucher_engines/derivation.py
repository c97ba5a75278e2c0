"""
Draft derivation - re-run line, tax and total derivation on a draft.

Every reducer in voucher_kernel.domain.voucher sets inputs only; this module
is the single place derived fields are written. Running it twice on an
unchanged draft returns an equal draft.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable

from voucher_engines.line_items import LineItemCalculator
from voucher_engines.tax import TaxRuleEngine
from voucher_kernel.domain.jurisdiction import JurisdictionRule, RegionPair
from voucher_kernel.domain.values import ZERO
from voucher_kernel.domain.voucher import (
    EntryMode,
    TaxEntry,
    VoucherDraft,
    with_derived,
)

LedgerResolver = Callable[[str], "str | None"]


def derive_draft(
    draft: VoucherDraft,
    rule: JurisdictionRule,
    company_region: str | None = None,
    *,
    allow_negative_quantity: bool = False,
    resolve_ledger: LedgerResolver | None = None,
) -> VoucherDraft:
    """
    Recompute stock line amounts and tax entries from scratch.

    Tax entries exist only for item invoices on tax-bearing voucher types.
    Lines without a tax rate use the jurisdiction default on those types
    and zero elsewhere. When resolve_ledger is given, tax entry ledger names
    are mapped to ledger ids through it.
    """
    profile = draft.profile
    calculator = LineItemCalculator(rule.minor_unit_digits, allow_negative_quantity)
    default_rate = rule.default_rate if profile.has_tax else ZERO

    stock = tuple(
        calculator.derive(line, default_rate, i)
        for i, line in enumerate(draft.stock_entries)
    )

    taxes: tuple[TaxEntry, ...] = ()
    if draft.entry_mode is EntryMode.ITEM_INVOICE and profile.has_tax:
        engine = TaxRuleEngine(rule)
        taxes = engine.compute_voucher_taxes(
            ((s.amount, calculator.effective_tax_rate(s, default_rate)) for s in stock),
            RegionPair(company_region, draft.supply_region),
            profile.tax_flow,
        )
        if resolve_ledger is not None:
            taxes = tuple(
                dataclasses.replace(t, ledger_ref=resolve_ledger(t.ledger_name))
                if t.ledger_name
                else t
                for t in taxes
            )

    return with_derived(draft, stock_entries=stock, tax_entries=taxes)
