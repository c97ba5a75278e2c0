"""
Tax Rule Engine - split tax into jurisdiction components.

Supports dual-component rules (CGST + SGST within a region, IGST across
regions) and flat single-component rules (VAT, sales tax). Pure functions
with no I/O - rules are provided as parameters, nothing is hardcoded here.

Rounding: the tax of a rate group is rounded once at the minor unit. Every
component except the last is rounded individually; the last takes the
remainder, so the components always sum to the group tax exactly.

Usage:
    from voucher_engines.tax import TaxRuleEngine
    from voucher_kernel.domain.jurisdiction import RegionPair

    engine = TaxRuleEngine(rule)              # rule from voucher_config
    entries = engine.compute_tax_split(
        [Decimal("500")], RegionPair("MH", "MH"), Decimal("18"),
    )
    # (TaxEntry(kind="CGST", rate=9, amount=45.00),
    #  TaxEntry(kind="SGST", rate=9, amount=45.00))
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from voucher_engines.tracer import traced_engine
from voucher_kernel.domain.jurisdiction import (
    JurisdictionRule,
    RegionPair,
    TaxComponentDef,
    TaxFlow,
)
from voucher_kernel.domain.values import HUNDRED, ZERO, round_minor
from voucher_kernel.domain.voucher import TaxEntry
from voucher_kernel.exceptions import InvalidTaxRateError, InvalidTaxTableError
from voucher_kernel.logging_config import get_logger

logger = get_logger("engines.tax")


def component_rates(
    components: Sequence[TaxComponentDef], rate: Decimal, jurisdiction: str = ""
) -> tuple[Decimal, ...]:
    """Scale each component's share so that the rates sum to ``rate``."""
    share_total = sum((c.rate for c in components), ZERO)
    if share_total <= ZERO:
        raise InvalidTaxTableError(jurisdiction, "component shares must sum to a positive rate")
    return tuple(rate * c.rate / share_total for c in components)


@traced_engine(
    "tax_split", "1.0", fingerprint_fields=("line_amounts", "regions", "rate", "flow")
)
def compute_tax_split(
    line_amounts: Iterable[Decimal],
    regions: RegionPair,
    rate: Decimal,
    rule: JurisdictionRule,
    flow: TaxFlow = TaxFlow.OUTPUT,
) -> tuple[TaxEntry, ...]:
    """
    Compute the tax entries for a group of lines sharing one rate.

    Always computed from scratch from the current amounts. Returns no
    entries (not zero-amount entries) when the taxable amount or the
    resulting tax is zero.

    Raises:
        InvalidTaxRateError: If rate is negative.
        InvalidTaxTableError: If the rule has no usable components.
    """
    if rate < ZERO:
        raise InvalidTaxRateError(rate)

    digits = rule.minor_unit_digits
    base = sum(line_amounts, ZERO)
    total_tax = round_minor(base * rate / HUNDRED, digits)
    if base == ZERO or total_tax == ZERO:
        return ()

    components = rule.components_for(regions)
    if not components:
        raise InvalidTaxTableError(rule.code, "no tax components for this region pair")
    rates = component_rates(components, rate, rule.code)

    entries: list[TaxEntry] = []
    allocated = ZERO
    last = len(components) - 1
    for i, (component, component_rate) in enumerate(zip(components, rates)):
        if i < last:
            amount = round_minor(base * component_rate / HUNDRED, digits)
            allocated += amount
        else:
            amount = total_tax - allocated
        entries.append(
            TaxEntry(
                kind=component.name,
                rate=component_rate,
                amount=amount,
                ledger_name=component.ledger_for(flow),
            )
        )

    logger.debug(
        "tax_split_computed",
        extra={
            "jurisdiction": rule.code,
            "intra_region": regions.is_intra_region,
            "rate": str(rate),
            "taxable_amount": str(base),
            "tax_total": str(total_tax),
            "components": [e.kind for e in entries],
        },
    )
    return tuple(entries)


class TaxRuleEngine:
    """
    Tax engine bound to one jurisdiction rule.

    compute_voucher_taxes() groups lines by rate (ascending) and splits each
    group independently.
    """

    def __init__(self, rule: JurisdictionRule):
        self.rule = rule

    @property
    def default_rate(self) -> Decimal:
        return self.rule.default_rate

    def compute_tax_split(
        self,
        line_amounts: Iterable[Decimal],
        regions: RegionPair,
        rate: Decimal,
        flow: TaxFlow = TaxFlow.OUTPUT,
    ) -> tuple[TaxEntry, ...]:
        return compute_tax_split(line_amounts, regions, rate, self.rule, flow)

    def compute_voucher_taxes(
        self,
        lines: Iterable[tuple[Decimal, Decimal]],
        regions: RegionPair,
        flow: TaxFlow = TaxFlow.OUTPUT,
    ) -> tuple[TaxEntry, ...]:
        """Tax entries for (amount, rate) pairs, grouped by rate."""
        groups: dict[Decimal, list[Decimal]] = {}
        for amount, rate in lines:
            groups.setdefault(rate, []).append(amount)

        entries: list[TaxEntry] = []
        for rate in sorted(groups):
            entries.extend(self.compute_tax_split(groups[rate], regions, rate, flow))
        return tuple(entries)
