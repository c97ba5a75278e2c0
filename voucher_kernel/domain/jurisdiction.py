"""
Jurisdiction -- tax component rules keyed by jurisdiction code.

Responsibility:
    Value types describing how a jurisdiction splits a line's tax rate into
    components, and which ledger each component posts to. The tax engine
    consumes these; the config loader produces them from YAML.

Architecture position:
    Kernel > Domain -- pure data, zero I/O. Nothing here knows a rate or a
    component name; those come from configuration.

Invariants enforced:
    - A rule is either dual (intra_region and inter_region both non-empty,
      flat empty) or flat (flat non-empty, the other two empty).
    - Component shares are non-negative and each component list has a
      positive share total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from voucher_kernel.domain.values import ZERO, Currency


class TaxFlow(str, Enum):
    """Whether tax is collected (output) or paid and claimable (input)."""

    OUTPUT = "output"
    INPUT = "input"


@dataclass(frozen=True, slots=True)
class TaxComponentDef:
    """
    One tax component of a jurisdiction rule.

    ``rate`` is the component's share of a line rate, expressed at the
    jurisdiction's reference rate (CGST 9 + SGST 9 of 18 means halves).
    """

    name: str
    rate: Decimal
    output_ledger: str = ""
    input_ledger: str = ""

    def ledger_for(self, flow: TaxFlow) -> str:
        return self.output_ledger if flow is TaxFlow.OUTPUT else self.input_ledger


@dataclass(frozen=True, slots=True)
class RegionPair:
    """Company region and place of supply for one voucher."""

    company_region: str | None = None
    supply_region: str | None = None

    @property
    def is_intra_region(self) -> bool:
        """Unset supply region counts as intra-region."""
        if not self.supply_region:
            return True
        if not self.company_region:
            return False
        return self.supply_region.strip().upper() == self.company_region.strip().upper()


@dataclass(frozen=True, slots=True)
class JurisdictionRule:
    """Tax and currency rule for a single jurisdiction code."""

    code: str
    currency: Currency
    default_rate: Decimal = ZERO
    intra_region: tuple[TaxComponentDef, ...] = ()
    inter_region: tuple[TaxComponentDef, ...] = ()
    flat: tuple[TaxComponentDef, ...] = ()

    @property
    def is_dual(self) -> bool:
        return bool(self.intra_region)

    @property
    def minor_unit_digits(self) -> int:
        return self.currency.minor_unit_digits

    def components_for(self, regions: RegionPair) -> tuple[TaxComponentDef, ...]:
        """Select the component list that applies to a region pair."""
        if not self.is_dual:
            return self.flat
        return self.intra_region if regions.is_intra_region else self.inter_region
