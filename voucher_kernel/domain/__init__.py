"""
Pure domain layer.

Voucher drafts, their reducers and value objects, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock)
- I/O

All domain objects are immutable and deterministic.
"""

from voucher_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from voucher_kernel.domain.jurisdiction import (
    JurisdictionRule,
    RegionPair,
    TaxComponentDef,
    TaxFlow,
)
from voucher_kernel.domain.numbering import next_voucher_number, voucher_prefix
from voucher_kernel.domain.values import Currency, round_minor, to_decimal
from voucher_kernel.domain.voucher import (
    VOUCHER_PROFILES,
    AdditionalLedger,
    DraftStatus,
    EntryMode,
    LineCollection,
    ManualEntry,
    PartyRef,
    Side,
    StockEntry,
    TaxEntry,
    VoucherDraft,
    VoucherProfile,
    VoucherType,
    profile_for,
)

__all__ = [
    # Values
    "Currency",
    "round_minor",
    "to_decimal",
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Jurisdiction
    "JurisdictionRule",
    "RegionPair",
    "TaxComponentDef",
    "TaxFlow",
    # Voucher
    "VoucherType",
    "EntryMode",
    "Side",
    "LineCollection",
    "DraftStatus",
    "VoucherProfile",
    "VOUCHER_PROFILES",
    "profile_for",
    "PartyRef",
    "ManualEntry",
    "StockEntry",
    "TaxEntry",
    "AdditionalLedger",
    "VoucherDraft",
    # Numbering
    "next_voucher_number",
    "voucher_prefix",
]
