"""
Voucher -- the in-progress voucher draft and its pure reducers.

Responsibility:
    Defines VoucherDraft (an immutable snapshot of one business transaction
    being entered), its line types, the fixed per-voucher-type profile table,
    and the reducer functions that produce a new draft for every mutation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Reducers here set primitive inputs only (ledger names, quantities,
    rates, amounts). Derived fields (line amount, tax amount, totals, tax
    entries) are written exclusively by voucher_engines.derivation through
    with_derived(), which callers run after every reducer.

Invariants enforced:
    - Every mutation returns a new draft with version + 1; the old draft is
      unchanged.
    - A posted draft is immutable: every reducer raises DraftImmutableError.
    - A manual entry has at most one of debit/credit non-zero.
    - Sections (party, stock, entry modes) are legal only where the voucher
      type profile allows them.
    - Line removal never goes below the collection minimum.

Failure modes:
    - ValidationError subclasses for field-level problems (negative rate,
      negative quantity without the explicit flag, debit/credit conflict,
      section not allowed, bad line index).
    - DraftImmutableError when mutating a posted draft.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from voucher_kernel.domain.jurisdiction import TaxFlow
from voucher_kernel.domain.values import ZERO
from voucher_kernel.exceptions import (
    DebitCreditConflictError,
    DraftImmutableError,
    InvalidAmountError,
    InvalidQuantityError,
    InvalidRateError,
    InvalidTaxRateError,
    LineIndexError,
    SectionNotAllowedError,
)


class VoucherType(str, Enum):
    """Closed set of voucher types."""

    SALES = "sales"
    PURCHASE = "purchase"
    RECEIPT = "receipt"
    PAYMENT = "payment"
    JOURNAL = "journal"
    CONTRA = "contra"
    DEBIT_NOTE = "debit_note"
    CREDIT_NOTE = "credit_note"
    MANUFACTURING_JOURNAL = "manufacturing_journal"
    STOCK_TRANSFER = "stock_transfer"


class EntryMode(str, Enum):
    """Which line collections are active. Mutually exclusive."""

    ITEM_INVOICE = "item_invoice"
    VOUCHER_MODE = "voucher_mode"
    ACCOUNTING_MODE = "accounting_mode"


class Side(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"

    @property
    def opposite(self) -> Side:
        return Side.CREDIT if self is Side.DEBIT else Side.DEBIT


class LineCollection(str, Enum):
    """User-editable line collections. Tax entries are derived, not listed."""

    MANUAL = "manual"
    STOCK = "stock"
    ADDITIONAL = "additional"


class DraftStatus(str, Enum):
    """Lifecycle of a draft. One-way: EDITING -> POSTED."""

    EDITING = "editing"
    POSTED = "posted"


ACTIVE_COLLECTIONS: dict[EntryMode, tuple[LineCollection, ...]] = {
    EntryMode.ITEM_INVOICE: (LineCollection.STOCK, LineCollection.ADDITIONAL),
    EntryMode.VOUCHER_MODE: (LineCollection.MANUAL, LineCollection.ADDITIONAL),
    EntryMode.ACCOUNTING_MODE: (LineCollection.MANUAL,),
}


@dataclass(frozen=True)
class VoucherProfile:
    """
    Static behaviour of one voucher type.

    value_side is the side the goods/service value posts to in item-invoice
    mode; the party takes the opposite side. None for non-trade vouchers.
    """

    voucher_type: VoucherType
    has_party: bool
    has_stock: bool
    has_tax: bool
    party_label: str
    value_side: Side | None
    default_mode: EntryMode
    allowed_modes: tuple[EntryMode, ...]
    min_manual_lines: int = 1

    @property
    def tax_flow(self) -> TaxFlow | None:
        if self.value_side is None:
            return None
        return TaxFlow.OUTPUT if self.value_side is Side.CREDIT else TaxFlow.INPUT

    def min_lines(self, collection: LineCollection) -> int:
        if collection is LineCollection.MANUAL:
            return self.min_manual_lines
        if collection is LineCollection.STOCK:
            return 1
        return 0


_TRADE_MODES = (EntryMode.ITEM_INVOICE, EntryMode.VOUCHER_MODE, EntryMode.ACCOUNTING_MODE)
_LEDGER_MODES = (EntryMode.VOUCHER_MODE, EntryMode.ACCOUNTING_MODE)


def _trade(vt: VoucherType, label: str, value_side: Side) -> VoucherProfile:
    return VoucherProfile(
        voucher_type=vt,
        has_party=True,
        has_stock=True,
        has_tax=True,
        party_label=label,
        value_side=value_side,
        default_mode=EntryMode.ITEM_INVOICE,
        allowed_modes=_TRADE_MODES,
    )


def _ledger(
    vt: VoucherType,
    label: str,
    default_mode: EntryMode,
    min_manual_lines: int = 1,
) -> VoucherProfile:
    return VoucherProfile(
        voucher_type=vt,
        has_party=False,
        has_stock=False,
        has_tax=False,
        party_label=label,
        value_side=None,
        default_mode=default_mode,
        allowed_modes=_LEDGER_MODES,
        min_manual_lines=min_manual_lines,
    )


VOUCHER_PROFILES: dict[VoucherType, VoucherProfile] = {
    VoucherType.SALES: _trade(VoucherType.SALES, "Customer", Side.CREDIT),
    VoucherType.CREDIT_NOTE: _trade(VoucherType.CREDIT_NOTE, "Customer", Side.DEBIT),
    VoucherType.PURCHASE: _trade(VoucherType.PURCHASE, "Vendor", Side.DEBIT),
    VoucherType.DEBIT_NOTE: _trade(VoucherType.DEBIT_NOTE, "Vendor", Side.CREDIT),
    VoucherType.RECEIPT: _ledger(VoucherType.RECEIPT, "Cash/Bank", EntryMode.VOUCHER_MODE),
    VoucherType.PAYMENT: _ledger(VoucherType.PAYMENT, "Cash/Bank", EntryMode.VOUCHER_MODE),
    VoucherType.JOURNAL: _ledger(
        VoucherType.JOURNAL, "Party", EntryMode.ACCOUNTING_MODE, min_manual_lines=2
    ),
    VoucherType.CONTRA: _ledger(
        VoucherType.CONTRA, "Cash/Bank", EntryMode.ACCOUNTING_MODE, min_manual_lines=2
    ),
    VoucherType.MANUFACTURING_JOURNAL: _ledger(
        VoucherType.MANUFACTURING_JOURNAL, "Party", EntryMode.ACCOUNTING_MODE
    ),
    VoucherType.STOCK_TRANSFER: _ledger(
        VoucherType.STOCK_TRANSFER, "Party", EntryMode.ACCOUNTING_MODE
    ),
}


def profile_for(voucher_type: VoucherType) -> VoucherProfile:
    return VOUCHER_PROFILES[VoucherType(voucher_type)]


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


def _check_non_negative(value: Decimal, fld: str, index: int | None) -> None:
    if value < ZERO:
        raise InvalidAmountError(value, field=fld, line_index=index)


def _check_manual_amounts(debit: Decimal, credit: Decimal, index: int | None) -> None:
    _check_non_negative(debit, "debit_amount", index)
    _check_non_negative(credit, "credit_amount", index)
    if debit != ZERO and credit != ZERO:
        raise DebitCreditConflictError(debit, credit, line_index=index)


@dataclass(frozen=True, slots=True)
class PartyRef:
    """Party ledger reference plus denormalized display and tax details."""

    name: str
    ledger_ref: str | None = None
    gstin: str | None = None
    place_of_supply: str | None = None


@dataclass(frozen=True, slots=True)
class ManualEntry:
    """A ledger line entered directly as a debit or a credit."""

    ledger_name: str = ""
    ledger_ref: str | None = None
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    narration: str = ""

    def __post_init__(self) -> None:
        _check_manual_amounts(self.debit_amount, self.credit_amount, None)

    @property
    def side(self) -> Side | None:
        if self.debit_amount != ZERO:
            return Side.DEBIT
        if self.credit_amount != ZERO:
            return Side.CREDIT
        return None

    @property
    def amount(self) -> Decimal:
        return self.debit_amount if self.debit_amount != ZERO else self.credit_amount


@dataclass(frozen=True, slots=True)
class StockEntry:
    """
    A stock item line.

    quantity, rate and tax_rate are inputs. amount, tax_amount and
    total_amount are derived by the line item calculator. A tax_rate of
    None falls back to the jurisdiction default on tax-bearing vouchers.
    """

    item_name: str = ""
    item_ref: str | None = None
    quantity: Decimal = ZERO
    rate: Decimal = ZERO
    tax_rate: Decimal | None = None
    amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    godown_ref: str | None = None
    batch: str | None = None
    serial: str | None = None


@dataclass(frozen=True, slots=True)
class TaxEntry:
    """Derived tax component (CGST, SGST, IGST, VAT, ...)."""

    kind: str
    rate: Decimal
    amount: Decimal
    ledger_name: str = ""
    ledger_ref: str | None = None


@dataclass(frozen=True, slots=True)
class AdditionalLedger:
    """Ad hoc charge or deduction line (freight, discount, round-off)."""

    ledger_name: str = ""
    ledger_ref: str | None = None
    amount: Decimal = ZERO
    direction: Side = Side.DEBIT

    def __post_init__(self) -> None:
        _check_non_negative(self.amount, "amount", None)


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VoucherDraft:
    """Immutable snapshot of a voucher being entered."""

    voucher_type: VoucherType
    entry_mode: EntryMode
    draft_id: str = field(default_factory=lambda: str(uuid4()))
    version: int = 0
    number: str = ""
    voucher_date: date | None = None
    reference: str = ""
    narration: str = ""
    party: PartyRef | None = None
    value_ledger_name: str = ""
    value_ledger_ref: str | None = None
    manual_entries: tuple[ManualEntry, ...] = ()
    stock_entries: tuple[StockEntry, ...] = ()
    tax_entries: tuple[TaxEntry, ...] = ()
    additional_ledgers: tuple[AdditionalLedger, ...] = ()
    declared_total: Decimal | None = None
    status: DraftStatus = DraftStatus.EDITING
    transaction_id: str | None = None

    @property
    def profile(self) -> VoucherProfile:
        return profile_for(self.voucher_type)

    @property
    def active_collections(self) -> tuple[LineCollection, ...]:
        return ACTIVE_COLLECTIONS[self.entry_mode]

    def is_active(self, collection: LineCollection) -> bool:
        return collection in self.active_collections

    @property
    def is_posted(self) -> bool:
        return self.status is DraftStatus.POSTED

    @property
    def supply_region(self) -> str | None:
        return self.party.place_of_supply if self.party else None

    def lines(self, collection: LineCollection) -> tuple[Any, ...]:
        return getattr(self, _COLLECTION_FIELDS[collection])


_COLLECTION_FIELDS = {
    LineCollection.MANUAL: "manual_entries",
    LineCollection.STOCK: "stock_entries",
    LineCollection.ADDITIONAL: "additional_ledgers",
}

_BLANK_LINES = {
    LineCollection.MANUAL: ManualEntry,
    LineCollection.STOCK: StockEntry,
    LineCollection.ADDITIONAL: AdditionalLedger,
}


def ensure_editable(draft: VoucherDraft) -> None:
    if draft.is_posted:
        raise DraftImmutableError(draft.draft_id, draft.transaction_id)


def _evolve(draft: VoucherDraft, **changes: Any) -> VoucherDraft:
    ensure_editable(draft)
    return dataclasses.replace(draft, version=draft.version + 1, **changes)


def _check_mode(profile: VoucherProfile, mode: EntryMode) -> None:
    if mode not in profile.allowed_modes:
        raise SectionNotAllowedError(profile.voucher_type.value, f"entry mode {mode.value}")


def _seed_lines(draft: VoucherDraft) -> dict[str, tuple[Any, ...]]:
    """Blank lines for any active collection that is below its minimum."""
    seeded: dict[str, tuple[Any, ...]] = {}
    profile = draft.profile
    for collection in draft.active_collections:
        existing = draft.lines(collection)
        minimum = max(profile.min_lines(collection), 1)
        if len(existing) < minimum:
            blanks = tuple(
                _BLANK_LINES[collection]() for _ in range(minimum - len(existing))
            )
            seeded[_COLLECTION_FIELDS[collection]] = existing + blanks
    return seeded


def new_draft(
    voucher_type: VoucherType,
    *,
    entry_mode: EntryMode | None = None,
    number: str = "",
    voucher_date: date | None = None,
    draft_id: str | None = None,
) -> VoucherDraft:
    """Create an empty draft with blank lines in each active collection."""
    profile = profile_for(voucher_type)
    mode = EntryMode(entry_mode) if entry_mode is not None else profile.default_mode
    _check_mode(profile, mode)
    draft = VoucherDraft(
        voucher_type=profile.voucher_type,
        entry_mode=mode,
        draft_id=draft_id or str(uuid4()),
        number=number,
        voucher_date=voucher_date,
    )
    return dataclasses.replace(draft, **_seed_lines(draft))


def set_voucher_type(
    draft: VoucherDraft,
    voucher_type: VoucherType,
    entry_mode: EntryMode | None = None,
) -> VoucherDraft:
    """
    Change the voucher type.

    The entry mode is kept when the new type allows it, otherwise it falls
    back to the new type's default. A party is dropped when the new type has
    no party role, and the value ledger when it has no value side.
    """
    profile = profile_for(voucher_type)
    if entry_mode is not None:
        mode = EntryMode(entry_mode)
        _check_mode(profile, mode)
    elif draft.entry_mode in profile.allowed_modes:
        mode = draft.entry_mode
    else:
        mode = profile.default_mode
    changes: dict[str, Any] = {"voucher_type": profile.voucher_type, "entry_mode": mode}
    if not profile.has_party:
        changes["party"] = None
    if profile.value_side is None:
        changes["value_ledger_name"] = ""
        changes["value_ledger_ref"] = None
    updated = _evolve(draft, **changes)
    return dataclasses.replace(updated, **_seed_lines(updated))


def set_entry_mode(draft: VoucherDraft, entry_mode: EntryMode) -> VoucherDraft:
    mode = EntryMode(entry_mode)
    _check_mode(draft.profile, mode)
    updated = _evolve(draft, entry_mode=mode)
    return dataclasses.replace(updated, **_seed_lines(updated))


def set_metadata(
    draft: VoucherDraft,
    *,
    number: str | None = None,
    voucher_date: date | None = None,
    reference: str | None = None,
    narration: str | None = None,
) -> VoucherDraft:
    changes = {
        k: v
        for k, v in (
            ("number", number),
            ("voucher_date", voucher_date),
            ("reference", reference),
            ("narration", narration),
        )
        if v is not None
    }
    return _evolve(draft, **changes)


def set_party(draft: VoucherDraft, party: PartyRef | None) -> VoucherDraft:
    if party is not None and not draft.profile.has_party:
        raise SectionNotAllowedError(draft.voucher_type.value, "party")
    return _evolve(draft, party=party)


def set_value_ledger(
    draft: VoucherDraft, ledger_name: str, ledger_ref: str | None = None
) -> VoucherDraft:
    """Set the sales/purchase ledger that receives the goods value."""
    if draft.profile.value_side is None:
        raise SectionNotAllowedError(draft.voucher_type.value, "value ledger")
    return _evolve(draft, value_ledger_name=ledger_name, value_ledger_ref=ledger_ref)


def set_declared_total(draft: VoucherDraft, amount: Decimal | None) -> VoucherDraft:
    if amount is not None:
        _check_non_negative(amount, "declared_total", None)
    return _evolve(draft, declared_total=amount)


# ---------------------------------------------------------------------------
# Line reducers
# ---------------------------------------------------------------------------

_UNSET: Any = object()


def _check_index(draft: VoucherDraft, collection: LineCollection, index: int) -> None:
    lines = draft.lines(collection)
    if not 0 <= index < len(lines):
        raise LineIndexError(collection.value, index, f"only {len(lines)} lines")


def _replace_line(
    draft: VoucherDraft, collection: LineCollection, index: int, line: Any
) -> VoucherDraft:
    lines = list(draft.lines(collection))
    lines[index] = line
    return _evolve(draft, **{_COLLECTION_FIELDS[collection]: tuple(lines)})


def update_manual_entry(
    draft: VoucherDraft,
    index: int,
    *,
    ledger_name: str = _UNSET,
    ledger_ref: str | None = _UNSET,
    debit_amount: Decimal = _UNSET,
    credit_amount: Decimal = _UNSET,
    narration: str = _UNSET,
) -> VoucherDraft:
    """
    Update input fields of a manual entry.

    Setting a non-zero debit clears the credit and vice versa. Passing both
    non-zero in one call is a DebitCreditConflictError. Changing the ledger
    name without a ref clears the previous ref.
    """
    _check_index(draft, LineCollection.MANUAL, index)
    entry = draft.manual_entries[index]
    debit = entry.debit_amount if debit_amount is _UNSET else debit_amount
    credit = entry.credit_amount if credit_amount is _UNSET else credit_amount
    if debit_amount is not _UNSET and credit_amount is not _UNSET:
        _check_manual_amounts(debit, credit, index)
    elif debit_amount is not _UNSET and debit != ZERO:
        credit = ZERO
    elif credit_amount is not _UNSET and credit != ZERO:
        debit = ZERO
    _check_manual_amounts(debit, credit, index)

    name = entry.ledger_name if ledger_name is _UNSET else ledger_name
    if ledger_ref is not _UNSET:
        ref = ledger_ref
    elif ledger_name is not _UNSET and ledger_name != entry.ledger_name:
        ref = None
    else:
        ref = entry.ledger_ref

    updated = ManualEntry(
        ledger_name=name,
        ledger_ref=ref,
        debit_amount=debit,
        credit_amount=credit,
        narration=entry.narration if narration is _UNSET else narration,
    )
    return _replace_line(draft, LineCollection.MANUAL, index, updated)


def validate_stock_inputs(
    quantity: Decimal | None,
    rate: Decimal | None,
    tax_rate: Decimal | None,
    *,
    allow_negative_quantity: bool = False,
    index: int | None = None,
) -> None:
    """Reject negative inputs. Negative quantity only with the explicit flag."""
    if quantity is not None and quantity < ZERO and not allow_negative_quantity:
        raise InvalidQuantityError(quantity, line_index=index)
    if rate is not None and rate < ZERO:
        raise InvalidRateError(rate, line_index=index)
    if tax_rate is not None and tax_rate < ZERO:
        raise InvalidTaxRateError(tax_rate, line_index=index)


def update_stock_line(
    draft: VoucherDraft,
    index: int,
    *,
    item_name: str = _UNSET,
    item_ref: str | None = _UNSET,
    quantity: Decimal = _UNSET,
    rate: Decimal = _UNSET,
    tax_rate: Decimal | None = _UNSET,
    godown_ref: str | None = _UNSET,
    batch: str | None = _UNSET,
    serial: str | None = _UNSET,
    allow_negative_quantity: bool = False,
) -> VoucherDraft:
    """
    Update input fields of a stock line.

    Derived fields are left as they are; the caller re-derives the draft.
    """
    if not draft.profile.has_stock:
        raise SectionNotAllowedError(draft.voucher_type.value, "stock")
    _check_index(draft, LineCollection.STOCK, index)
    validate_stock_inputs(
        None if quantity is _UNSET else quantity,
        None if rate is _UNSET else rate,
        None if tax_rate is _UNSET else tax_rate,
        allow_negative_quantity=allow_negative_quantity,
        index=index,
    )
    changes = {
        k: v
        for k, v in (
            ("item_name", item_name),
            ("item_ref", item_ref),
            ("quantity", quantity),
            ("rate", rate),
            ("tax_rate", tax_rate),
            ("godown_ref", godown_ref),
            ("batch", batch),
            ("serial", serial),
        )
        if v is not _UNSET
    }
    line = dataclasses.replace(draft.stock_entries[index], **changes)
    return _replace_line(draft, LineCollection.STOCK, index, line)


def update_additional_ledger(
    draft: VoucherDraft,
    index: int,
    *,
    ledger_name: str = _UNSET,
    ledger_ref: str | None = _UNSET,
    amount: Decimal = _UNSET,
    direction: Side = _UNSET,
) -> VoucherDraft:
    _check_index(draft, LineCollection.ADDITIONAL, index)
    line = draft.additional_ledgers[index]
    if amount is not _UNSET:
        _check_non_negative(amount, "amount", index)
    if ledger_ref is _UNSET and ledger_name is not _UNSET and ledger_name != line.ledger_name:
        ledger_ref = None
    changes = {
        k: v
        for k, v in (
            ("ledger_name", ledger_name),
            ("ledger_ref", ledger_ref),
            ("amount", amount),
            ("direction", direction if direction is _UNSET else Side(direction)),
        )
        if v is not _UNSET
    }
    return _replace_line(
        draft, LineCollection.ADDITIONAL, index, dataclasses.replace(line, **changes)
    )


def add_line(
    draft: VoucherDraft, collection: LineCollection, line: Any = None
) -> VoucherDraft:
    """Append a line (blank by default) to an active collection."""
    collection = LineCollection(collection)
    if not draft.is_active(collection):
        raise SectionNotAllowedError(draft.voucher_type.value, f"{collection.value} lines")
    if line is None:
        line = _BLANK_LINES[collection]()
    elif not isinstance(line, _BLANK_LINES[collection]):
        raise TypeError(f"{collection.value} line must be {_BLANK_LINES[collection].__name__}")
    if isinstance(line, StockEntry):
        validate_stock_inputs(line.quantity, line.rate, line.tax_rate)
    fld = _COLLECTION_FIELDS[collection]
    return _evolve(draft, **{fld: draft.lines(collection) + (line,)})


def remove_line(
    draft: VoucherDraft, collection: LineCollection, index: int
) -> VoucherDraft:
    """Remove a line, keeping at least the collection minimum."""
    collection = LineCollection(collection)
    _check_index(draft, collection, index)
    lines = draft.lines(collection)
    minimum = draft.profile.min_lines(collection)
    if len(lines) <= minimum:
        raise LineIndexError(
            collection.value, index, f"at least {minimum} lines required"
        )
    remaining = lines[:index] + lines[index + 1:]
    return _evolve(draft, **{_COLLECTION_FIELDS[collection]: remaining})


def set_contra(
    draft: VoucherDraft,
    debit_ledger: str,
    credit_ledger: str,
    amount: Decimal,
    *,
    debit_ref: str | None = None,
    credit_ref: str | None = None,
) -> VoucherDraft:
    """Replace the manual lines with one debit and one matching credit."""
    if not draft.is_active(LineCollection.MANUAL):
        raise SectionNotAllowedError(draft.voucher_type.value, "manual lines")
    _check_non_negative(amount, "amount", None)
    entries = (
        ManualEntry(ledger_name=debit_ledger, ledger_ref=debit_ref, debit_amount=amount),
        ManualEntry(ledger_name=credit_ledger, ledger_ref=credit_ref, credit_amount=amount),
    )
    return _evolve(draft, manual_entries=entries)


def replace_lines(
    draft: VoucherDraft,
    *,
    manual_entries: tuple[ManualEntry, ...] | None = None,
    stock_entries: tuple[StockEntry, ...] | None = None,
    additional_ledgers: tuple[AdditionalLedger, ...] | None = None,
    allow_negative_quantity: bool = False,
) -> VoucherDraft:
    """
    Replace whole line collections in one step.

    Stock lines keep only their inputs; derived fields are reset so that
    nothing computed elsewhere can be smuggled in.
    """
    changes: dict[str, Any] = {}
    if manual_entries is not None:
        changes["manual_entries"] = tuple(manual_entries)
    if stock_entries is not None:
        if stock_entries and not draft.profile.has_stock:
            raise SectionNotAllowedError(draft.voucher_type.value, "stock")
        cleaned = []
        for i, line in enumerate(stock_entries):
            validate_stock_inputs(
                line.quantity,
                line.rate,
                line.tax_rate,
                allow_negative_quantity=allow_negative_quantity,
                index=i,
            )
            cleaned.append(
                dataclasses.replace(line, amount=ZERO, tax_amount=ZERO, total_amount=ZERO)
            )
        changes["stock_entries"] = tuple(cleaned)
    if additional_ledgers is not None:
        changes["additional_ledgers"] = tuple(additional_ledgers)
    updated = _evolve(draft, **changes)
    return dataclasses.replace(updated, **_seed_lines(updated))


def with_derived(
    draft: VoucherDraft,
    *,
    stock_entries: tuple[StockEntry, ...],
    tax_entries: tuple[TaxEntry, ...],
) -> VoucherDraft:
    """
    Install derived line values. Used only by the derivation engine.

    Does not bump the version: derivation is a function of the inputs, so
    re-deriving an unchanged draft yields an equal draft.
    """
    ensure_editable(draft)
    return dataclasses.replace(draft, stock_entries=stock_entries, tax_entries=tax_entries)


def mark_posted(draft: VoucherDraft, transaction_id: str) -> VoucherDraft:
    """Final transition. The returned draft rejects every further reducer."""
    return _evolve(draft, status=DraftStatus.POSTED, transaction_id=transaction_id)
