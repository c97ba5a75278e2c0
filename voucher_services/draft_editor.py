"""
DraftEditor -- the single mutation surface for voucher drafts.

Responsibility:
    Every edit (field change, row add/remove, AI patch) goes through one
    method here.  Each method runs the matching pure reducer from
    voucher_kernel.domain.voucher and then re-derives line amounts, tax
    entries and totals with voucher_engines, so a draft returned by the
    editor is always internally consistent.

Architecture position:
    Services -- composes kernel reducers with pure engines and the ledger
    directory.  Holds no draft state; drafts are values passed in and out.

Invariants enforced:
    - Derived fields are never set by callers; they are recomputed after
      every reducer.
    - Ledger names are resolved to ids through LedgerDirectory (exact, then
      unique substring, else unresolved).
    - apply_patch() builds the complete new draft before returning it; on
      any error the caller still holds the untouched original.

Failure modes:
    - ValidationError subclasses from reducers and input coercion.
    - DraftImmutableError when editing a posted draft.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from voucher_config.schema import CoreSettings, TaxTable
from voucher_engines.aggregator import VoucherAggregator, VoucherTotals
from voucher_engines.derivation import derive_draft
from voucher_kernel.domain import voucher as reducers
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.jurisdiction import JurisdictionRule
from voucher_kernel.domain.values import ZERO, round_minor, to_decimal
from voucher_kernel.domain.voucher import (
    AdditionalLedger,
    EntryMode,
    LineCollection,
    ManualEntry,
    PartyRef,
    Side,
    StockEntry,
    VoucherDraft,
    VoucherType,
    profile_for,
)
from voucher_kernel.exceptions import SectionNotAllowedError
from voucher_kernel.logging_config import get_logger
from voucher_services.ledger_directory import LedgerDirectory
from voucher_services.response_parser import PatchEntry, VoucherPatch

logger = get_logger("services.draft_editor")

_UNSET: Any = reducers._UNSET


def _dec(value: Any, field: str, index: int | None = None) -> Any:
    if value is _UNSET or value is None:
        return value
    return to_decimal(value, field=field, line_index=index)


class DraftEditor:
    """
    Applies reducers to drafts and re-derives every computed field.

    Usage:
        editor = DraftEditor.from_settings(settings, get_tax_table(), directory)
        draft = editor.new_draft(VoucherType.JOURNAL)
        draft = editor.set_debit(draft, 0, "1000", ledger_name="Cash")
        draft = editor.set_credit(draft, 1, "1000", ledger_name="Sales")
        editor.totals(draft).is_balanced   # True
    """

    def __init__(
        self,
        rule: JurisdictionRule,
        *,
        company_region: str | None = None,
        allow_negative_quantity: bool = False,
        directory: LedgerDirectory | None = None,
        clock: Clock | None = None,
    ):
        self.rule = rule
        self.company_region = company_region
        self.allow_negative_quantity = allow_negative_quantity
        self.directory = directory if directory is not None else LedgerDirectory()
        self.clock = clock or SystemClock()
        self.aggregator = VoucherAggregator(rule.currency)

    @classmethod
    def from_settings(
        cls,
        settings: CoreSettings,
        table: TaxTable,
        directory: LedgerDirectory | None = None,
        clock: Clock | None = None,
    ) -> DraftEditor:
        return cls(
            table.get(settings.jurisdiction),
            company_region=settings.company_region,
            allow_negative_quantity=settings.allow_negative_quantity,
            directory=directory,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Derivation and totals
    # ------------------------------------------------------------------

    def derive(self, draft: VoucherDraft) -> VoucherDraft:
        return derive_draft(
            draft,
            self.rule,
            self.company_region,
            allow_negative_quantity=self.allow_negative_quantity,
            resolve_ledger=self.directory.resolve,
        )

    def totals(self, draft: VoucherDraft) -> VoucherTotals:
        return self.aggregator.aggregate(draft)

    def _resolve(self, name: str | None) -> str | None:
        return self.directory.resolve(name) if name else None

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def new_draft(
        self,
        voucher_type: VoucherType,
        *,
        entry_mode: EntryMode | None = None,
        number: str = "",
        voucher_date: date | None = None,
    ) -> VoucherDraft:
        draft = reducers.new_draft(
            VoucherType(voucher_type),
            entry_mode=entry_mode,
            number=number,
            voucher_date=voucher_date or self.clock.today(),
        )
        logger.debug(
            "draft_created",
            extra={
                "draft_id": draft.draft_id,
                "voucher_type": draft.voucher_type.value,
                "entry_mode": draft.entry_mode.value,
            },
        )
        return self.derive(draft)

    def set_voucher_type(
        self,
        draft: VoucherDraft,
        voucher_type: VoucherType,
        entry_mode: EntryMode | None = None,
    ) -> VoucherDraft:
        return self.derive(reducers.set_voucher_type(draft, VoucherType(voucher_type), entry_mode))

    def set_entry_mode(self, draft: VoucherDraft, entry_mode: EntryMode) -> VoucherDraft:
        return self.derive(reducers.set_entry_mode(draft, entry_mode))

    def set_metadata(self, draft: VoucherDraft, **fields: Any) -> VoucherDraft:
        return self.derive(reducers.set_metadata(draft, **fields))

    def set_party(
        self,
        draft: VoucherDraft,
        name: str | None,
        *,
        gstin: str | None = None,
        place_of_supply: str | None = None,
    ) -> VoucherDraft:
        """
        Set (or clear, with None) the party.

        GSTIN and place of supply default to the ledger master's values when
        the name resolves. Place of supply drives the tax split.
        """
        if name is None:
            return self.derive(reducers.set_party(draft, None))
        match = self.directory.match(name)
        ledger = match.ledger
        party = PartyRef(
            name=ledger.name if ledger else name,
            ledger_ref=ledger.id if ledger else None,
            gstin=gstin or (ledger.gstin if ledger else None),
            place_of_supply=place_of_supply or (ledger.region if ledger else None),
        )
        return self.derive(reducers.set_party(draft, party))

    def set_value_ledger(self, draft: VoucherDraft, ledger_name: str) -> VoucherDraft:
        return self.derive(
            reducers.set_value_ledger(draft, ledger_name, self._resolve(ledger_name))
        )

    def set_declared_total(self, draft: VoucherDraft, amount: Any) -> VoucherDraft:
        return self.derive(reducers.set_declared_total(draft, _dec(amount, "declared_total")))

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def update_manual_entry(
        self,
        draft: VoucherDraft,
        index: int,
        *,
        ledger_name: str = _UNSET,
        debit_amount: Any = _UNSET,
        credit_amount: Any = _UNSET,
        narration: str = _UNSET,
    ) -> VoucherDraft:
        ledger_ref = _UNSET if ledger_name is _UNSET else self._resolve(ledger_name)
        return self.derive(
            reducers.update_manual_entry(
                draft,
                index,
                ledger_name=ledger_name,
                ledger_ref=ledger_ref,
                debit_amount=_dec(debit_amount, "debit_amount", index),
                credit_amount=_dec(credit_amount, "credit_amount", index),
                narration=narration,
            )
        )

    def set_debit(
        self, draft: VoucherDraft, index: int, amount: Any, *, ledger_name: str = _UNSET
    ) -> VoucherDraft:
        """Set a debit; a non-zero debit clears the entry's credit."""
        return self.update_manual_entry(draft, index, ledger_name=ledger_name, debit_amount=amount)

    def set_credit(
        self, draft: VoucherDraft, index: int, amount: Any, *, ledger_name: str = _UNSET
    ) -> VoucherDraft:
        """Set a credit; a non-zero credit clears the entry's debit."""
        return self.update_manual_entry(draft, index, ledger_name=ledger_name, credit_amount=amount)

    def update_stock_line(
        self,
        draft: VoucherDraft,
        index: int,
        *,
        item_name: str = _UNSET,
        quantity: Any = _UNSET,
        rate: Any = _UNSET,
        tax_rate: Any = _UNSET,
        godown_ref: str | None = _UNSET,
        batch: str | None = _UNSET,
        serial: str | None = _UNSET,
    ) -> VoucherDraft:
        return self.derive(
            reducers.update_stock_line(
                draft,
                index,
                item_name=item_name,
                quantity=_dec(quantity, "quantity", index),
                rate=_dec(rate, "rate", index),
                tax_rate=_dec(tax_rate, "tax_rate", index),
                godown_ref=godown_ref,
                batch=batch,
                serial=serial,
                allow_negative_quantity=self.allow_negative_quantity,
            )
        )

    def update_additional_ledger(
        self,
        draft: VoucherDraft,
        index: int,
        *,
        ledger_name: str = _UNSET,
        amount: Any = _UNSET,
        direction: Side = _UNSET,
    ) -> VoucherDraft:
        ledger_ref = _UNSET if ledger_name is _UNSET else self._resolve(ledger_name)
        return self.derive(
            reducers.update_additional_ledger(
                draft,
                index,
                ledger_name=ledger_name,
                ledger_ref=ledger_ref,
                amount=_dec(amount, "amount", index),
                direction=direction,
            )
        )

    def add_line(self, draft: VoucherDraft, collection: LineCollection) -> VoucherDraft:
        return self.derive(reducers.add_line(draft, collection))

    def remove_line(
        self, draft: VoucherDraft, collection: LineCollection, index: int
    ) -> VoucherDraft:
        return self.derive(reducers.remove_line(draft, collection, index))

    def set_contra(
        self,
        draft: VoucherDraft,
        debit_ledger: str,
        credit_ledger: str,
        amount: Any,
    ) -> VoucherDraft:
        """One debit and one matching credit, replacing the manual lines."""
        return self.derive(
            reducers.set_contra(
                draft,
                debit_ledger,
                credit_ledger,
                to_decimal(amount),
                debit_ref=self._resolve(debit_ledger),
                credit_ref=self._resolve(credit_ledger),
            )
        )

    # ------------------------------------------------------------------
    # AI patches
    # ------------------------------------------------------------------

    def _tax_ledger_names(self) -> set[str]:
        names = set()
        for component in self.rule.intra_region + self.rule.inter_region + self.rule.flat:
            names.update(n.lower() for n in (component.output_ledger, component.input_ledger) if n)
        return names

    def _patch_stock_line(self, entry: PatchEntry) -> StockEntry:
        quantity = entry.quantity if entry.quantity is not None else Decimal("1")
        if entry.rate is not None:
            rate = entry.rate
        elif quantity != ZERO:
            rate = round_minor(entry.amount / quantity, self.rule.minor_unit_digits)
        else:
            rate = ZERO
        return StockEntry(item_name=entry.stock_item or "", quantity=quantity, rate=rate)

    def apply_patch(self, draft: VoucherDraft, patch: VoucherPatch) -> VoucherDraft:
        """
        Apply a validated AI patch: primitive inputs only, then re-derive.

        Stock entries switch a trade voucher to item-invoice mode; the
        ledger on the first stock entry becomes the value ledger. Entries
        naming the party or a configured tax ledger are skipped in that mode
        because they are derived. Without stock entries the patch becomes
        manual debit/credit lines.

        Raises:
            ValidationError: If the patch cannot form a legal draft. The
                input draft is unchanged.
        """
        profile = profile_for(patch.voucher_type)
        stock = [e for e in patch.entries if e.is_stock]
        if stock and not profile.has_stock:
            raise SectionNotAllowedError(patch.voucher_type.value, "stock")

        if stock:
            mode = EntryMode.ITEM_INVOICE
        elif profile.default_mode is EntryMode.ITEM_INVOICE:
            mode = EntryMode.ACCOUNTING_MODE
        else:
            mode = profile.default_mode

        updated = reducers.set_voucher_type(draft, patch.voucher_type, mode)

        party_match = self.directory.match(patch.party) if patch.party else None
        if patch.party and profile.has_party:
            ledger = party_match.ledger
            updated = reducers.set_party(
                updated,
                PartyRef(
                    name=ledger.name if ledger else patch.party,
                    ledger_ref=ledger.id if ledger else None,
                    gstin=ledger.gstin if ledger else None,
                    place_of_supply=ledger.region if ledger else None,
                ),
            )

        if mode is EntryMode.ITEM_INVOICE:
            value_ledger = stock[0].ledger
            updated = reducers.set_value_ledger(updated, value_ledger, self._resolve(value_ledger))
            skip = self._tax_ledger_names()
            party_names = {patch.party.lower()} if patch.party else set()
            party_ref = party_match.ledger_ref if party_match else None
            additional = []
            for entry in patch.entries:
                if entry.is_stock:
                    continue
                ref = self._resolve(entry.ledger)
                if entry.ledger.lower() in skip or entry.ledger.lower() in party_names:
                    continue
                if party_ref is not None and ref == party_ref:
                    continue
                additional.append(
                    AdditionalLedger(
                        ledger_name=entry.ledger,
                        ledger_ref=ref,
                        amount=entry.amount,
                        direction=entry.side,
                    )
                )
            updated = reducers.replace_lines(
                updated,
                stock_entries=tuple(self._patch_stock_line(e) for e in stock),
                additional_ledgers=tuple(additional),
                allow_negative_quantity=self.allow_negative_quantity,
            )
        else:
            manual = tuple(
                ManualEntry(
                    ledger_name=e.ledger,
                    ledger_ref=self._resolve(e.ledger),
                    debit_amount=e.amount if e.side is Side.DEBIT else ZERO,
                    credit_amount=e.amount if e.side is Side.CREDIT else ZERO,
                )
                for e in patch.entries
            )
            updated = reducers.replace_lines(updated, manual_entries=manual, additional_ledgers=())

        if patch.narration:
            updated = reducers.set_metadata(updated, narration=patch.narration)
        updated = self.derive(reducers.set_declared_total(updated, patch.amount))

        computed = self.aggregator.invoice_total(updated)
        if patch.amount != computed:
            logger.warning(
                "declared_total_mismatch",
                extra={
                    "draft_id": updated.draft_id,
                    "declared_total": str(patch.amount),
                    "computed_total": str(computed),
                },
            )
        return updated
