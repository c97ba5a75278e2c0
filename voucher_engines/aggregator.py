"""
Voucher Aggregator - the double-entry balance check.

Turns every active line of a draft into debit/credit journal lines, sums
them, and decides whether the voucher balances. Pure functions, no I/O.

Journal construction per entry mode:

    accounting_mode   manual entries as entered
    voucher_mode      manual entries + additional ledgers per their direction
    item_invoice      value ledger   <- sum of stock amounts, on the value side
                      tax ledgers    <- each tax entry, on the value side
                      additional     <- per their direction
                      party ledger   <- invoice total, on the opposite side

The value side is a fixed table keyed by voucher type (sales and credit note
credit the value side, purchase and debit note debit it). The invoice total
is goods + tax + additional charges on the value side - additional amounts
on the party side, so an item invoice balances by construction.

Balanced means |total_debit - total_credit| < one minor currency unit.
Empty (both totals zero) is reported separately: it is never ready to post.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from voucher_engines.tracer import traced_engine
from voucher_kernel.domain.values import ZERO, Currency
from voucher_kernel.domain.voucher import (
    EntryMode,
    LineCollection,
    Side,
    VoucherDraft,
)
from voucher_kernel.exceptions import EmptyVoucherError, UnbalancedVoucherError
from voucher_kernel.logging_config import get_logger

logger = get_logger("engines.aggregator")


class LineRole(str, Enum):
    """Where a journal line came from on the draft."""

    MANUAL = "manual"
    VALUE = "value"
    PARTY = "party"
    TAX = "tax"
    ADDITIONAL = "additional"


@dataclass(frozen=True)
class JournalLine:
    """One debit or credit produced from a draft. Amount is always positive."""

    ledger_name: str
    ledger_ref: str | None
    side: Side
    amount: Decimal
    role: LineRole
    source_index: int | None = None
    narration: str = ""

    @property
    def signed_amount(self) -> Decimal:
        """Debit positive, credit negative."""
        return self.amount if self.side is Side.DEBIT else -self.amount


@dataclass(frozen=True)
class VoucherTotals:
    """Aggregate debit/credit totals and the balance verdict."""

    total_debit: Decimal
    total_credit: Decimal
    currency: Currency

    @property
    def difference(self) -> Decimal:
        """Signed difference, debit minus credit, exact."""
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < self.currency.balance_tolerance

    @property
    def is_empty(self) -> bool:
        """Nothing entered yet. Distinct from entries that cancel out."""
        return self.total_debit == ZERO and self.total_credit == ZERO

    @property
    def is_ready_to_post(self) -> bool:
        return self.is_balanced and not self.is_empty


def _line(
    ledger_name: str,
    ledger_ref: str | None,
    side: Side,
    amount: Decimal,
    role: LineRole,
    source_index: int | None = None,
    narration: str = "",
) -> JournalLine:
    # Negative amounts (stock returns) post to the opposite side.
    if amount < ZERO:
        side, amount = side.opposite, -amount
    return JournalLine(ledger_name, ledger_ref, side, amount, role, source_index, narration)


class VoucherAggregator:
    """Sums a draft's active lines and checks the balance invariant."""

    def __init__(self, currency: Currency):
        self.currency = currency

    def journal_lines(self, draft: VoucherDraft) -> tuple[JournalLine, ...]:
        """Non-zero debit/credit lines for every active collection."""
        lines: list[JournalLine] = []

        if draft.is_active(LineCollection.MANUAL):
            for i, entry in enumerate(draft.manual_entries):
                if entry.side is not None:
                    lines.append(
                        _line(
                            entry.ledger_name,
                            entry.ledger_ref,
                            entry.side,
                            entry.amount,
                            LineRole.MANUAL,
                            i,
                            entry.narration,
                        )
                    )

        if draft.entry_mode is EntryMode.ITEM_INVOICE:
            lines.extend(self._invoice_lines(draft))
        elif draft.is_active(LineCollection.ADDITIONAL):
            lines.extend(self._additional_lines(draft))

        return tuple(lines)

    def _additional_lines(self, draft: VoucherDraft) -> list[JournalLine]:
        return [
            _line(
                extra.ledger_name,
                extra.ledger_ref,
                extra.direction,
                extra.amount,
                LineRole.ADDITIONAL,
                i,
            )
            for i, extra in enumerate(draft.additional_ledgers)
            if extra.amount != ZERO
        ]

    def _invoice_lines(self, draft: VoucherDraft) -> list[JournalLine]:
        value_side = draft.profile.value_side
        if value_side is None:
            return []

        lines: list[JournalLine] = []
        goods = sum((s.amount for s in draft.stock_entries), ZERO)
        if goods != ZERO:
            lines.append(
                _line(
                    draft.value_ledger_name,
                    draft.value_ledger_ref,
                    value_side,
                    goods,
                    LineRole.VALUE,
                )
            )

        tax_total = ZERO
        for i, tax in enumerate(draft.tax_entries):
            if tax.amount != ZERO:
                tax_total += tax.amount
                lines.append(
                    _line(tax.ledger_name, tax.ledger_ref, value_side, tax.amount, LineRole.TAX, i)
                )

        additional = self._additional_lines(draft)
        lines.extend(additional)
        charges = sum(
            (a.amount if a.side is value_side else -a.amount for a in additional),
            ZERO,
        )

        invoice_total = goods + tax_total + charges
        if invoice_total != ZERO:
            party = draft.party
            lines.append(
                _line(
                    party.name if party else "",
                    party.ledger_ref if party else None,
                    value_side.opposite,
                    invoice_total,
                    LineRole.PARTY,
                )
            )
        return lines

    def invoice_total(self, draft: VoucherDraft) -> Decimal:
        """Amount owed by/to the party on an item invoice, else total debit."""
        for line in self.journal_lines(draft):
            if line.role is LineRole.PARTY:
                return line.amount
        return self.totals(self.journal_lines(draft)).total_debit

    def totals(self, lines: tuple[JournalLine, ...]) -> VoucherTotals:
        debit = sum((ln.amount for ln in lines if ln.side is Side.DEBIT), ZERO)
        credit = sum((ln.amount for ln in lines if ln.side is Side.CREDIT), ZERO)
        return VoucherTotals(total_debit=debit, total_credit=credit, currency=self.currency)

    @traced_engine("voucher_aggregate", "1.0", fingerprint_fields=("draft",))
    def aggregate(self, draft: VoucherDraft) -> VoucherTotals:
        """Debit/credit totals and balance status of the draft."""
        totals = self.totals(self.journal_lines(draft))
        logger.debug(
            "balance_checked",
            extra={
                "draft_id": draft.draft_id,
                "draft_version": draft.version,
                "total_debit": str(totals.total_debit),
                "total_credit": str(totals.total_credit),
                "difference": str(totals.difference),
                "is_balanced": totals.is_balanced,
                "is_empty": totals.is_empty,
            },
        )
        return totals

    def check_postable(self, draft: VoucherDraft) -> VoucherTotals:
        """
        Totals of a draft that may be posted.

        Raises:
            EmptyVoucherError: If both totals are zero.
            UnbalancedVoucherError: If the difference is one minor unit or more.
        """
        totals = self.aggregate(draft)
        if totals.is_empty:
            raise EmptyVoucherError(draft.draft_id)
        if not totals.is_balanced:
            raise UnbalancedVoucherError(
                difference=totals.difference,
                total_debit=totals.total_debit,
                total_credit=totals.total_credit,
                currency=self.currency.code,
            )
        return totals
