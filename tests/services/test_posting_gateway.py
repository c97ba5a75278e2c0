"""
Tests for the SQLAlchemy reference posting gateway (SQLite in memory).

Covers persistence of header, lines and balances, idempotent replay,
numbering, the balance re-check, optimistic-lock conflicts and the
immutability of posted rows.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from voucher_kernel.domain.voucher import VoucherType
from voucher_kernel.exceptions import (
    ConcurrentModificationError,
    ImmutabilityViolationError,
    UnbalancedVoucherError,
)
from voucher_kernel.models.posted_voucher import PostedVoucher, PostedVoucherLine
from voucher_services.posting_gateway import SqlAlchemyPostingGateway
from voucher_services.posting_service import PostingRequest, PostingService


def _journal(editor, amount="1000", debit="Cash", credit="Sales"):
    draft = editor.new_draft(VoucherType.JOURNAL)
    draft = editor.set_debit(draft, 0, amount, ledger_name=debit)
    return editor.set_credit(draft, 1, amount, ledger_name=credit)


def _request(editor, draft, key="k-1"):
    aggregator = editor.aggregator
    return PostingRequest(
        draft=draft,
        lines=aggregator.journal_lines(draft),
        totals=aggregator.aggregate(draft),
        idempotency_key=key,
    )


@pytest.fixture
def gateway(db_session, deterministic_clock):
    return SqlAlchemyPostingGateway(db_session, deterministic_clock, commit=False)


class TestPersist:

    def test_header_and_lines(self, editor, gateway, deterministic_clock):
        draft = editor.set_metadata(_journal(editor), narration="cash sale")
        receipt = gateway.post(_request(editor, draft))

        voucher = gateway.get_voucher(receipt.transaction_id)
        assert voucher.voucher_type == "journal"
        assert voucher.entry_mode == "accounting_mode"
        assert voucher.draft_id == draft.draft_id
        assert voucher.draft_version == draft.version
        assert voucher.narration == "cash sale"
        assert voucher.total_debit == Decimal("1000")
        assert voucher.posted_at == deterministic_clock.now()
        assert [(ln.line_no, ln.ledger_ref, ln.side, ln.amount) for ln in voucher.lines] == [
            (1, "L-CASH", "debit", Decimal("1000")),
            (2, "L-SALES", "credit", Decimal("1000")),
        ]

    def test_item_invoice_party_details(self, editor, gateway):
        draft = editor.new_draft(VoucherType.SALES)
        draft = editor.set_party(draft, "Beta Supplies")
        draft = editor.set_value_ledger(draft, "Sales")
        draft = editor.update_stock_line(draft, 0, item_name="Widget", quantity=5, rate=100)
        receipt = gateway.post(_request(editor, draft))

        voucher = gateway.get_voucher(receipt.transaction_id)
        assert (voucher.party_ref, voucher.party_gstin, voucher.place_of_supply) == (
            "L-BETA", "24AAACB5678B1Z2", "GJ",
        )
        assert [ln.role for ln in voucher.lines] == ["value", "tax", "party"]

    def test_balances_signed_debit_positive(self, editor, gateway):
        gateway.post(_request(editor, _journal(editor), "k-1"))
        gateway.post(_request(editor, _journal(editor, "250", "Office Rent", "Cash"), "k-2"))
        assert gateway.balance_of("L-CASH") == Decimal("750")
        assert gateway.balance_of("L-SALES") == Decimal("-1000")
        assert gateway.balance_of("L-RENT") == Decimal("250")
        assert gateway.balance_of("L-UNKNOWN") == Decimal("0")

    def test_persisted_logged(self, editor, gateway, captured_logs):
        receipt = gateway.post(_request(editor, _journal(editor)))
        records = [r for r in captured_logs() if r["message"] == "voucher_persisted"]
        assert records[-1]["transaction_id"] == receipt.transaction_id


class TestNumbering:

    def test_sequence_per_type(self, editor, gateway):
        first = gateway.post(_request(editor, _journal(editor), "k-1"))
        second = gateway.post(_request(editor, _journal(editor), "k-2"))
        assert (first.voucher_number, second.voucher_number) == ("JO0001", "JO0002")

        contra = editor.set_contra(editor.new_draft(VoucherType.CONTRA), "HDFC Bank", "Cash", 10)
        assert gateway.post(_request(editor, contra, "k-3")).voucher_number == "CO0001"

    def test_draft_number_kept(self, editor, gateway):
        draft = editor.set_metadata(_journal(editor), number="JV/2024/17")
        assert gateway.post(_request(editor, draft)).voucher_number == "JV/2024/17"

    def test_hand_number_advances_sequence(self, editor, gateway):
        draft = editor.set_metadata(_journal(editor), number="JO0041")
        gateway.post(_request(editor, draft, "k-1"))
        assert gateway.post(_request(editor, _journal(editor), "k-2")).voucher_number == "JO0042"


class TestIdempotency:

    def test_replay_returns_original(self, editor, gateway, db_session):
        draft = _journal(editor)
        first = gateway.post(_request(editor, draft, "same"))
        second = gateway.post(_request(editor, draft, "same"))
        assert second.replayed
        assert second.transaction_id == first.transaction_id
        assert second.voucher_number == first.voucher_number
        count = db_session.execute(select(func.count()).select_from(PostedVoucher)).scalar_one()
        assert count == 1
        assert gateway.balance_of("L-CASH") == Decimal("1000")

    def test_service_retry_is_deduplicated(self, editor, gateway):
        service = PostingService(editor.aggregator, gateway, editor.directory)
        draft = _journal(editor)
        first = service.submit(draft)
        second = service.submit(draft)
        assert second.receipt.replayed
        assert second.transaction_id == first.transaction_id
        assert gateway.get_by_key(first.receipt.idempotency_key) is not None


class TestRejection:

    def test_unbalanced_request_rejected(self, editor, gateway, db_session):
        draft = editor.set_debit(editor.new_draft(VoucherType.JOURNAL), 0, "500", ledger_name="Cash")
        with pytest.raises(UnbalancedVoucherError) as exc_info:
            gateway.post(_request(editor, draft))
        assert exc_info.value.difference == Decimal("500")
        assert db_session.execute(select(func.count()).select_from(PostedVoucher)).scalar_one() == 0

    def test_balance_changed_underneath(self, editor, gateway, db_session):
        gateway.post(_request(editor, _journal(editor), "k-1"))
        db_session.connection().execute(
            text("UPDATE ledger_balances SET version_id = version_id + 1")
        )
        with pytest.raises(ConcurrentModificationError):
            gateway.post(_request(editor, _journal(editor, "5"), "k-2"))
        assert gateway.get_by_key("k-2") is None


class TestImmutability:

    def test_posted_voucher_cannot_be_updated(self, editor, gateway, db_session):
        receipt = gateway.post(_request(editor, _journal(editor)))
        voucher = gateway.get_voucher(receipt.transaction_id)
        voucher.narration = "edited"
        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()

    def test_posted_line_cannot_be_deleted(self, editor, gateway, db_session):
        gateway.post(_request(editor, _journal(editor)))
        line = db_session.execute(select(PostedVoucherLine).limit(1)).scalar_one()
        db_session.delete(line)
        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()
