"""
Tests for PostingService pre-submission checks and the submit flow.

A recording in-memory gateway stands in for the store here; the SQLAlchemy
gateway has its own tests in test_posting_gateway.py.
"""

import threading
from decimal import Decimal

import pytest

from voucher_kernel.domain.voucher import VoucherType
from voucher_kernel.exceptions import (
    DraftImmutableError,
    EmptyVoucherError,
    InterpreterBusyError,
    MissingLedgerError,
    MissingPartyError,
    PersistenceError,
    RequestInFlightError,
    UnbalancedVoucherError,
    UnresolvedLedgerError,
)
from voucher_services.posting_service import (
    PostingReceipt,
    PostingRequest,
    PostingService,
)


class RecordingGateway:
    """Accepts every request; replays known idempotency keys."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.requests: list[PostingRequest] = []
        self._by_key: dict[str, PostingReceipt] = {}

    def post(self, request: PostingRequest) -> PostingReceipt:
        if self.error is not None:
            raise self.error
        self.requests.append(request)
        if request.idempotency_key in self._by_key:
            original = self._by_key[request.idempotency_key]
            return PostingReceipt(
                original.transaction_id, original.voucher_number, original.idempotency_key, True
            )
        receipt = PostingReceipt(
            transaction_id=f"T-{len(self._by_key) + 1}",
            voucher_number=f"JO{len(self._by_key) + 1:04d}",
            idempotency_key=request.idempotency_key,
        )
        self._by_key[request.idempotency_key] = receipt
        return receipt


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def posting(editor, gateway):
    return PostingService(editor.aggregator, gateway, editor.directory)


def _journal(editor, debit="1000", credit="1000", debit_ledger="Cash", credit_ledger="Sales"):
    draft = editor.new_draft(VoucherType.JOURNAL)
    draft = editor.set_debit(draft, 0, debit, ledger_name=debit_ledger)
    return editor.set_credit(draft, 1, credit, ledger_name=credit_ledger)


def _sale(editor, party="Acme Traders"):
    draft = editor.new_draft(VoucherType.SALES)
    if party:
        draft = editor.set_party(draft, party)
    draft = editor.set_value_ledger(draft, "Sales")
    return editor.update_stock_line(draft, 0, item_name="Widget", quantity=5, rate=100)


class TestSubmit:

    def test_balanced_journal_posts(self, editor, posting, gateway):
        draft = _journal(editor)
        result = posting.submit(draft)
        assert result.transaction_id == "T-1"
        assert result.draft.is_posted
        assert result.draft.transaction_id == "T-1"
        assert result.totals.total_debit == Decimal("1000")
        sent = gateway.requests[0]
        assert [(ln.ledger_ref, ln.side.value, ln.amount) for ln in sent.lines] == [
            ("L-CASH", "debit", Decimal("1000")),
            ("L-SALES", "credit", Decimal("1000")),
        ]

    def test_default_key_from_draft_version(self, editor, posting, gateway):
        draft = _journal(editor)
        posting.submit(draft)
        assert gateway.requests[0].idempotency_key == f"voucher:{draft.draft_id}:{draft.version}"

    def test_resubmitting_same_version_replays(self, editor, posting):
        draft = _journal(editor)
        first = posting.submit(draft)
        second = posting.submit(draft)
        assert second.receipt.replayed
        assert second.transaction_id == first.transaction_id

    def test_explicit_key_and_actor(self, editor, posting, gateway):
        posting.submit(_journal(editor), idempotency_key="ui:42", actor_id="clerk-7")
        assert gateway.requests[0].idempotency_key == "ui:42"
        assert gateway.requests[0].actor_id == "clerk-7"

    def test_item_invoice_posts_tax_lines(self, editor, posting, gateway):
        result = posting.submit(_sale(editor))
        refs = [ln.ledger_ref for ln in gateway.requests[0].lines]
        assert refs == ["L-SALES", "L-OCGST", "L-OSGST", "L-ACME"]
        assert result.totals.total_credit == Decimal("590.00")

    def test_records_ledger_use(self, editor, posting):
        posting.submit(_journal(editor, debit_ledger="Freight Outward", credit_ledger="Cash"))
        assert editor.directory.context_names("", limit=2) == ("Cash", "Freight Outward")

    def test_success_logged(self, editor, posting, captured_logs):
        draft = _journal(editor)
        posting.submit(draft)
        records = [r for r in captured_logs() if r["message"] == "voucher_posted"]
        assert records[-1]["transaction_id"] == "T-1"
        assert records[-1]["draft_id"] == draft.draft_id
        assert records[-1]["idempotency_key"].startswith("voucher:")


class TestRejections:

    def test_already_posted(self, editor, posting):
        posted = posting.submit(_journal(editor)).draft
        with pytest.raises(DraftImmutableError):
            posting.submit(posted)

    def test_empty(self, editor, posting, gateway):
        with pytest.raises(EmptyVoucherError):
            posting.submit(editor.new_draft(VoucherType.JOURNAL))
        assert gateway.requests == []

    def test_unbalanced(self, editor, posting, gateway):
        with pytest.raises(UnbalancedVoucherError) as exc_info:
            posting.submit(_journal(editor, credit="0"))
        assert exc_info.value.difference == Decimal("1000")
        assert gateway.requests == []

    def test_missing_party(self, editor, posting):
        with pytest.raises(MissingPartyError):
            posting.submit(_sale(editor, party=None))

    def test_missing_ledger(self, editor, posting):
        draft = editor.new_draft(VoucherType.JOURNAL)
        draft = editor.set_debit(draft, 0, "100", ledger_name="Cash")
        draft = editor.set_credit(draft, 1, "100")
        with pytest.raises(MissingLedgerError) as exc_info:
            posting.submit(draft)
        assert exc_info.value.line_index == 1

    def test_unresolved_ledger(self, editor, posting, gateway):
        draft = _journal(editor, credit_ledger="Travel")
        with pytest.raises(UnresolvedLedgerError) as exc_info:
            posting.submit(draft)
        assert exc_info.value.lines == (("manual", 1, "Travel"),)
        assert gateway.requests == []

    def test_missing_value_ledger(self, editor, posting, gateway):
        draft = editor.new_draft(VoucherType.SALES)
        draft = editor.set_party(draft, "Acme Traders")
        draft = editor.update_stock_line(draft, 0, item_name="Widget", quantity=5, rate=100)
        with pytest.raises(MissingLedgerError) as exc_info:
            posting.submit(draft)
        assert exc_info.value.collection == "value"
        assert exc_info.value.line_index is None
        assert gateway.requests == []

    def test_ambiguous_ledger_blocks(self, editor, posting):
        with pytest.raises(UnresolvedLedgerError):
            posting.submit(_journal(editor, credit_ledger="GST"))

    def test_unresolved_party(self, editor, posting):
        with pytest.raises(UnresolvedLedgerError) as exc_info:
            posting.submit(_sale(editor, party="Walk-in Customer"))
        assert exc_info.value.lines[0][:2] == ("party", None)

    def test_request_in_flight(self, editor, posting, make_interpreter):
        interpreter = make_interpreter()
        draft = _journal(editor)
        pending = interpreter.dispatch(draft, "something")
        with pytest.raises(RequestInFlightError) as exc_info:
            posting.submit(draft, interpreter=interpreter)
        assert exc_info.value.request_id == pending.request_id

    def test_in_flight_for_other_draft_allowed(self, editor, posting, make_interpreter):
        interpreter = make_interpreter()
        interpreter.dispatch(editor.new_draft(VoucherType.JOURNAL), "something")
        assert posting.submit(_journal(editor), interpreter=interpreter).draft.is_posted

    def test_in_flight_checked_before_balance(self, editor, posting, make_interpreter):
        interpreter = make_interpreter()
        draft = editor.new_draft(VoucherType.JOURNAL)
        interpreter.dispatch(draft, "something")
        with pytest.raises(RequestInFlightError):
            posting.submit(draft, interpreter=interpreter)

    def test_interpreter_given_at_construction(self, editor, gateway, make_interpreter):
        interpreter = make_interpreter()
        posting = PostingService(editor.aggregator, gateway, editor.directory, interpreter)
        draft = _journal(editor)
        interpreter.dispatch(draft, "something")
        with pytest.raises(RequestInFlightError):
            posting.submit(draft)
        with pytest.raises(RequestInFlightError):
            posting.validate(draft)
        assert gateway.requests == []

    def test_gateway_error_propagates(self, editor):
        gateway = RecordingGateway(error=PersistenceError("disk full"))
        posting = PostingService(editor.aggregator, gateway)
        draft = _journal(editor)
        with pytest.raises(PersistenceError):
            posting.submit(draft)
        assert not draft.is_posted

    def test_rejection_logged(self, editor, posting, captured_logs):
        with pytest.raises(EmptyVoucherError):
            posting.submit(editor.new_draft(VoucherType.JOURNAL))
        records = [r for r in captured_logs() if r["message"] == "posting_rejected"]
        assert records[-1]["error_code"] == "EMPTY_VOUCHER"


class TestValidate:

    def test_returns_lines_and_totals(self, editor, posting):
        lines, totals = posting.validate(_journal(editor))
        assert len(lines) == 2
        assert totals.is_ready_to_post


class BlockingGateway(RecordingGateway):
    """Holds every post until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def post(self, request: PostingRequest) -> PostingReceipt:
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().post(request)


class PendingAtPostGateway(RecordingGateway):
    """Records whether an AI request was pending when the post happened."""

    def __init__(self, interpreter):
        super().__init__()
        self.interpreter = interpreter
        self.pending_at_post = []

    def post(self, request: PostingRequest) -> PostingReceipt:
        self.pending_at_post.append(self.interpreter.pending_for(request.draft.draft_id))
        return super().post(request)


class TestConcurrentSubmit:

    def test_dispatch_refused_during_post(self, editor, make_interpreter):
        interpreter = make_interpreter()
        gateway = BlockingGateway()
        posting = PostingService(editor.aggregator, gateway, editor.directory, interpreter)
        draft = _journal(editor)
        results = []

        submitter = threading.Thread(target=lambda: results.append(posting.submit(draft)))
        submitter.start()
        try:
            assert gateway.entered.wait(timeout=5)
            with pytest.raises(InterpreterBusyError) as exc_info:
                interpreter.dispatch(draft, "change the amount")
            assert exc_info.value.draft_id == draft.draft_id
        finally:
            gateway.release.set()
            submitter.join()

        assert results[0].draft.is_posted
        assert not interpreter.is_busy
        interpreter.dispatch(draft, "change the amount")

    def test_post_never_overlaps_pending_request(self, editor, make_interpreter):
        for i in range(20):
            interpreter = make_interpreter()
            gateway = PendingAtPostGateway(interpreter)
            posting = PostingService(editor.aggregator, gateway, editor.directory, interpreter)
            draft = _journal(editor)
            barrier = threading.Barrier(2)
            results = []

            def dispatch():
                barrier.wait()
                try:
                    interpreter.dispatch(draft, f"command {i}")
                    results.append("sent")
                except InterpreterBusyError:
                    results.append("busy")

            def submit():
                barrier.wait()
                try:
                    posting.submit(draft)
                    results.append("posted")
                except RequestInFlightError:
                    results.append("in_flight")

            threads = [threading.Thread(target=dispatch), threading.Thread(target=submit)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert gateway.pending_at_post in ([], [None])
            assert sorted(results) in (["posted", "sent"], ["in_flight", "sent"], ["busy", "posted"])
