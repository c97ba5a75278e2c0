"""
Tests for the AI response parser.

parse_response() must classify every input as exactly one of applied,
clarify or failed, and must never raise.
"""

from decimal import Decimal

import pytest

from voucher_kernel.domain.voucher import Side, VoucherType
from voucher_services.response_parser import (
    AppliedResponse,
    ClarifyResponse,
    FailedResponse,
    FailureReason,
    ResponseKind,
    parse_response,
    strip_code_fence,
)

RENT = {
    "voucherType": "payment",
    "amount": 5000,
    "narration": "Office rent for March",
    "entries": [
        {"ledger": "Office Rent", "amount": 5000, "type": "debit"},
        {"ledger": "Cash", "amount": 5000, "type": "credit"},
    ],
}

SALE = {
    "voucherType": "sales",
    "amount": 590,
    "narration": "5 widgets to Acme",
    "party": "Acme Traders",
    "entries": [
        {
            "ledger": "Sales",
            "amount": 500,
            "type": "credit",
            "stockItem": "Widget",
            "quantity": 5,
            "rate": 100,
        },
        {"ledger": "Acme Traders", "amount": 590, "type": "debit"},
    ],
}


def _with(base, **changes):
    data = dict(base)
    data.update(changes)
    return data


def _entry(**changes):
    entry = {"ledger": "Cash", "amount": 100, "type": "debit"}
    entry.update(changes)
    return entry


class TestApplied:

    def test_manual_voucher(self):
        parsed = parse_response(RENT)
        assert isinstance(parsed, AppliedResponse)
        assert parsed.kind is ResponseKind.APPLIED
        patch = parsed.patch
        assert patch.voucher_type is VoucherType.PAYMENT
        assert patch.amount == Decimal("5000")
        assert [(e.ledger, e.side) for e in patch.entries] == [
            ("Office Rent", Side.DEBIT),
            ("Cash", Side.CREDIT),
        ]
        assert patch.party is None

    def test_stock_voucher(self):
        patch = parse_response(SALE).patch
        assert patch.party == "Acme Traders"
        stock = patch.entries[0]
        assert stock.is_stock
        assert (stock.stock_item, stock.quantity, stock.rate) == (
            "Widget", Decimal("5"), Decimal("100"),
        )
        assert not patch.entries[1].is_stock

    def test_float_amount_exact(self):
        patch = parse_response(_with(RENT, amount=0.1)).patch
        assert patch.amount == Decimal("0.1")

    def test_voucher_type_case_insensitive(self):
        assert parse_response(_with(RENT, voucherType="Payment")).patch.voucher_type is VoucherType.PAYMENT

    def test_needs_clarification_false_tolerated(self):
        assert isinstance(parse_response(_with(RENT, needsClarification=False)), AppliedResponse)

    def test_empty_narration_allowed(self):
        assert parse_response(_with(RENT, narration="")).patch.narration == ""

    def test_json_text(self):
        text = '{"voucherType": "payment", "amount": 10, "narration": "", ' \
               '"entries": [{"ledger": "Cash", "amount": 10, "type": "credit"}]}'
        assert isinstance(parse_response(text), AppliedResponse)

    def test_fenced_json_text(self):
        text = '```json\n{"needsClarification": true, "questions": ["How much?"]}\n```'
        assert isinstance(parse_response(text), ClarifyResponse)

    def test_bytes(self):
        assert isinstance(
            parse_response(b'{"needsClarification": true, "questions": ["Who?"]}'),
            ClarifyResponse,
        )


class TestClarify:

    def test_questions(self):
        parsed = parse_response(
            {
                "needsClarification": True,
                "questions": ["Which vendor?", "How much?"],
                "suggestedVoucherType": "payment",
            }
        )
        assert isinstance(parsed, ClarifyResponse)
        assert parsed.questions == ("Which vendor?", "How much?")
        assert parsed.suggested_voucher_type is VoucherType.PAYMENT

    def test_suggestion_optional(self):
        parsed = parse_response({"needsClarification": True, "questions": ["Amount?"]})
        assert parsed.suggested_voucher_type is None

    def test_empty_questions(self):
        parsed = parse_response({"needsClarification": True, "questions": []})
        assert parsed.reason is FailureReason.INVALID_VALUE

    def test_voucher_fields_on_clarification(self):
        parsed = parse_response({"needsClarification": True, "questions": ["?"], "amount": 5})
        assert parsed.reason is FailureReason.UNKNOWN_FIELD

    def test_unknown_suggested_type(self):
        parsed = parse_response(
            {"needsClarification": True, "questions": ["?"], "suggestedVoucherType": "invoice"}
        )
        assert parsed.reason is FailureReason.INVALID_VALUE


class TestFailed:

    @pytest.mark.parametrize(
        "raw,reason",
        [
            ("not json", FailureReason.MALFORMED_JSON),
            ("{\"voucherType\": ", FailureReason.MALFORMED_JSON),
            ("[1, 2]", FailureReason.NOT_AN_OBJECT),
            (42, FailureReason.NOT_AN_OBJECT),
            (None, FailureReason.NOT_AN_OBJECT),
            ({}, FailureReason.MISSING_FIELD),
            (_with(RENT, extra=1), FailureReason.UNKNOWN_FIELD),
            ({k: v for k, v in RENT.items() if k != "entries"}, FailureReason.MISSING_FIELD),
            (_with(RENT, voucherType="invoice"), FailureReason.INVALID_VALUE),
            (_with(RENT, amount="5000"), FailureReason.INVALID_VALUE),
            (_with(RENT, amount=-1), FailureReason.INVALID_VALUE),
            (_with(RENT, amount=True), FailureReason.INVALID_VALUE),
            (_with(RENT, amount=float("nan")), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=[]), FailureReason.INVALID_VALUE),
            (_with(RENT, entries="Cash"), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=["Cash"]), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=[_entry(type="dr")]), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=[_entry(ledger="  ")]), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=[_entry(side="x")]), FailureReason.UNKNOWN_FIELD),
            (_with(RENT, entries=[{"ledger": "Cash", "amount": 1}]), FailureReason.MISSING_FIELD),
            (_with(RENT, entries=[_entry(quantity="5")]), FailureReason.INVALID_VALUE),
            (_with(RENT, party=7), FailureReason.INVALID_VALUE),
            (_with(RENT, needsClarification="no"), FailureReason.INVALID_VALUE),
            (_with(RENT, amount=10**12), FailureReason.INVALID_VALUE),
            (_with(RENT, amount=1e30), FailureReason.INVALID_VALUE),
            (_with(RENT, entries=[_entry(quantity=1e15, rate=1e15)]), FailureReason.INVALID_VALUE),
        ],
    )
    def test_rejected(self, raw, reason):
        parsed = parse_response(raw)
        assert isinstance(parsed, FailedResponse)
        assert parsed.kind is ResponseKind.FAILED
        assert parsed.reason is reason

    @pytest.mark.parametrize("raw", ["[" * 100_000 + "]" * 100_000, b"{\"a\":" * 100_000])
    def test_nesting_too_deep(self, raw):
        parsed = parse_response(raw)
        assert parsed.reason is FailureReason.MALFORMED_JSON

    def test_largest_accepted_amount(self):
        parsed = parse_response(_with(RENT, amount=999_999_999_999.99))
        assert parsed.patch.amount == Decimal("999999999999.99")

    def test_detail_names_entry(self):
        parsed = parse_response(_with(RENT, entries=[_entry(), _entry(amount=-5)]))
        assert "entries[1].amount" in parsed.detail

    def test_rejection_logged(self, captured_logs):
        parse_response(_with(RENT, extra=1))
        records = [r for r in captured_logs() if r["message"] == "ai_response_rejected"]
        assert records[-1]["reason"] == "unknown_field"


class TestStripCodeFence:

    def test_plain(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'

    def test_fence_without_language(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
