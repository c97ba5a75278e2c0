"""
AI response parser - strict tagged union over the AI service's JSON.

Responsibility:
    Turns whatever the AI service returned (a decoded object or raw text)
    into exactly one of AppliedResponse, ClarifyResponse or FailedResponse.
    Validation is exhaustive: unknown keys, missing required keys, wrong
    types and out-of-range values all produce FailedResponse. Nothing is
    coerced (a numeric string is not a number).

Architecture position:
    Services > AI boundary. Pure; no I/O. Used by CommandInterpreter.

Accepted shapes:

    success        {voucherType, amount, narration, entries[], party?}
                   entries[] = {ledger, amount, type: debit|credit,
                                stockItem?, quantity?, rate?}
                   "needsClarification": false is tolerated.
    clarification  {needsClarification: true, questions[], suggestedVoucherType?}

Failure modes:
    parse_response() never raises; every problem is a FailedResponse with
    a reason code from FailureReason.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

from voucher_kernel.domain.values import ZERO
from voucher_kernel.domain.voucher import Side, VoucherType
from voucher_kernel.logging_config import get_logger

logger = get_logger("services.response_parser")


class ResponseKind(str, Enum):
    APPLIED = "applied"
    CLARIFY = "clarify"
    FAILED = "failed"


class FailureReason(str, Enum):
    MALFORMED_JSON = "malformed_json"
    NOT_AN_OBJECT = "not_an_object"
    UNKNOWN_FIELD = "unknown_field"
    MISSING_FIELD = "missing_field"
    INVALID_VALUE = "invalid_value"
    SERVICE_ERROR = "service_error"
    STALE_RESPONSE = "stale_response"
    INVALID_PATCH = "invalid_patch"


@dataclass(frozen=True)
class PatchEntry:
    """One line of an AI voucher patch. Stock fields are optional."""

    ledger: str
    amount: Decimal
    side: Side
    stock_item: str | None = None
    quantity: Decimal | None = None
    rate: Decimal | None = None

    @property
    def is_stock(self) -> bool:
        return self.stock_item is not None


@dataclass(frozen=True)
class VoucherPatch:
    """Validated primitive inputs for a draft. Never carries derived fields."""

    voucher_type: VoucherType
    amount: Decimal
    narration: str
    entries: tuple[PatchEntry, ...]
    party: str | None = None


@dataclass(frozen=True)
class AppliedResponse:
    patch: VoucherPatch
    kind: ClassVar[ResponseKind] = ResponseKind.APPLIED


@dataclass(frozen=True)
class ClarifyResponse:
    questions: tuple[str, ...]
    suggested_voucher_type: VoucherType | None = None
    kind: ClassVar[ResponseKind] = ResponseKind.CLARIFY


@dataclass(frozen=True)
class FailedResponse:
    reason: FailureReason
    detail: str = ""
    kind: ClassVar[ResponseKind] = ResponseKind.FAILED


ParsedResponse = Union[AppliedResponse, ClarifyResponse, FailedResponse]


class _Reject(Exception):
    """Internal: abort validation with a reason."""

    def __init__(self, reason: FailureReason, detail: str):
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


_SUCCESS_REQUIRED = frozenset({"voucherType", "amount", "narration", "entries"})
_SUCCESS_OPTIONAL = frozenset({"party", "needsClarification"})
_CLARIFY_REQUIRED = frozenset({"needsClarification", "questions"})
_CLARIFY_OPTIONAL = frozenset({"suggestedVoucherType"})
_ENTRY_REQUIRED = frozenset({"ledger", "amount", "type"})
_ENTRY_OPTIONAL = frozenset({"stockItem", "quantity", "rate"})

# Upper bound for any number in a patch. quantity x rate stays well inside
# the 28-digit decimal context after rounding to minor units.
MAX_PATCH_NUMBER = Decimal("1e12")

_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    match = _FENCE.match(text)
    return match.group(1) if match else text.strip()


def _check_keys(
    obj: Mapping[str, Any],
    required: frozenset[str],
    optional: frozenset[str],
    where: str,
) -> None:
    unknown = set(obj) - required - optional
    if unknown:
        raise _Reject(FailureReason.UNKNOWN_FIELD, f"{where}: unknown fields {sorted(unknown)}")
    missing = required - set(obj)
    if missing:
        raise _Reject(FailureReason.MISSING_FIELD, f"{where}: missing fields {sorted(missing)}")


def _number(value: Any, where: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} must be finite")
    result = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if result < ZERO:
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} cannot be negative")
    if result >= MAX_PATCH_NUMBER:
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} is out of range")
    return result


def _text(value: Any, where: str, allow_empty: bool = False) -> str:
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} must be a non-empty string")
    return value.strip()


def _voucher_type(value: Any, where: str) -> VoucherType:
    if not isinstance(value, str):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} must be a string")
    try:
        return VoucherType(value.strip().lower())
    except ValueError:
        raise _Reject(
            FailureReason.INVALID_VALUE, f"{where}: unknown voucher type {value!r}"
        ) from None


def _entry(obj: Any, index: int) -> PatchEntry:
    where = f"entries[{index}]"
    if not isinstance(obj, Mapping):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where} must be an object")
    _check_keys(obj, _ENTRY_REQUIRED, _ENTRY_OPTIONAL, where)
    side = obj["type"]
    if side not in ("debit", "credit"):
        raise _Reject(FailureReason.INVALID_VALUE, f"{where}.type must be debit or credit")
    stock_item = obj.get("stockItem")
    return PatchEntry(
        ledger=_text(obj["ledger"], f"{where}.ledger"),
        amount=_number(obj["amount"], f"{where}.amount"),
        side=Side(side),
        stock_item=_text(stock_item, f"{where}.stockItem") if stock_item is not None else None,
        quantity=_number(obj["quantity"], f"{where}.quantity") if obj.get("quantity") is not None else None,
        rate=_number(obj["rate"], f"{where}.rate") if obj.get("rate") is not None else None,
    )


def _success(obj: Mapping[str, Any]) -> AppliedResponse:
    _check_keys(obj, _SUCCESS_REQUIRED, _SUCCESS_OPTIONAL, "response")
    if "needsClarification" in obj and obj["needsClarification"] is not False:
        raise _Reject(FailureReason.INVALID_VALUE, "needsClarification must be false on a voucher")
    entries = obj["entries"]
    if not isinstance(entries, list) or not entries:
        raise _Reject(FailureReason.INVALID_VALUE, "entries must be a non-empty list")
    party = obj.get("party")
    patch = VoucherPatch(
        voucher_type=_voucher_type(obj["voucherType"], "voucherType"),
        amount=_number(obj["amount"], "amount"),
        narration=_text(obj["narration"], "narration", allow_empty=True),
        entries=tuple(_entry(e, i) for i, e in enumerate(entries)),
        party=_text(party, "party") if party is not None else None,
    )
    return AppliedResponse(patch)


def _clarify(obj: Mapping[str, Any]) -> ClarifyResponse:
    _check_keys(obj, _CLARIFY_REQUIRED, _CLARIFY_OPTIONAL, "clarification")
    questions = obj["questions"]
    if not isinstance(questions, list) or not questions:
        raise _Reject(FailureReason.INVALID_VALUE, "questions must be a non-empty list")
    suggested = obj.get("suggestedVoucherType")
    return ClarifyResponse(
        questions=tuple(_text(q, f"questions[{i}]") for i, q in enumerate(questions)),
        suggested_voucher_type=(
            _voucher_type(suggested, "suggestedVoucherType") if suggested is not None else None
        ),
    )


def decode_response_text(text: str) -> Any:
    """
    Decode JSON text, tolerating a Markdown code fence around it.

    Raises:
        ValueError: If the text is not valid JSON.
        RecursionError: If the JSON nests deeper than the interpreter allows.
    """
    return json.loads(strip_code_fence(text))


def parse_response(raw: Any) -> ParsedResponse:
    """Parse a raw AI response into the tagged union. Never raises."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = decode_response_text(raw.decode() if isinstance(raw, bytes) else raw)
        except (ValueError, RecursionError) as e:
            logger.info("ai_response_rejected", extra={"reason": "malformed_json"})
            return FailedResponse(FailureReason.MALFORMED_JSON, str(e) or type(e).__name__)

    if not isinstance(raw, Mapping):
        return FailedResponse(FailureReason.NOT_AN_OBJECT, f"expected an object, got {type(raw).__name__}")

    try:
        if raw.get("needsClarification") is True:
            return _clarify(raw)
        return _success(raw)
    except _Reject as e:
        logger.info(
            "ai_response_rejected",
            extra={"reason": e.reason.value, "detail": e.detail},
        )
        return FailedResponse(e.reason, e.detail)
