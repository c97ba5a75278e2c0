"""
Voucher numbering.

Numbers are a two-letter upper-case prefix derived from the voucher type
followed by a zero-padded four-digit sequence: SA0001, PU0042, CR0003.
"""

import re

from voucher_kernel.domain.voucher import VoucherType

SEQUENCE_WIDTH = 4

_DIGITS = re.compile(r"(\d+)\s*$")


def voucher_prefix(voucher_type: VoucherType) -> str:
    """First two letters of the voucher type name (``credit_note`` -> ``CR``)."""
    return VoucherType(voucher_type).value.replace("_", "")[:2].upper()


def next_voucher_number(voucher_type: VoucherType, previous: str | None = None) -> str:
    """
    Number following ``previous`` for the given voucher type.

    Only the trailing digits of ``previous`` are read, so numbers typed by
    hand (``SA-0041``) still advance. No previous number starts at 1.
    """
    sequence = 1
    if previous:
        match = _DIGITS.search(previous)
        if match:
            sequence = int(match.group(1)) + 1
    return f"{voucher_prefix(voucher_type)}{sequence:0{SEQUENCE_WIDTH}d}"
