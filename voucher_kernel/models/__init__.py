"""ORM models for the reference posting store."""

from voucher_kernel.models.posted_voucher import (
    LedgerBalance,
    PostedVoucher,
    PostedVoucherLine,
)

__all__ = [
    "PostedVoucher",
    "PostedVoucherLine",
    "LedgerBalance",
]
