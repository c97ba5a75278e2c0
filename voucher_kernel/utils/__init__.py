"""Utility modules for the voucher kernel."""

from voucher_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)

__all__ = [
    "generate_idempotency_key",
    "parse_idempotency_key",
]
