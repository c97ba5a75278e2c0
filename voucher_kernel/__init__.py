"""
Voucher Kernel

The entry-construction and validation core of the voucher posting system:
- Immutable voucher drafts mutated only through pure reducers
- Typed errors with machine-readable codes
- Structured JSON logging
- Immutable persisted vouchers behind an idempotent posting gateway
"""

__version__ = "0.1.0"
