"""
Kernel Invariants Contract.

These invariants are structural law for voucher construction. No setting,
tax table or AI response may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the voucher reducers, the derivation
engines, PostingService and the ORM immutability listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the voucher core.

    Configuration may influence *what* gets posted (rates, ledgers,
    components), but never *whether* these rules apply.
    """

    DOUBLE_ENTRY_BALANCE = "double_entry_balance"
    """Total debits equal total credits within one minor currency unit.
    Checked by VoucherAggregator and again by PostingService."""

    DERIVED_FIELDS = "derived_fields"
    """Line amount, tax amount, totals and tax entries are computed from
    inputs only. Reducers never accept them; derivation is idempotent."""

    SINGLE_SIDED_ENTRY = "single_sided_entry"
    """A manual entry is a debit or a credit, never both."""

    PATCH_ATOMICITY = "patch_atomicity"
    """An AI patch is validated in full before any draft field changes.
    A rejected patch leaves the draft identical."""

    SINGLE_FLIGHT = "single_flight"
    """At most one AI request is pending per draft; a draft with a pending
    request cannot be submitted."""

    IMMUTABILITY = "immutability"
    """A posted draft and its persisted rows never change. Enforced by the
    reducers and by ORM listeners (voucher_kernel.db.immutability)."""

    IDEMPOTENCY = "idempotency"
    """The same idempotency key never produces two posted vouchers.
    Enforced by the posting gateway and a unique constraint."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "voucher_engines",
    "voucher_config",
    "voucher_services",
)
