"""
ORM-Level Immutability Enforcement for posted vouchers.

===============================================================================
WHY THIS EXISTS
===============================================================================

A posted voucher is final. Corrections are made with a new voucher (a credit
note, a reversing journal), never by editing the stored one. The draft side
already refuses to mutate a posted draft; this module is the matching guard
on the persisted side.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update event] --> _block_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _block_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable
--------------------|------------------------
PostedVoucher       | ALWAYS (from creation)
PostedVoucherLine   | ALWAYS (from creation)

LedgerBalance is deliberately NOT protected: posting updates it, guarded by
its optimistic version column instead.

===============================================================================
"""

from sqlalchemy import event

from voucher_kernel.exceptions import ImmutabilityViolationError
from voucher_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(entity_type, str(target.id), operation)


def _block_update(mapper, connection, target):
    _block(target, "UPDATE")


def _block_delete(mapper, connection, target):
    _block(target, "DELETE")


def _protected_models():
    from voucher_kernel.models.posted_voucher import PostedVoucher, PostedVoucherLine

    return (PostedVoucher, PostedVoucherLine)


def register_immutability_listeners() -> None:
    """
    Register immutability listeners on posted voucher models.

    Safe to call more than once.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _block_update):
            event.listen(model, "before_update", _block_update)
        if not event.contains(model, "before_delete", _block_delete):
            event.listen(model, "before_delete", _block_delete)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that need to violate immutability on
    purpose.
    """
    for model in _protected_models():
        if event.contains(model, "before_update", _block_update):
            event.remove(model, "before_update", _block_update)
        if event.contains(model, "before_delete", _block_delete):
            event.remove(model, "before_delete", _block_delete)
