"""
Typed Exception Hierarchy for the Voucher Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A voucher screen, an API handler and the AI command interpreter all need to
react to the same failures differently.  Parsing message strings is fragile,
so every failure in this core:
  1. Has its own TYPED exception class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (difference, field, line index, ...)

Example:
    try:
        posting_service.submit(draft, idempotency_key=key)
    except UnbalancedVoucherError as e:
        show_difference(e.difference)          # signed, exact
    except UnresolvedLedgerError as e:
        highlight_lines(e.lines)               # per-line surfacing

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    VoucherKernelError (base)
    |
    +-- ValidationError                 field-level, recoverable by correction
    |   +-- InvalidQuantityError
    |   +-- InvalidRateError
    |   +-- InvalidTaxRateError
    |   +-- InvalidAmountError
    |   +-- DebitCreditConflictError
    |   +-- MissingLedgerError
    |   +-- MissingPartyError
    |   +-- SectionNotAllowedError
    |   +-- LineIndexError
    |
    +-- PostingError                    blocks submission
    |   +-- UnbalancedVoucherError
    |   +-- EmptyVoucherError
    |   +-- UnresolvedLedgerError
    |   +-- DraftImmutableError
    |   +-- RequestInFlightError
    |
    +-- InterpretationError             AI boundary
    |   +-- AIInterpretationError
    |   +-- AIServiceError
    |   +-- InterpreterBusyError
    |
    +-- PersistenceError                raised by the posting gateway
    |   +-- ConcurrentModificationError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError
        +-- UnknownJurisdictionError
        +-- InvalidTaxTableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY            | Negative quantity without the return flag
                | INVALID_RATE                | Negative rate
                | INVALID_TAX_RATE            | Negative tax rate
                | INVALID_AMOUNT              | Negative or non-numeric amount
                | DEBIT_CREDIT_CONFLICT       | Both debit and credit non-zero
                | MISSING_LEDGER              | Line with an amount but no ledger
                | MISSING_PARTY               | Trade voucher without a party
                | SECTION_NOT_ALLOWED         | Stock/tax/party on a voucher type without it
                | LINE_INDEX                  | Row index out of range / below minimum
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_VOUCHER          | |debit - credit| >= one minor unit
                | EMPTY_VOUCHER               | Totals are both zero
                | UNRESOLVED_LEDGER           | Ledger name not mapped to an id
                | DRAFT_IMMUTABLE             | Draft already accepted by the gateway
                | REQUEST_IN_FLIGHT           | AI request pending for this draft
----------------|-----------------------------|-----------------------------------------
Interpretation  | AI_INTERPRETATION_FAILED    | Malformed / failed AI response
                | AI_SERVICE_ERROR            | Transport or HTTP failure
                | INTERPRETER_BUSY            | New command while one is pending
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_ERROR           | Generic gateway failure
                | CONCURRENT_MODIFICATION     | Ledger balance changed underneath
                | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a posted row
----------------|-----------------------------|-----------------------------------------
Config          | UNKNOWN_JURISDICTION        | Jurisdiction code not in the table
                | INVALID_TAX_TABLE           | Structurally invalid table

===============================================================================
"""

from decimal import Decimal


class VoucherKernelError(Exception):
    """
    Base exception for all voucher kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "VOUCHER_KERNEL_ERROR"


# Validation exceptions


class ValidationError(VoucherKernelError):
    """Field-level validation failure, recoverable by correcting the field."""

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        line_index: int | None = None,
    ):
        self.field = field
        self.line_index = line_index
        super().__init__(message)


class InvalidQuantityError(ValidationError):
    """Quantity is negative and negative quantities are not enabled."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Decimal, line_index: int | None = None):
        self.quantity = quantity
        super().__init__(
            f"Quantity cannot be negative: {quantity}",
            field="quantity",
            line_index=line_index,
        )


class InvalidRateError(ValidationError):
    """Rate is negative."""

    code: str = "INVALID_RATE"

    def __init__(self, rate: Decimal, line_index: int | None = None):
        self.rate = rate
        super().__init__(
            f"Rate cannot be negative: {rate}",
            field="rate",
            line_index=line_index,
        )


class InvalidTaxRateError(ValidationError):
    """Tax rate is negative."""

    code: str = "INVALID_TAX_RATE"

    def __init__(self, tax_rate: Decimal, line_index: int | None = None):
        self.tax_rate = tax_rate
        super().__init__(
            f"Tax rate cannot be negative: {tax_rate}",
            field="tax_rate",
            line_index=line_index,
        )


class InvalidAmountError(ValidationError):
    """Amount is negative or not a number."""

    code: str = "INVALID_AMOUNT"

    def __init__(
        self,
        value: object,
        field: str = "amount",
        line_index: int | None = None,
    ):
        self.value = value
        super().__init__(
            f"Invalid amount for {field}: {value!r}",
            field=field,
            line_index=line_index,
        )


class DebitCreditConflictError(ValidationError):
    """A manual entry carries both a debit and a credit amount."""

    code: str = "DEBIT_CREDIT_CONFLICT"

    def __init__(self, debit: Decimal, credit: Decimal, line_index: int | None = None):
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Entry cannot be both debit ({debit}) and credit ({credit})",
            field="debit_amount",
            line_index=line_index,
        )


class MissingLedgerError(ValidationError):
    """A line carries an amount but names no ledger."""

    code: str = "MISSING_LEDGER"

    def __init__(self, collection: str, line_index: int | None = None):
        self.collection = collection
        where = f"{collection} line {line_index}" if line_index is not None else f"{collection} line"
        super().__init__(
            f"{where} has an amount but no ledger",
            field="ledger_ref",
            line_index=line_index,
        )


class MissingPartyError(ValidationError):
    """Voucher type requires a party and none is set."""

    code: str = "MISSING_PARTY"

    def __init__(self, voucher_type: str):
        self.voucher_type = voucher_type
        super().__init__(
            f"Voucher type '{voucher_type}' requires a party",
            field="party",
        )


class SectionNotAllowedError(ValidationError):
    """A section (party, stock, tax, entry mode) is illegal for the voucher type."""

    code: str = "SECTION_NOT_ALLOWED"

    def __init__(self, voucher_type: str, section: str):
        self.voucher_type = voucher_type
        self.section = section
        super().__init__(
            f"Voucher type '{voucher_type}' does not allow {section}",
            field=section,
        )


class LineIndexError(ValidationError):
    """Row index is out of range, or removing it would go below the minimum."""

    code: str = "LINE_INDEX"

    def __init__(self, collection: str, index: int, reason: str):
        self.collection = collection
        self.reason = reason
        super().__init__(
            f"Cannot address {collection}[{index}]: {reason}",
            line_index=index,
        )


# Posting exceptions


class PostingError(VoucherKernelError):
    """Base exception for conditions that block submission."""

    code: str = "POSTING_ERROR"


class UnbalancedVoucherError(PostingError):
    """Total debits and credits differ by at least one minor currency unit."""

    code: str = "UNBALANCED_VOUCHER"

    def __init__(
        self,
        difference: Decimal,
        total_debit: Decimal,
        total_credit: Decimal,
        currency: str,
    ):
        self.difference = difference
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.currency = currency
        super().__init__(
            f"Unbalanced voucher in {currency}: debits={total_debit}, "
            f"credits={total_credit}, difference={difference}"
        )


class EmptyVoucherError(PostingError):
    """Nothing has been entered yet: both totals are zero."""

    code: str = "EMPTY_VOUCHER"

    def __init__(self, draft_id: str):
        self.draft_id = draft_id
        super().__init__(f"Voucher draft {draft_id} has no non-zero lines")


class UnresolvedLedgerError(PostingError):
    """One or more lines reference a ledger name that has no id."""

    code: str = "UNRESOLVED_LEDGER"

    def __init__(self, lines: tuple[tuple[str, int | None, str], ...]):
        # (collection, index or None for value/party lines, ledger name)
        self.lines = lines
        names = ", ".join(
            f"{c}[{i}]={n!r}" if i is not None else f"{c}={n!r}" for c, i, n in lines
        )
        super().__init__(f"Unresolved ledgers: {names}")


class DraftImmutableError(PostingError):
    """The draft has been accepted by the gateway and can no longer change."""

    code: str = "DRAFT_IMMUTABLE"

    def __init__(self, draft_id: str, transaction_id: str | None):
        self.draft_id = draft_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Voucher draft {draft_id} is posted as {transaction_id} and immutable"
        )


class RequestInFlightError(PostingError):
    """An AI request is pending for the draft being submitted."""

    code: str = "REQUEST_IN_FLIGHT"

    def __init__(self, draft_id: str, request_id: str):
        self.draft_id = draft_id
        self.request_id = request_id
        super().__init__(
            f"Voucher draft {draft_id} has AI request {request_id} in flight"
        )


# AI boundary exceptions


class InterpretationError(VoucherKernelError):
    """Base exception for the AI command boundary."""

    code: str = "INTERPRETATION_ERROR"


class AIInterpretationError(InterpretationError):
    """The AI response could not be turned into a draft patch."""

    code: str = "AI_INTERPRETATION_FAILED"

    def __init__(self, reason: str, detail: str = "", retryable: bool = True):
        self.reason = reason
        self.detail = detail
        self.retryable = retryable
        super().__init__(f"AI interpretation failed ({reason}): {detail}")


class AIServiceError(InterpretationError):
    """Transport, HTTP or configuration failure talking to the AI service."""

    code: str = "AI_SERVICE_ERROR"

    def __init__(self, message: str, retryable: bool, status_code: int | None = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class InterpreterBusyError(InterpretationError):
    """A command was submitted while another is still pending."""

    code: str = "INTERPRETER_BUSY"

    def __init__(self, request_id: str | None, draft_id: str | None = None):
        self.request_id = request_id
        self.draft_id = draft_id
        if request_id is None:
            message = f"Voucher draft {draft_id} is being submitted for posting"
        else:
            message = f"AI request {request_id} is still pending"
        super().__init__(message)


# Persistence exceptions (raised by gateway implementations)


class PersistenceError(VoucherKernelError):
    """Generic failure reported by the posting gateway."""

    code: str = "PERSISTENCE_ERROR"


class ConcurrentModificationError(PersistenceError):
    """A referenced record changed between read and write."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "record was modified by another transaction"
        )


class ImmutabilityViolationError(PersistenceError):
    """Attempt to modify or delete a posted record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} posted {entity_type} {entity_id}"
        )


# Configuration exceptions


class ConfigError(VoucherKernelError):
    """Base exception for configuration problems."""

    code: str = "CONFIG_ERROR"


class UnknownJurisdictionError(ConfigError):
    """Jurisdiction code is not present in the tax table."""

    code: str = "UNKNOWN_JURISDICTION"

    def __init__(self, jurisdiction: str, available: tuple[str, ...] = ()):
        self.jurisdiction = jurisdiction
        self.available = available
        super().__init__(
            f"Unknown jurisdiction {jurisdiction!r}; "
            f"available: {', '.join(available) or 'none'}"
        )


class InvalidTaxTableError(ConfigError):
    """The tax table is structurally invalid."""

    code: str = "INVALID_TAX_TABLE"

    def __init__(self, jurisdiction: str, reason: str):
        self.jurisdiction = jurisdiction
        self.reason = reason
        super().__init__(f"Invalid tax table entry {jurisdiction!r}: {reason}")
