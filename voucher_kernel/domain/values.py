"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the monetary value types used throughout voucher construction:
    Currency (code plus minor-unit precision). Also owns the single rounding
    primitive every derived field goes through.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by the voucher model, the engines and the config schema.

Invariants enforced:
    - Monetary amounts are Decimal, never float.
    - Rounding is round-half-to-even at the currency's minor unit, applied
      once per derived value by the caller (never accumulated).
    - Balance tolerance is exactly one minor unit, derived from precision,
      never hardcoded.

Failure modes:
    - ValueError on construction with an invalid code or precision.
    - InvalidAmountError from to_decimal() for non-numeric input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from voucher_kernel.exceptions import InvalidAmountError

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def quantum_for(digits: int) -> Decimal:
    """Smallest representable unit for the given number of minor digits."""
    return Decimal(1).scaleb(-digits)


def round_minor(value: Decimal, digits: int) -> Decimal:
    """Round to ``digits`` decimal places using round-half-to-even."""
    return value.quantize(quantum_for(digits), rounding=ROUND_HALF_EVEN)


def to_decimal(
    value: Any,
    field: str = "amount",
    line_index: int | None = None,
) -> Decimal:
    """
    Coerce an input value to Decimal.

    Floats are converted through their shortest repr so that 0.1 stays 0.1.
    Booleans, NaN and infinities are rejected.

    Raises:
        InvalidAmountError: If the value is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(value, field=field, line_index=line_index)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(repr(value) if isinstance(value, float) else str(value))
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmountError(value, field=field, line_index=line_index) from e
    if not result.is_finite():
        raise InvalidAmountError(value, field=field, line_index=line_index)
    return result


@dataclass(frozen=True, slots=True)
class Currency:
    """
    Currency code plus its minor-unit precision.

    Guarantees:
        - code is a three-letter upper-case code
        - minor_unit_digits is between 0 and 4
    """

    code: str
    minor_unit_digits: int = 2

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if self.code else ""
        if not _CURRENCY_CODE.match(normalized):
            raise ValueError(f"Invalid currency code: {self.code!r}")
        if not 0 <= self.minor_unit_digits <= 4:
            raise ValueError(
                f"Invalid minor unit digits for {normalized}: {self.minor_unit_digits}"
            )
        object.__setattr__(self, "code", normalized)

    @property
    def minor_unit(self) -> Decimal:
        """One minor currency unit (0.01 for two digits)."""
        return quantum_for(self.minor_unit_digits)

    @property
    def balance_tolerance(self) -> Decimal:
        """Debit/credit difference below which a voucher counts as balanced."""
        return self.minor_unit

    def round(self, value: Decimal) -> Decimal:
        return round_minor(value, self.minor_unit_digits)

    def __str__(self) -> str:
        return self.code

