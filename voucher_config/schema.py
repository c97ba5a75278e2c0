"""
Configuration schema - frozen dataclasses produced by the YAML loader.

The jurisdiction rule types themselves live in the kernel
(voucher_kernel.domain.jurisdiction) so the engines can consume them
without depending on this package; they are re-exported here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from voucher_kernel.domain.jurisdiction import (
    JurisdictionRule,
    RegionPair,
    TaxComponentDef,
    TaxFlow,
)
from voucher_kernel.exceptions import UnknownJurisdictionError

__all__ = [
    "AISettings",
    "CoreSettings",
    "JurisdictionRule",
    "RegionPair",
    "TaxComponentDef",
    "TaxFlow",
    "TaxTable",
]


@dataclass(frozen=True)
class TaxTable:
    """All jurisdiction rules from one table file, keyed by code."""

    version: int
    rules: Mapping[str, JurisdictionRule]
    checksum: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", MappingProxyType(dict(self.rules)))

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(sorted(self.rules))

    def get(self, code: str) -> JurisdictionRule:
        """
        Rule for a jurisdiction code (case-insensitive).

        Raises:
            UnknownJurisdictionError: If the code is not in the table.
        """
        key = (code or "").strip().upper()
        try:
            return self.rules[key]
        except KeyError:
            raise UnknownJurisdictionError(code, self.codes) from None


@dataclass(frozen=True)
class AISettings:
    """Connection settings for the AI command service."""

    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-1.5-flash"
    timeout_seconds: float = 30.0
    api_key: str | None = field(default=None, repr=False)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class CoreSettings:
    """Runtime settings for the voucher core."""

    jurisdiction: str = "IN"
    company_region: str | None = None
    context_limit: int = 10
    allow_negative_quantity: bool = False
    tax_table_path: str | None = None
    ai: AISettings = field(default_factory=AISettings)

    def __post_init__(self) -> None:
        if self.context_limit < 1:
            raise ValueError(f"context_limit must be positive, got {self.context_limit}")
