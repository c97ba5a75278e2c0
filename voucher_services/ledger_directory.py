"""
LedgerDirectory - read-only view of the ledger master for name resolution.

Responsibility:
    Maps ledger names typed by a user or produced by the AI service to
    ledger ids, and picks the bounded, relevance-ranked subset of ledger
    names sent to the AI service as context.

Resolution order:
    1. Exact match, case-insensitive, surrounding whitespace ignored.
    2. Substring containment (query inside the ledger name), only when
       exactly one ledger matches.
    3. Otherwise unresolved. Ambiguous names are never guessed; an
       unresolved line blocks posting.

Context ranking:
    Token overlap with the command, then recency of use, then name.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from voucher_kernel.domain.values import ZERO
from voucher_kernel.logging_config import get_logger

logger = get_logger("services.ledger_directory")

_TOKEN = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class LedgerInfo:
    """Ledger master record as seen by the voucher core."""

    id: str
    name: str
    group_ref: str | None = None
    balance: Decimal = ZERO
    gstin: str | None = None
    region: str | None = None


class MatchKind(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


@dataclass(frozen=True)
class LedgerMatch:
    query: str
    kind: MatchKind
    ledger: LedgerInfo | None = None
    candidates: tuple[str, ...] = ()

    @property
    def ledger_ref(self) -> str | None:
        return self.ledger.id if self.ledger else None

    @property
    def is_resolved(self) -> bool:
        return self.ledger is not None


def _normalize(name: str) -> str:
    return " ".join(name.split()).lower()


def _tokens(text: str) -> set[str]:
    return set(_TOKEN.findall(text.lower()))


class LedgerDirectory:
    """In-memory ledger lookup with recency tracking."""

    def __init__(self, ledgers: Iterable[LedgerInfo] = ()):
        self._ledgers: dict[str, LedgerInfo] = {}
        self._recency: dict[str, int] = {}
        self._clock = itertools.count(1)
        for ledger in ledgers:
            self.add(ledger)

    def add(self, ledger: LedgerInfo) -> None:
        self._ledgers[ledger.id] = ledger

    def get(self, ledger_id: str) -> LedgerInfo | None:
        return self._ledgers.get(ledger_id)

    def __len__(self) -> int:
        return len(self._ledgers)

    def __iter__(self) -> Iterator[LedgerInfo]:
        return iter(self._ledgers.values())

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(ledger.name for ledger in self._ledgers.values()))

    def match(self, name: str | None) -> LedgerMatch:
        query = _normalize(name or "")
        if not query:
            return LedgerMatch(name or "", MatchKind.NONE)

        exact = [lg for lg in self._ledgers.values() if _normalize(lg.name) == query]
        if len(exact) == 1:
            return LedgerMatch(name, MatchKind.EXACT, exact[0])
        if len(exact) > 1:
            return self._ambiguous(name, exact)

        partial = [lg for lg in self._ledgers.values() if query in _normalize(lg.name)]
        if len(partial) == 1:
            return LedgerMatch(name, MatchKind.SUBSTRING, partial[0])
        if len(partial) > 1:
            return self._ambiguous(name, partial)
        return LedgerMatch(name, MatchKind.NONE)

    def _ambiguous(self, name: str, ledgers: list[LedgerInfo]) -> LedgerMatch:
        candidates = tuple(sorted(lg.name for lg in ledgers))
        logger.info(
            "ledger_name_ambiguous",
            extra={"query": name, "candidates": list(candidates)},
        )
        return LedgerMatch(name, MatchKind.AMBIGUOUS, None, candidates)

    def resolve(self, name: str | None) -> str | None:
        """Ledger id for a name, or None when unknown or ambiguous."""
        return self.match(name).ledger_ref

    def record_use(self, ledger_ref: str) -> None:
        if ledger_ref in self._ledgers:
            self._recency[ledger_ref] = next(self._clock)

    def context_names(self, command: str, limit: int = 10) -> tuple[str, ...]:
        """The ``limit`` most relevant ledger names for a command."""
        words = _tokens(command)

        def rank(ledger: LedgerInfo) -> tuple[int, int, str]:
            overlap = len(words & _tokens(ledger.name))
            return (-overlap, -self._recency.get(ledger.id, 0), ledger.name.lower())

        ranked = sorted(self._ledgers.values(), key=rank)
        return tuple(ledger.name for ledger in ranked[: max(limit, 0)])
