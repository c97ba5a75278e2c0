"""
PostingService -- the only path from a draft to the posting gateway.

Responsibility:
    Runs every pre-submission check atomically, builds the journal lines
    the gateway persists, hands them over with an idempotency key, and
    returns the draft in its final, immutable posted state.

Architecture position:
    Services -- composes the aggregator (pure), the ledger directory and a
    PostingGateway (external store contract).

Checks, in order, under one lock.  Checks 2-6 and the gateway call run
inside the interpreter's submission_guard(), so no AI dispatch for the
draft can start between the in-flight check and the write:
    1. The draft is not already posted        -> DraftImmutableError
    2. No AI request is in flight for it      -> RequestInFlightError
    3. At least one non-zero line, balanced   -> EmptyVoucherError /
                                                 UnbalancedVoucherError
    4. A party when the voucher type has one  -> MissingPartyError
    5. Every amount line names a ledger       -> MissingLedgerError
    6. Every ledger name resolved to an id    -> UnresolvedLedgerError

Failure modes:
    Gateway errors (PersistenceError family, UnbalancedVoucherError)
    propagate verbatim.  Posting is never retried here; a retry by the
    caller with the same idempotency key is deduplicated by the gateway.
"""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from typing import Protocol

from voucher_engines.aggregator import JournalLine, LineRole, VoucherAggregator, VoucherTotals
from voucher_kernel.domain.voucher import VoucherDraft, mark_posted
from voucher_kernel.exceptions import (
    DraftImmutableError,
    MissingLedgerError,
    MissingPartyError,
    RequestInFlightError,
    UnresolvedLedgerError,
    VoucherKernelError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.utils.idempotency import generate_idempotency_key
from voucher_services.command_interpreter import CommandInterpreter
from voucher_services.ledger_directory import LedgerDirectory

logger = get_logger("services.posting")

IDEMPOTENCY_PRODUCER = "voucher"


@dataclass(frozen=True)
class PostingRequest:
    """Everything a gateway needs to persist one voucher."""

    draft: VoucherDraft
    lines: tuple[JournalLine, ...]
    totals: VoucherTotals
    idempotency_key: str
    actor_id: str | None = None


@dataclass(frozen=True)
class PostingReceipt:
    """
    Gateway acknowledgement.

    replayed is True when the idempotency key had already been posted and
    the original transaction id is returned.
    """

    transaction_id: str
    voucher_number: str
    idempotency_key: str
    replayed: bool = False


class PostingGateway(Protocol):
    """External store contract."""

    def post(self, request: PostingRequest) -> PostingReceipt: ...


@dataclass(frozen=True)
class PostingResult:
    draft: VoucherDraft
    receipt: PostingReceipt
    totals: VoucherTotals

    @property
    def transaction_id(self) -> str:
        return self.receipt.transaction_id


def _missing_ledger(line: JournalLine) -> bool:
    return not line.ledger_name.strip() and line.ledger_ref is None


class PostingService:
    """
    Validates drafts and submits them to a PostingGateway.

    Usage:
        service = PostingService(editor.aggregator, gateway, editor.directory, interpreter)
        result = service.submit(draft)
        result.draft.is_posted   # True
    """

    def __init__(
        self,
        aggregator: VoucherAggregator,
        gateway: PostingGateway,
        directory: LedgerDirectory | None = None,
        interpreter: CommandInterpreter | None = None,
    ):
        self.aggregator = aggregator
        self.gateway = gateway
        self.directory = directory
        self.interpreter = interpreter
        self._lock = threading.Lock()

    def _check_lines(
        self, draft: VoucherDraft
    ) -> tuple[tuple[JournalLine, ...], VoucherTotals]:
        totals = self.aggregator.check_postable(draft)
        lines = self.aggregator.journal_lines(draft)

        if draft.profile.has_party and draft.party is None:
            raise MissingPartyError(draft.voucher_type.value)

        for line in lines:
            if _missing_ledger(line):
                raise MissingLedgerError(line.role.value, line.source_index)

        unresolved = tuple(
            (line.role.value, line.source_index, line.ledger_name)
            for line in lines
            if line.ledger_ref is None
        )
        if unresolved:
            raise UnresolvedLedgerError(unresolved)

        return lines, totals

    def validate(
        self,
        draft: VoucherDraft,
        interpreter: CommandInterpreter | None = None,
    ) -> tuple[tuple[JournalLine, ...], VoucherTotals]:
        """
        Run every pre-submission check once, without holding anything.

        Returns:
            The journal lines and totals that would be posted.
        """
        if draft.is_posted:
            raise DraftImmutableError(draft.draft_id, draft.transaction_id)

        interpreter = interpreter or self.interpreter
        if interpreter is not None:
            pending = interpreter.pending_for(draft.draft_id)
            if pending is not None:
                raise RequestInFlightError(draft.draft_id, pending.request_id)

        return self._check_lines(draft)

    def submit(
        self,
        draft: VoucherDraft,
        *,
        idempotency_key: str | None = None,
        interpreter: CommandInterpreter | None = None,
        actor_id: str | None = None,
    ) -> PostingResult:
        """
        Validate and post a draft.

        The default idempotency key is derived from the draft id and
        version, so re-submitting the same draft is deduplicated.
        """
        key = idempotency_key or generate_idempotency_key(
            IDEMPOTENCY_PRODUCER, draft.draft_id, draft.version
        )
        interpreter = interpreter or self.interpreter
        guard: AbstractContextManager[None] = (
            interpreter.submission_guard(draft.draft_id)
            if interpreter is not None
            else nullcontext()
        )
        with self._lock, LogContext.bind(
            draft_id=draft.draft_id, idempotency_key=key, actor_id=actor_id
        ):
            try:
                if draft.is_posted:
                    raise DraftImmutableError(draft.draft_id, draft.transaction_id)
                with guard:
                    lines, totals = self._check_lines(draft)
                    receipt = self.gateway.post(
                        PostingRequest(
                            draft=draft,
                            lines=lines,
                            totals=totals,
                            idempotency_key=key,
                            actor_id=actor_id,
                        )
                    )
            except VoucherKernelError as e:
                logger.warning(
                    "posting_rejected",
                    extra={"error_code": e.code, "error": str(e)},
                )
                raise

            if self.directory is not None:
                for line in lines:
                    if line.role is not LineRole.TAX and line.ledger_ref:
                        self.directory.record_use(line.ledger_ref)

            posted = mark_posted(draft, receipt.transaction_id)
            logger.info(
                "voucher_posted",
                extra={
                    "transaction_id": receipt.transaction_id,
                    "voucher_number": receipt.voucher_number,
                    "voucher_type": draft.voucher_type.value,
                    "total_debit": str(totals.total_debit),
                    "line_count": len(lines),
                    "replayed": receipt.replayed,
                },
            )
            return PostingResult(draft=posted, receipt=receipt, totals=totals)
