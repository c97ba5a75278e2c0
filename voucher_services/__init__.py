"""
voucher_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (voucher_engines/)
    with the ledger directory, the AI service and the posting store.  This
    is the **only** layer that performs network I/O, holds database
    sessions, or reads the wall clock.

Architecture position:
    Services -- orchestration over engines + kernel + config.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        voucher_services/ -> voucher_engines/  (allowed)
        voucher_services/ -> voucher_kernel/   (allowed)
        voucher_services/ -> voucher_config/   (allowed)
        voucher_engines/  -> voucher_services/ (FORBIDDEN)
        voucher_kernel/   -> voucher_services/ (FORBIDDEN)

Invariants enforced:
    - Every draft mutation goes through DraftEditor, so derived fields are
      always re-derived.
    - Every submission goes through PostingService, so no unbalanced draft
      and no draft with an AI request in flight reaches a gateway.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from voucher_kernel.logging_config import get_logger

logger = get_logger("services")

from voucher_services.ai_service import (
    ConversationTurn,
    GeminiVoucherService,
    InterpretationRequest,
    VoucherAIService,
)
from voucher_services.command_interpreter import (
    CommandInterpreter,
    InterpretationOutcome,
    InterpreterState,
    PendingRequest,
)
from voucher_services.draft_editor import DraftEditor
from voucher_services.ledger_directory import LedgerDirectory, LedgerInfo, LedgerMatch, MatchKind
from voucher_services.posting_gateway import SqlAlchemyPostingGateway
from voucher_services.posting_service import (
    PostingGateway,
    PostingReceipt,
    PostingRequest,
    PostingResult,
    PostingService,
)
from voucher_services.response_parser import (
    AppliedResponse,
    ClarifyResponse,
    FailedResponse,
    FailureReason,
    ResponseKind,
    VoucherPatch,
    parse_response,
)

__all__ = [
    "AppliedResponse",
    "ClarifyResponse",
    "CommandInterpreter",
    "ConversationTurn",
    "DraftEditor",
    "FailedResponse",
    "FailureReason",
    "GeminiVoucherService",
    "InterpretationOutcome",
    "InterpretationRequest",
    "InterpreterState",
    "LedgerDirectory",
    "LedgerInfo",
    "LedgerMatch",
    "MatchKind",
    "PendingRequest",
    "PostingGateway",
    "PostingReceipt",
    "PostingRequest",
    "PostingResult",
    "PostingService",
    "ResponseKind",
    "SqlAlchemyPostingGateway",
    "VoucherAIService",
    "VoucherPatch",
    "parse_response",
]
