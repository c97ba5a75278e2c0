"""
CommandInterpreter -- state machine at the AI boundary.

Responsibility:
    Turns a natural-language command into a draft patch or a clarification
    prompt.  Owns the single in-flight request per interpreter, the bounded
    context bundle, the clarification history, and staleness detection.

Architecture position:
    Services > AI boundary.  Uses the response parser for validation,
    DraftEditor for applying patches, LedgerDirectory for context, and a
    VoucherAIService for transport.

States:

    IDLE --dispatch--> SENT --receive--> APPLIED
                        ^                NEEDS_CLARIFICATION --answer--> SENT
                        |                FAILED
                        +-- dispatch (from any terminal state)

Invariants enforced:
    - One request in flight: dispatch() while SENT raises InterpreterBusyError.
    - Every request is tagged with the draft id and version; a response for
      a cancelled or superseded request, or for a draft that has changed
      since dispatch, is discarded as FAILED(stale_response).
    - No dispatch for a draft while submission_guard() holds it for posting.
    - A rejected response never touches the draft: the patch is applied to
      a copy and only returned when every step succeeded.
    - receive() and fail() never raise; every response lands in
      APPLIED, NEEDS_CLARIFICATION or FAILED.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from voucher_kernel.domain.voucher import VoucherDraft, VoucherType
from voucher_kernel.exceptions import (
    AIInterpretationError,
    AIServiceError,
    InterpreterBusyError,
    RequestInFlightError,
    VoucherKernelError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_services.ai_service import (
    ConversationTurn,
    InterpretationRequest,
    VoucherAIService,
)
from voucher_services.draft_editor import DraftEditor
from voucher_services.ledger_directory import LedgerDirectory
from voucher_services.response_parser import (
    ClarifyResponse,
    FailedResponse,
    FailureReason,
    ResponseKind,
    parse_response,
)

logger = get_logger("services.interpreter")

VOUCHER_TYPE_NAMES: tuple[str, ...] = tuple(vt.value for vt in VoucherType)


class InterpreterState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    APPLIED = "applied"
    NEEDS_CLARIFICATION = "needs_clarification"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingRequest:
    """A dispatched request, tagged with the draft identity it was built from."""

    request_id: str
    draft_id: str
    draft_version: int
    request: InterpretationRequest


@dataclass(frozen=True)
class InterpretationOutcome:
    """
    Terminal result of one response.

    draft is the patched draft when APPLIED and the caller's draft,
    untouched, otherwise.
    """

    kind: ResponseKind
    draft: VoucherDraft
    questions: tuple[str, ...] = ()
    suggested_voucher_type: VoucherType | None = None
    error: AIInterpretationError | None = None

    @property
    def retryable(self) -> bool:
        return self.error.retryable if self.error is not None else False


class CommandInterpreter:
    """
    Drives one conversation with the AI service.

    Usage:
        interpreter = CommandInterpreter(editor, service)
        outcome = interpreter.interpret(draft, "paid rent 5000 by cash")
        if outcome.kind is ResponseKind.CLARIFY:
            outcome = interpreter.answer(draft, "5000 to Landlord")
    """

    def __init__(
        self,
        editor: DraftEditor,
        service: VoucherAIService | None = None,
        *,
        directory: LedgerDirectory | None = None,
        context_limit: int = 10,
    ):
        self.editor = editor
        self.service = service
        self.directory = directory if directory is not None else editor.directory
        self.context_limit = context_limit
        self._lock = threading.Lock()
        self._state = InterpreterState.IDLE
        self._pending: PendingRequest | None = None
        self._command = ""
        self._history: tuple[ConversationTurn, ...] = ()
        self._last_response: Mapping[str, Any] = {}
        self._questions: tuple[str, ...] = ()
        self._submitting: set[str] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> InterpreterState:
        return self._state

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @property
    def is_busy(self) -> bool:
        return self._state is InterpreterState.SENT

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        return self._history

    @property
    def questions(self) -> tuple[str, ...]:
        return self._questions

    def pending_for(self, draft_id: str) -> PendingRequest | None:
        """The in-flight request for a draft, if any."""
        with self._lock:
            pending = self._pending
            if pending is not None and pending.draft_id == draft_id:
                return pending
            return None

    @contextmanager
    def submission_guard(self, draft_id: str) -> Iterator[None]:
        """
        Hold off dispatches for a draft while it is being posted.

        dispatch() and answer_clarification() for the draft raise
        InterpreterBusyError until the block exits.

        Raises:
            RequestInFlightError: If a request for the draft is pending.
        """
        with self._lock:
            pending = self._pending
            if pending is not None and pending.draft_id == draft_id:
                raise RequestInFlightError(draft_id, pending.request_id)
            self._submitting.add(draft_id)
        try:
            yield
        finally:
            with self._lock:
                self._submitting.discard(draft_id)

    def _transition(self, state: InterpreterState, **extra: Any) -> None:
        previous = self._state
        self._state = state
        logger.info(
            "interpreter_state_changed",
            extra={"from_state": previous.value, "to_state": state.value, **extra},
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def build_request(self, command: str) -> InterpretationRequest:
        return InterpretationRequest(
            command=command,
            ledger_names=self.directory.context_names(command, self.context_limit),
            voucher_types=VOUCHER_TYPE_NAMES,
            history=self._history,
        )

    def _send(self, draft: VoucherDraft) -> PendingRequest:
        pending = PendingRequest(
            request_id=str(uuid4()),
            draft_id=draft.draft_id,
            draft_version=draft.version,
            request=self.build_request(self._command),
        )
        self._pending = pending
        self._transition(
            InterpreterState.SENT,
            request_id=pending.request_id,
            draft_id=draft.draft_id,
            draft_version=draft.version,
            context_size=len(pending.request.ledger_names),
        )
        return pending

    def dispatch(self, draft: VoucherDraft, command: str) -> PendingRequest:
        """
        Start a new conversation for a command.

        Raises:
            InterpreterBusyError: If a request is already in flight or the
                draft is being posted.
        """
        with self._lock:
            if self._state is InterpreterState.SENT and self._pending is not None:
                raise InterpreterBusyError(self._pending.request_id)
            if draft.draft_id in self._submitting:
                raise InterpreterBusyError(None, draft.draft_id)
            self._command = command
            self._history = ()
            self._questions = ()
            return self._send(draft)

    def answer_clarification(self, draft: VoucherDraft, answer: str) -> PendingRequest:
        """
        Re-send the original command with the user's answer in the history.

        Raises:
            InterpreterBusyError: If a request is already in flight.
            ValueError: If no clarification is outstanding.
        """
        with self._lock:
            if self._state is InterpreterState.SENT and self._pending is not None:
                raise InterpreterBusyError(self._pending.request_id)
            if draft.draft_id in self._submitting:
                raise InterpreterBusyError(None, draft.draft_id)
            if self._state is not InterpreterState.NEEDS_CLARIFICATION:
                raise ValueError(f"no clarification outstanding (state={self._state.value})")
            self._history = self._history + (
                ConversationTurn(self._command, self._last_response, answer),
            )
            return self._send(draft)

    def cancel(self) -> None:
        """Abandon the in-flight request; its response will be discarded."""
        with self._lock:
            if self._pending is None:
                return
            request_id = self._pending.request_id
            self._pending = None
            self._history = ()
            self._transition(InterpreterState.IDLE, request_id=request_id, reason="cancelled")

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _failed(
        self,
        draft: VoucherDraft,
        reason: FailureReason,
        detail: str,
        retryable: bool = True,
    ) -> InterpretationOutcome:
        return InterpretationOutcome(
            kind=ResponseKind.FAILED,
            draft=draft,
            error=AIInterpretationError(reason.value, detail, retryable),
        )

    def receive(
        self,
        pending: PendingRequest,
        raw: Any,
        current_draft: VoucherDraft,
    ) -> InterpretationOutcome:
        """Classify a raw response and, when valid and fresh, apply it."""
        with self._lock:
            if self._pending is None or self._pending.request_id != pending.request_id:
                logger.info(
                    "ai_response_discarded",
                    extra={"request_id": pending.request_id, "reason": "superseded"},
                )
                return self._failed(
                    current_draft, FailureReason.STALE_RESPONSE, "request is no longer pending"
                )

            self._pending = None
            if (
                current_draft.draft_id != pending.draft_id
                or current_draft.version != pending.draft_version
            ):
                self._transition(
                    InterpreterState.FAILED,
                    request_id=pending.request_id,
                    reason=FailureReason.STALE_RESPONSE.value,
                )
                return self._failed(
                    current_draft,
                    FailureReason.STALE_RESPONSE,
                    f"draft changed since dispatch (version {pending.draft_version} "
                    f"-> {current_draft.version})",
                )

            with LogContext.bind(request_id=pending.request_id, draft_id=pending.draft_id):
                return self._classify(pending, raw, current_draft)

    def _classify(
        self, pending: PendingRequest, raw: Any, draft: VoucherDraft
    ) -> InterpretationOutcome:
        parsed = parse_response(raw)

        if isinstance(parsed, FailedResponse):
            self._transition(InterpreterState.FAILED, reason=parsed.reason.value)
            return self._failed(draft, parsed.reason, parsed.detail)

        if isinstance(parsed, ClarifyResponse):
            self._last_response = raw if isinstance(raw, Mapping) else {
                "needsClarification": True,
                "questions": list(parsed.questions),
            }
            self._questions = parsed.questions
            self._transition(
                InterpreterState.NEEDS_CLARIFICATION, question_count=len(parsed.questions)
            )
            return InterpretationOutcome(
                kind=ResponseKind.CLARIFY,
                draft=draft,
                questions=parsed.questions,
                suggested_voucher_type=parsed.suggested_voucher_type,
            )

        try:
            patched = self.editor.apply_patch(draft, parsed.patch)
        except (VoucherKernelError, ArithmeticError) as e:
            self._transition(InterpreterState.FAILED, reason=FailureReason.INVALID_PATCH.value)
            return self._failed(draft, FailureReason.INVALID_PATCH, str(e))

        self._history = ()
        self._questions = ()
        self._transition(
            InterpreterState.APPLIED,
            voucher_type=patched.voucher_type.value,
            draft_version=patched.version,
        )
        return InterpretationOutcome(kind=ResponseKind.APPLIED, draft=patched)

    def fail(
        self,
        pending: PendingRequest,
        error: AIServiceError,
        current_draft: VoucherDraft,
    ) -> InterpretationOutcome:
        """Record a transport or service failure for the pending request."""
        with self._lock:
            if self._pending is None or self._pending.request_id != pending.request_id:
                return self._failed(
                    current_draft, FailureReason.STALE_RESPONSE, "request is no longer pending"
                )
            self._pending = None
            self._transition(
                InterpreterState.FAILED,
                request_id=pending.request_id,
                reason=FailureReason.SERVICE_ERROR.value,
                retryable=error.retryable,
            )
            return self._failed(
                current_draft, FailureReason.SERVICE_ERROR, str(error), error.retryable
            )

    # ------------------------------------------------------------------
    # Synchronous round trips
    # ------------------------------------------------------------------

    def _round_trip(self, pending: PendingRequest, draft: VoucherDraft) -> InterpretationOutcome:
        if self.service is None:
            return self.fail(
                pending, AIServiceError("no AI service configured", retryable=False), draft
            )
        try:
            raw = self.service.generate(pending.request)
        except AIServiceError as e:
            return self.fail(pending, e, draft)
        return self.receive(pending, raw, draft)

    def interpret(self, draft: VoucherDraft, command: str) -> InterpretationOutcome:
        """
        Dispatch a command and wait for the service's response.

        Raises:
            InterpreterBusyError: If a request is already in flight.
        """
        return self._round_trip(self.dispatch(draft, command), draft)

    def answer(self, draft: VoucherDraft, answer: str) -> InterpretationOutcome:
        """Answer the outstanding clarification and wait for the response."""
        return self._round_trip(self.answer_clarification(draft, answer), draft)
