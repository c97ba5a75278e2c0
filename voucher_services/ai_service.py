"""
AI voucher service -- HTTP client for the generative model endpoint.

Responsibility:
    Sends one interpretation request (command, bounded ledger context,
    clarification history) to the model and returns the decoded JSON
    object the model produced.  It does not validate the object; that is
    the response parser's job.

Architecture position:
    Services > AI boundary.  The only module that performs network I/O
    for interpretation.  Uses httpx; tests inject an httpx.MockTransport.

Failure modes:
    - AIServiceError(retryable=True) on timeouts, transport errors and 5xx.
    - AIServiceError(retryable=False) on 4xx, a missing API key, or a
      reply without candidate text.
    - Undecodable candidate text is returned as raw text so the parser can
      classify it as malformed_json.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from voucher_config.schema import AISettings
from voucher_kernel.exceptions import AIServiceError
from voucher_kernel.logging_config import get_logger
from voucher_services.response_parser import decode_response_text

logger = get_logger("services.ai")


@dataclass(frozen=True)
class ConversationTurn:
    """One prior exchange kept for a clarification follow-up."""

    command: str
    response: Mapping[str, Any]
    answer: str = ""


@dataclass(frozen=True)
class InterpretationRequest:
    command: str
    ledger_names: tuple[str, ...] = ()
    voucher_types: tuple[str, ...] = ()
    history: tuple[ConversationTurn, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "context": {
                "ledgerNames": list(self.ledger_names),
                "voucherTypes": list(self.voucher_types),
            },
            "history": [
                {"command": t.command, "response": dict(t.response), "answer": t.answer}
                for t in self.history
            ],
        }


class VoucherAIService(Protocol):
    """Anything that turns an InterpretationRequest into a raw response."""

    def generate(self, request: InterpretationRequest) -> Mapping[str, Any] | str: ...


_CONTRACT = """\
Reply with a single JSON object and nothing else.
Voucher:
  {"voucherType": <one of the voucher types>, "amount": <number>,
   "narration": <string>, "party": <ledger name, optional>,
   "entries": [{"ledger": <ledger name>, "amount": <number>,
                "type": "debit" | "credit", "stockItem": <optional>,
                "quantity": <optional number>, "rate": <optional number>}]}
Clarification:
  {"needsClarification": true, "questions": [<string>, ...],
   "suggestedVoucherType": <optional voucher type>}
Use only the ledger names listed in the context. Do not compute taxes."""


def build_prompt(request: InterpretationRequest) -> str:
    """Render the request as a single prompt string."""
    payload = request.to_payload()
    parts = [
        "You convert accounting commands into voucher JSON.",
        _CONTRACT,
        "Context: " + json.dumps(payload["context"]),
    ]
    for turn in payload["history"]:
        parts.append("Original command: " + turn["command"])
        parts.append("Your previous response: " + json.dumps(turn["response"], default=str))
        if turn["answer"]:
            parts.append("User answer: " + turn["answer"])
    parts.append("Command: " + request.command)
    return "\n\n".join(parts)


def extract_candidate_text(body: Any) -> str:
    """
    The text of the first candidate in a generateContent reply.

    Raises:
        AIServiceError: If the reply has no candidate text.
    """
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise AIServiceError("AI reply has no candidate text", retryable=False) from None
    if not isinstance(text, str):
        raise AIServiceError("AI reply candidate text is not a string", retryable=False)
    return text


class GeminiVoucherService:
    """
    VoucherAIService over the generateContent REST endpoint.

    Usage:
        service = GeminiVoucherService(settings.ai)
        raw = service.generate(InterpretationRequest("paid rent 5000", names))
    """

    def __init__(
        self,
        settings: AISettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings
        self._client = httpx.Client(timeout=settings.timeout_seconds, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GeminiVoucherService:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def url(self) -> str:
        return f"{self.settings.endpoint.rstrip('/')}/{self.settings.model}:generateContent"

    def generate(self, request: InterpretationRequest) -> Mapping[str, Any] | str:
        if not self.settings.is_configured:
            raise AIServiceError("AI API key is not configured", retryable=False)

        body = {"contents": [{"parts": [{"text": build_prompt(request)}]}]}
        start = time.monotonic()
        try:
            response = self._client.post(
                self.url,
                params={"key": self.settings.api_key},
                json=body,
            )
        except httpx.TimeoutException as e:
            logger.warning("ai_request_timeout", extra={"model": self.settings.model})
            raise AIServiceError(f"AI request timed out: {e}", retryable=True) from e
        except httpx.RequestError as e:
            logger.warning("ai_request_failed", extra={"model": self.settings.model, "error": str(e)})
            raise AIServiceError(f"AI request failed: {e}", retryable=True) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("ai_request_invalid", extra={"model": self.settings.model, "error": str(e)})
            raise AIServiceError(f"AI request could not be sent: {e}", retryable=False) from e

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        logger.info(
            "ai_request_completed",
            extra={
                "model": self.settings.model,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        if response.status_code == 404:
            raise AIServiceError(
                "AI endpoint not found; check the API key and model",
                retryable=False,
                status_code=404,
            )
        if response.status_code >= 500:
            raise AIServiceError(
                f"AI service error {response.status_code}",
                retryable=True,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise AIServiceError(
                f"AI request rejected with {response.status_code}",
                retryable=False,
                status_code=response.status_code,
            )

        try:
            reply = response.json()
        except (ValueError, RecursionError) as e:
            raise AIServiceError("AI reply is not JSON", retryable=True) from e

        text = extract_candidate_text(reply)
        try:
            return decode_response_text(text)
        except (ValueError, RecursionError):
            return text
