"""
Pytest fixtures for the voucher core test suite.

Provides:
- Structured logging configured once per session, with log capture
- The bundled jurisdiction table and editors bound to it
- A ledger directory with a small chart of accounts
- SQLite in-memory sessions for the reference posting gateway
- Scripted AI services for interpreter tests
"""

import json
import logging
from collections.abc import Mapping
from io import StringIO
from typing import Any, Generator

import pytest
from sqlalchemy.orm import Session

from voucher_config import get_tax_table
from voucher_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from voucher_kernel.db.immutability import unregister_immutability_listeners
from voucher_kernel.domain.clock import DeterministicClock
from voucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from voucher_kernel.exceptions import AIServiceError
from voucher_services.ai_service import InterpretationRequest
from voucher_services.command_interpreter import CommandInterpreter
from voucher_services.draft_editor import DraftEditor
from voucher_services.ledger_directory import LedgerDirectory, LedgerInfo


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture voucher_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, editor):
            editor.new_draft(VoucherType.SALES)
            logs = captured_logs()
            assert any(r["message"] == "draft_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("voucher_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Configuration fixtures
# =============================================================================


@pytest.fixture(scope="session")
def tax_table():
    return get_tax_table()


@pytest.fixture(scope="session")
def india_rule(tax_table):
    return tax_table.get("IN")


@pytest.fixture(scope="session")
def gb_rule(tax_table):
    return tax_table.get("GB")


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


# =============================================================================
# Ledger master
# =============================================================================


LEDGERS = (
    LedgerInfo("L-CASH", "Cash", group_ref="cash_in_hand"),
    LedgerInfo("L-HDFC", "HDFC Bank", group_ref="bank_accounts"),
    LedgerInfo("L-SALES", "Sales", group_ref="sales_accounts"),
    LedgerInfo("L-PURCHASE", "Purchase", group_ref="purchase_accounts"),
    LedgerInfo("L-RENT", "Office Rent", group_ref="indirect_expenses"),
    LedgerInfo("L-FREIGHT", "Freight Outward", group_ref="indirect_expenses"),
    LedgerInfo("L-DISCOUNT", "Discount Allowed", group_ref="indirect_expenses"),
    LedgerInfo(
        "L-ACME", "Acme Traders", group_ref="sundry_debtors",
        gstin="27AAACA1234A1Z5", region="MH",
    ),
    LedgerInfo(
        "L-BETA", "Beta Supplies", group_ref="sundry_creditors",
        gstin="24AAACB5678B1Z2", region="GJ",
    ),
    LedgerInfo("L-OCGST", "Output CGST", group_ref="duties_and_taxes"),
    LedgerInfo("L-OSGST", "Output SGST", group_ref="duties_and_taxes"),
    LedgerInfo("L-OIGST", "Output IGST", group_ref="duties_and_taxes"),
    LedgerInfo("L-ICGST", "Input CGST", group_ref="duties_and_taxes"),
    LedgerInfo("L-ISGST", "Input SGST", group_ref="duties_and_taxes"),
    LedgerInfo("L-IIGST", "Input IGST", group_ref="duties_and_taxes"),
)


@pytest.fixture
def directory() -> LedgerDirectory:
    return LedgerDirectory(LEDGERS)


@pytest.fixture
def editor(india_rule, directory, deterministic_clock) -> DraftEditor:
    """Editor for an Indian company registered in Maharashtra."""
    return DraftEditor(
        india_rule,
        company_region="MH",
        directory=directory,
        clock=deterministic_clock,
    )


# =============================================================================
# AI service doubles
# =============================================================================


class ScriptedAIService:
    """
    VoucherAIService returning queued responses in order.

    A queued exception is raised instead of returned. Every request is
    recorded for assertions on context and history.
    """

    def __init__(self, *responses: Mapping[str, Any] | str | Exception):
        self.responses = list(responses)
        self.requests: list[InterpretationRequest] = []

    def generate(self, request: InterpretationRequest):
        self.requests.append(request)
        if not self.responses:
            raise AIServiceError("no scripted response left", retryable=False)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def scripted_service():
    """Factory: scripted_service(resp1, resp2, ...) -> ScriptedAIService."""
    return ScriptedAIService


@pytest.fixture
def make_interpreter(editor):
    def _make(*responses, context_limit: int = 10) -> CommandInterpreter:
        return CommandInterpreter(
            editor, ScriptedAIService(*responses), context_limit=context_limit
        )

    return _make


# =============================================================================
# Database fixtures (reference posting gateway)
# =============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """
    Fresh in-memory SQLite database per test.

    Tables are created with the immutability listeners registered; the
    listeners are removed again on teardown.
    """
    init_engine_from_url("sqlite:///:memory:", pool_pre_ping=False)
    create_tables()
    session = get_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        unregister_immutability_listeners()
        drop_tables()
        reset_engine()
