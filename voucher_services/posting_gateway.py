"""
SqlAlchemyPostingGateway -- reference PostingGateway on the ORM store.

The gateway is the store's side of the posting contract:

1. Replay: a request whose idempotency key is already posted returns the
   original transaction id and writes nothing.
2. Re-check: the journal lines are summed again; an unbalanced request is
   rejected with UnbalancedVoucherError before anything is written.
3. Write: voucher header, journal lines and ledger balance deltas (debit
   positive, credit negative) are flushed together.
4. Translate: optimistic-lock failures on ledger balances become
   ConcurrentModificationError; any other database error becomes
   PersistenceError.  The session is rolled back in both cases.

The gateway never retries.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.numbering import next_voucher_number
from voucher_kernel.domain.values import ZERO
from voucher_kernel.domain.voucher import VoucherType
from voucher_kernel.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    UnbalancedVoucherError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.posted_voucher import (
    LedgerBalance,
    PostedVoucher,
    PostedVoucherLine,
)
from voucher_services.posting_service import PostingReceipt, PostingRequest

logger = get_logger("services.posting_gateway")


class SqlAlchemyPostingGateway:
    """
    PostingGateway backed by a SQLAlchemy session.

    With commit=False the gateway only flushes and the caller owns the
    transaction (session_scope() or a test fixture).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._commit = commit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_key(self, idempotency_key: str) -> PostedVoucher | None:
        return self._session.execute(
            select(PostedVoucher).where(PostedVoucher.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def get_voucher(self, transaction_id: str) -> PostedVoucher | None:
        return self._session.execute(
            select(PostedVoucher).where(PostedVoucher.id == transaction_id)
        ).scalar_one_or_none()

    def last_voucher_number(self, voucher_type: VoucherType) -> str | None:
        return self._session.execute(
            select(PostedVoucher.voucher_number)
            .where(PostedVoucher.voucher_type == VoucherType(voucher_type).value)
            .order_by(PostedVoucher.voucher_number.desc())
            .limit(1)
        ).scalar_one_or_none()

    def balance_of(self, ledger_ref: str) -> Decimal:
        row = self._session.execute(
            select(LedgerBalance).where(LedgerBalance.ledger_ref == ledger_ref)
        ).scalar_one_or_none()
        return row.balance if row is not None else ZERO

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def _replayed(self, existing: PostedVoucher) -> PostingReceipt:
        logger.info(
            "posting_replayed",
            extra={
                "transaction_id": str(existing.id),
                "idempotency_key": existing.idempotency_key,
            },
        )
        return PostingReceipt(
            transaction_id=str(existing.id),
            voucher_number=existing.voucher_number,
            idempotency_key=existing.idempotency_key,
            replayed=True,
        )

    def _check_balance(self, request: PostingRequest) -> None:
        debit = sum((ln.amount for ln in request.lines if ln.signed_amount > ZERO), ZERO)
        credit = sum((ln.amount for ln in request.lines if ln.signed_amount < ZERO), ZERO)
        currency = request.totals.currency
        if abs(debit - credit) >= currency.balance_tolerance:
            raise UnbalancedVoucherError(
                difference=debit - credit,
                total_debit=debit,
                total_credit=credit,
                currency=currency.code,
            )

    def _apply_balances(self, request: PostingRequest) -> None:
        deltas: dict[str, Decimal] = defaultdict(lambda: ZERO)
        names: dict[str, str] = {}
        for line in request.lines:
            deltas[line.ledger_ref] += line.signed_amount
            names.setdefault(line.ledger_ref, line.ledger_name)

        for ledger_ref in sorted(deltas):
            row = self._session.execute(
                select(LedgerBalance).where(LedgerBalance.ledger_ref == ledger_ref)
            ).scalar_one_or_none()
            if row is None:
                self._session.add(
                    LedgerBalance(
                        ledger_ref=ledger_ref,
                        ledger_name=names[ledger_ref],
                        balance=deltas[ledger_ref],
                    )
                )
            else:
                row.balance = row.balance + deltas[ledger_ref]

    def post(self, request: PostingRequest) -> PostingReceipt:
        existing = self.get_by_key(request.idempotency_key)
        if existing is not None:
            return self._replayed(existing)

        self._check_balance(request)

        draft = request.draft
        number = draft.number or next_voucher_number(
            draft.voucher_type, self.last_voucher_number(draft.voucher_type)
        )
        party = draft.party

        try:
            voucher = PostedVoucher(
                idempotency_key=request.idempotency_key,
                draft_id=draft.draft_id,
                draft_version=draft.version,
                voucher_type=draft.voucher_type.value,
                entry_mode=draft.entry_mode.value,
                voucher_number=number,
                voucher_date=draft.voucher_date,
                reference=draft.reference,
                narration=draft.narration,
                party_name=party.name if party else None,
                party_ref=party.ledger_ref if party else None,
                party_gstin=party.gstin if party else None,
                place_of_supply=party.place_of_supply if party else None,
                currency=request.totals.currency.code,
                total_debit=request.totals.total_debit,
                total_credit=request.totals.total_credit,
                posted_at=self._clock.now(),
                posted_by=request.actor_id,
            )
            self._session.add(voucher)
            for line_no, line in enumerate(request.lines, start=1):
                self._session.add(
                    PostedVoucherLine(
                        voucher=voucher,
                        line_no=line_no,
                        role=line.role.value,
                        ledger_ref=line.ledger_ref,
                        ledger_name=line.ledger_name,
                        side=line.side.value,
                        amount=line.amount,
                        narration=line.narration,
                    )
                )
            self._apply_balances(request)
            self._session.flush()
            if self._commit:
                self._session.commit()
        except StaleDataError as e:
            self._session.rollback()
            logger.warning(
                "posting_conflict",
                extra={"idempotency_key": request.idempotency_key},
            )
            raise ConcurrentModificationError("LedgerBalance", str(e)) from e
        except IntegrityError as e:
            self._session.rollback()
            existing = self.get_by_key(request.idempotency_key)
            if existing is not None:
                return self._replayed(existing)
            raise PersistenceError(f"Integrity violation while posting: {e.orig}") from e
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(f"Database error while posting: {e}") from e

        logger.info(
            "voucher_persisted",
            extra={
                "transaction_id": str(voucher.id),
                "voucher_number": number,
                "line_count": len(request.lines),
            },
        )
        return PostingReceipt(
            transaction_id=str(voucher.id),
            voucher_number=number,
            idempotency_key=request.idempotency_key,
        )
