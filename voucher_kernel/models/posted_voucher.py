"""
Module: voucher_kernel.models.posted_voucher
Responsibility: ORM persistence for posted vouchers and their journal lines
    in the reference posting store.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Idempotency key uniqueness (UNIQUE constraint on idempotency_key).
    - Immutability: ORM listeners in db/immutability.py block UPDATE and
      DELETE on both tables; a posted voucher is written once.

Failure modes:
    - IntegrityError on duplicate idempotency_key.
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import Base, UUIDString


class PostedVoucher(Base):
    """
    Posted voucher header.

    The id is the persisted transaction identifier returned to callers.
    """

    __tablename__ = "posted_vouchers"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_posted_voucher_idempotency"),
        Index("idx_posted_voucher_type_number", "voucher_type", "voucher_number"),
        Index("idx_posted_voucher_draft", "draft_id"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    draft_id: Mapped[str] = mapped_column(String(64), nullable=False)
    draft_version: Mapped[int] = mapped_column(nullable=False)

    voucher_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entry_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)
    voucher_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reference: Mapped[str] = mapped_column(String(200), default="")
    narration: Mapped[str] = mapped_column(String(1000), default="")

    party_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    party_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    party_gstin: Mapped[str | None] = mapped_column(String(20), nullable=True)
    place_of_supply: Mapped[str | None] = mapped_column(String(50), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_debit: Mapped[Decimal] = mapped_column(nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(nullable=False)

    posted_at: Mapped[datetime] = mapped_column(nullable=False)
    posted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list["PostedVoucherLine"]] = relationship(
        back_populates="voucher",
        order_by="PostedVoucherLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<PostedVoucher {self.voucher_number} {self.voucher_type} key={self.idempotency_key}>"


class PostedVoucherLine(Base):
    """One debit or credit line of a posted voucher. Amount is always positive."""

    __tablename__ = "posted_voucher_lines"

    __table_args__ = (
        UniqueConstraint("voucher_id", "line_no", name="uq_posted_line_no"),
        Index("idx_posted_line_ledger", "ledger_ref"),
    )

    voucher_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("posted_vouchers.id"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    ledger_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    ledger_name: Mapped[str] = mapped_column(String(200), nullable=False)
    side: Mapped[str] = mapped_column(String(6), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    narration: Mapped[str] = mapped_column(String(1000), default="")

    voucher: Mapped[PostedVoucher] = relationship(back_populates="lines")


class LedgerBalance(Base):
    """
    Running balance per ledger, signed debit-positive.

    version_id is SQLAlchemy's optimistic lock: an UPDATE against a row
    whose version changed since it was read raises StaleDataError.
    """

    __tablename__ = "ledger_balances"

    __table_args__ = (
        UniqueConstraint("ledger_ref", name="uq_ledger_balance_ref"),
    )

    ledger_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    ledger_name: Mapped[str] = mapped_column(String(200), nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    version_id: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
