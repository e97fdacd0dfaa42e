"""
Ledger Entry database model.

One bookkeeping line against a party (or a virtual category) for one user.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Enum, ForeignKey, Numeric, Index, true
)
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base
from backend.app.models.ledger_enums import EntryDirection, EntryKind


class LedgerEntry(Base):
    """
    Ledger Entry model.

    - balance is derived by the balance recalculator, never client input.
    - Settled rows have is_old_record=True and settlement_ref pointing at the
      settlement marker that absorbed them. settlement_ref is a weak lookup
      (no FK) so a deleted marker can leave repairable orphans.
    - created_at is assigned in Python so rows created within the same
      second still order correctly on databases with coarse server clocks.
    - needs_classification is False for rows written by the service and
      True (server default) for rows imported from the old ledger; the
      reclassification pass clears it, so each row is migrated once.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_user_party", "user_id", "party_name"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    party_name = Column(String(255), nullable=False)

    # Business date and ordering tie-breaker
    entry_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Financials
    tns_type = Column(Enum(EntryDirection), nullable=False)
    credit = Column(Numeric(15, 2), default=0, nullable=False)
    debit = Column(Numeric(15, 2), default=0, nullable=False)
    balance = Column(Numeric(15, 2), default=0, nullable=False)
    remarks = Column(String(500), nullable=True)

    # Classification
    kind = Column(Enum(EntryKind), default=EntryKind.ORDINARY, nullable=False, index=True)
    category = Column(String(255), nullable=True)
    needs_classification = Column(Boolean, default=False, server_default=true(), nullable=False)

    # Settlement bookkeeping
    is_old_record = Column(Boolean, default=False, nullable=False)
    settlement_date = Column(DateTime(timezone=True), nullable=True)
    settlement_ref = Column(Integer, nullable=True, index=True)

    # Reconciliation
    chk = Column(Boolean, default=False, nullable=False)
    ti = Column(String(100), nullable=True)

    @property
    def is_settlement_marker(self) -> bool:
        return self.kind == EntryKind.SETTLEMENT_MARKER

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, party='{self.party_name}', date={self.entry_date}, "
            f"type='{self.tns_type.value if self.tns_type else None}', credit={self.credit}, "
            f"debit={self.debit}, balance={self.balance}, kind='{self.kind.value if self.kind else None}')>"
        )
