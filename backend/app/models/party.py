"""
Party database model.

A registered counterparty owned by one user. Only party_name matters to
the balance engine; the remaining columns are bookkeeping metadata.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, UniqueConstraint
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base
from backend.app.models.ledger_enums import PartyStatus, MondayFinalFlag


class Party(Base):
    """
    Party model.

    party_name is unique per user. Deleting a party deletes its ledger
    entries (handled by the party registry, entries carry the name, not an FK).
    """
    __tablename__ = "parties"
    __table_args__ = (
        UniqueConstraint("user_id", "party_name", name="uq_parties_user_party_name"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    party_name = Column(String(255), nullable=False)

    # Bookkeeping metadata
    sr_no = Column(String(10), nullable=False)
    status = Column(String(1), default=PartyStatus.ACTIVE.value, nullable=False)
    commission_system = Column(String(50), default="Take", nullable=False)
    balance_limit = Column(Numeric(15, 2), default=0, nullable=False)
    m_commission = Column(String(50), default="No Commission", nullable=False)
    rate = Column(Numeric(15, 2), default=0, nullable=False)
    monday_final = Column(String(3), default=MondayFinalFlag.NO.value, nullable=False)

    # Contact
    address = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Party(id={self.id}, user_id={self.user_id}, party_name='{self.party_name}', sr_no='{self.sr_no}')>"
