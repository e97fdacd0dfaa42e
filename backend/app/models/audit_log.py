"""
Audit Log Database Model.

Tracks authentication events and ledger mutations per user.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - LOGIN_SUCCESS / LOGIN_FAILED / USER_CREATED
    - ENTRY_CREATED / ENTRY_UPDATED / ENTRY_DELETED
    - PARTY_CREATED / PARTY_UPDATED / PARTY_RENAMED / PARTY_DELETED
    - SETTLEMENT_CREATED / SETTLEMENT_REVERSED
    - BALANCES_RECALCULATED / ENTRIES_RECLASSIFIED / COMPANY_RENAMED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for failed logins with unknown user)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Ledger object the action touched
    target_type = Column(String(50), nullable=True)
    target_id = Column(Integer, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, target={self.target_type}:{self.target_id})>"
