"""
Commission Transaction database model.

One brokered deal: a client pays the house account, the house pays the
vendor net of the client commission, the vendor pays the full amount back
and the house pays the vendor an incentive. The ledger lines of the deal
are ordinary LedgerEntry rows sharing `transaction_id` as their `ti`.
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Numeric, UniqueConstraint
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base
from backend.app.models.ledger_enums import CommissionStatus


class CommissionTransaction(Base):
    __tablename__ = "commission_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "transaction_id", name="uq_commission_transactions_user_ti"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id = Column(String(50), nullable=False)

    client_name = Column(String(255), nullable=False)
    vendor_name = Column(String(255), nullable=False)
    house_account = Column(String(255), nullable=False)  # company name or Commission

    transaction_date = Column(Date, nullable=False)
    original_amount = Column(Numeric(15, 2), nullable=False)
    client_commission_rate = Column(Numeric(5, 2), nullable=False)
    vendor_commission_rate = Column(Numeric(5, 2), nullable=False)
    client_commission = Column(Numeric(15, 2), nullable=False)
    vendor_commission = Column(Numeric(15, 2), nullable=False)
    remarks = Column(String(500), nullable=True)

    status = Column(String(20), default=CommissionStatus.ACTIVE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def net_to_vendor(self):
        return self.original_amount - self.client_commission

    @property
    def net_profit(self):
        return self.client_commission - self.vendor_commission

    @property
    def house_balance(self):
        """What the deal leaves on the house account: everything it received minus what it paid out."""
        return 2 * self.original_amount - self.net_to_vendor - self.vendor_commission

    def __repr__(self):
        return (
            f"<CommissionTransaction(transaction_id='{self.transaction_id}', client='{self.client_name}', "
            f"vendor='{self.vendor_name}', amount={self.original_amount}, status='{self.status}')>"
        )
