"""
Per-user settings model.

Holds the company name, which doubles as the company self-account
virtual category in the ledger.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from backend.app.core.timeutils import utcnow
from backend.app.db.session import Base


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    company_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserSettings(user_id={self.user_id}, company_name='{self.company_name}')>"
