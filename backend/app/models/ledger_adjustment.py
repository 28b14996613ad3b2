"""Signed adjustment line on a ledger entry."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now


class LedgerAdjustment(Base):
    __tablename__ = "ledger_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("ledger_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(30), nullable=False, default="manual")
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    applied_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    applied_at = Column(DateTime, nullable=False, default=utc_now)

    entry = relationship("LedgerEntry", back_populates="adjustments")
