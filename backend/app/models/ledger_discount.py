"""Discount line on a ledger entry."""

from decimal import Decimal

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base


class LedgerDiscount(Base):
    __tablename__ = "ledger_discounts"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("ledger_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    kind = Column(String(20), nullable=False)  # percentage | fixed
    value = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    applied_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    entry = relationship("LedgerEntry", back_populates="discounts")
