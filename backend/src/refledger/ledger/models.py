"""Ledger database models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer

from refledger.storage.db import Base, utcnow


class LedgerReason(str, Enum):
    """Why a credit movement happened."""
    SIGNUP_REFERRAL = "signup_referral"
    FIRST_PURCHASE_REFERRAL = "first_purchase_referral"
    REDEMPTION = "redemption"


class LedgerEntry(Base):
    """Append-only record of a credit movement.

    Rows are never updated or deleted; the sum of ``delta`` per user equals
    that user's ``credits``.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    # Movement
    delta = Column(Integer, nullable=False)  # Positive = credit, Negative = debit
    balance_after = Column(Integer, nullable=False)
    reason = Column(SQLEnum(LedgerReason), nullable=False)

    # Reference
    counterpart_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True, index=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, user={self.user_id}, delta={self.delta}, reason={self.reason})>"
