"""Referral registry database models."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, UniqueConstraint

from refledger.storage.db import Base, utcnow


class ReferralStatus(str, Enum):
    """Lifecycle of a referral."""
    PENDING = "pending"        # Signed up, no qualifying purchase yet
    CONVERTED = "converted"    # First purchase made, rewards paid


class Referral(Base):
    """Individual referral record.

    Tracks the relationship between a referrer and the user who signed up
    with their code. ``credited`` and ``level2_credited`` only ever go from
    False to True.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_user_id", name="uq_referrals_pair"),
    )

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    referral_code = Column(String(20), nullable=False, index=True)

    # Status
    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.PENDING, index=True)
    credited = Column(Boolean, nullable=False, default=False)  # First-purchase reward paid
    level2_credited = Column(Boolean, nullable=False, default=False)  # Grand-referrer bonus paid
    expiry_date = Column(DateTime, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Referral(referrer={self.referrer_id}, referred={self.referred_user_id}, status={self.status})>"
