"""Identity store models: user accounts and credit redemptions."""

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from refledger.storage.db import Base, utcnow


class UserAccount(Base):
    """User account.

    ``credits`` is a cached projection of the user's ledger entries and is
    only ever changed in the same transaction that appends to the ledger.
    """
    __tablename__ = "user_accounts"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_accounts_credits_non_negative"),
    )

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)

    # Referral code other users sign up with
    referral_code = Column(String(20), unique=True, nullable=False, index=True)

    # Credits
    credits = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, credits={self.credits})>"


class Redemption(Base):
    """Credits spent by a user on an item."""
    __tablename__ = "redemptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    amount = Column(Integer, nullable=False)
    item = Column(String(255), nullable=False)  # Description or SKU

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Redemption(id={self.id}, user={self.user_id}, amount={self.amount})>"


# Pydantic models for API


class User(BaseModel):
    """User data for API responses."""
    id: int
    email: str
    referral_code: str
    credits: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User
