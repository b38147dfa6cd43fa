"""Purchase database models."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from refledger.storage.db import Base, utcnow


class Purchase(Base):
    """A purchase event.

    ``is_first`` is decided when the row is inserted and never changes.
    """

    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    is_first: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Purchase(id={self.id}, user={self.user_id}, amount={self.amount}, first={self.is_first})>"


# At most one first purchase per user, even when two transactions race
Index(
    "uq_purchases_first_per_user",
    Purchase.user_id,
    unique=True,
    sqlite_where=Purchase.is_first.is_(True),
    postgresql_where=Purchase.is_first.is_(True),
)
