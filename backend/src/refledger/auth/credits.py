"""Credit balances, redemptions and the leaderboard."""

from typing import Any

from sqlalchemy import select, update

from refledger.auth.models import Redemption, UserAccount
from refledger.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from refledger.ledger.models import LedgerReason
from refledger.ledger.service import ledger_service
from refledger.logging_config import get_logger
from refledger.settings import settings
from refledger.storage.db import db, utcnow

logger = get_logger(__name__)

MAX_LEADERBOARD_SIZE = 100


class CreditService:
    """Service for spending and reading user credits.

    Redemptions only touch the user's balance and the ledger; they are
    independent of the referral program.
    """

    def __init__(self):
        """Initialize credit service."""
        self.logger = get_logger(__name__)

    def get_balance(self, user_id: int) -> int:
        """Get user's credit balance.

        Args:
            user_id: User ID

        Returns:
            Credit balance

        Raises:
            NotFoundError: If the user does not exist
        """
        with db.session() as session:
            user = session.query(UserAccount).filter(
                UserAccount.id == user_id
            ).first()

            if not user:
                raise NotFoundError(f"User {user_id} not found")

            return user.credits

    def redeem_credits(self, user_id: int, amount: int, item: str) -> Redemption:
        """Spend credits on an item.

        Args:
            user_id: User ID
            amount: Credits to spend (at least 1)
            item: What the credits are spent on

        Returns:
            Redemption record

        Raises:
            ValidationError: If amount or item is invalid
            NotFoundError: If the user does not exist
            InsufficientCreditsError: If not enough credits
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 1:
            raise ValidationError("Amount must be a whole number of at least 1", field="amount")
        if not isinstance(item, str) or not item.strip():
            raise ValidationError("Item is required", field="item")

        with db.session() as session:
            # SELECT FOR UPDATE to prevent race conditions on concurrent credit deductions
            user = session.query(UserAccount).filter(
                UserAccount.id == user_id
            ).with_for_update().first()

            if not user:
                raise NotFoundError(f"User {user_id} not found")

            if user.credits < amount:
                raise InsufficientCreditsError(amount, user.credits)

            # Conditional decrement: never lets the balance go negative
            result = session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id, UserAccount.credits >= amount)
                .values(credits=UserAccount.credits - amount, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientCreditsError(amount, user.credits)

            redemption = Redemption(user_id=user_id, amount=amount, item=item.strip())
            session.add(redemption)
            session.flush()

            new_balance = session.scalar(
                select(UserAccount.credits).where(UserAccount.id == user_id)
            )
            ledger_service.append(
                session,
                user_id=user_id,
                delta=-amount,
                reason=LedgerReason.REDEMPTION,
                balance_after=new_balance,
            )
            session.commit()

        self.logger.info(
            "credits_redeemed",
            user_id=user_id,
            amount=amount,
            item=redemption.item,
            new_balance=new_balance,
        )
        return redemption

    def get_leaderboard(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Get the users with the most credits.

        Args:
            limit: Max entries (defaults to settings.leaderboard_limit)

        Returns:
            Users sorted by credits, highest first
        """
        limit = settings.leaderboard_limit if limit is None else limit
        if limit < 1 or limit > MAX_LEADERBOARD_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_LEADERBOARD_SIZE}", field="limit")

        with db.session() as session:
            users = session.query(UserAccount).order_by(
                UserAccount.credits.desc(),
                UserAccount.id.asc(),
            ).limit(limit).all()

            return [
                {
                    "user_id": user.id,
                    "email": user.email,
                    "credits": user.credits,
                    "referral_code": user.referral_code,
                }
                for user in users
            ]


# Singleton instance
credit_service = CreditService()
