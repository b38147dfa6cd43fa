"""Purchase processing and first-purchase referral rewards."""

import math
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.auth.models import UserAccount
from refledger.exceptions import NotFoundError, TransactionAbortError, ValidationError
from refledger.ledger.models import LedgerReason
from refledger.ledger.service import ledger_service
from refledger.logging_config import get_logger
from refledger.purchases.models import Purchase
from refledger.referral.models import Referral, ReferralStatus
from refledger.storage.db import db, utcnow

logger = get_logger(__name__)

# Paid to both the referred user and the referrer on the first purchase
REWARD_CREDITS = 2
# Paid to the referrer's own referrer; the chain stops there
LEVEL2_REWARD_CREDITS = 1

# Partial unique index guarding the first purchase, see purchases.models
FIRST_PURCHASE_INDEX = "uq_purchases_first_per_user"


class PurchaseService:
    """Records purchases and pays referral rewards exactly once.

    Everything a purchase causes (the purchase row, both balance increments,
    their ledger entries, the referral status change and the second-tier
    bonus) commits in one transaction or not at all.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        """Initialize purchase service.

        Args:
            clock: Source of "now" for referral expiry checks
        """
        self.clock = clock
        self.logger = get_logger(__name__)

    def process_purchase(self, user_id: int, amount: float) -> Purchase:
        """Record a purchase and reward the referral chain if it is the first.

        Args:
            user_id: Purchasing user's ID
            amount: Purchase amount (must be positive)

        Returns:
            The created purchase

        Raises:
            ValidationError: If amount is not a positive finite number
            NotFoundError: If the user does not exist
            TransactionAbortError: If a concurrent purchase won the first-purchase race
        """
        if (
            not isinstance(amount, (int, float, Decimal))
            or isinstance(amount, bool)
            or not math.isfinite(amount)
            or amount <= 0
        ):
            raise ValidationError("Purchase amount must be positive", field="amount")

        now = self.clock()

        try:
            with db.session() as session:
                # Lock the purchaser so purchases by the same user serialize
                user = session.query(UserAccount).filter(
                    UserAccount.id == user_id
                ).with_for_update().first()

                if not user:
                    raise NotFoundError(f"User {user_id} not found")

                prior = session.query(Purchase.id).filter(
                    Purchase.user_id == user_id
                ).first()

                purchase = Purchase(user_id=user_id, amount=float(amount), is_first=prior is None)
                session.add(purchase)
                session.flush()

                if purchase.is_first:
                    self._reward_referral(session, purchase, now)

                session.commit()

        except IntegrityError as e:
            if not _is_first_purchase_conflict(e):
                raise
            self.logger.warning("first_purchase_race_aborted", user_id=user_id)
            raise TransactionAbortError(
                "Another purchase for this user is being processed, please retry"
            ) from e

        self.logger.info(
            "purchase_processed",
            purchase_id=purchase.id,
            user_id=user_id,
            amount=purchase.amount,
            is_first=purchase.is_first,
        )
        return purchase

    def _reward_referral(self, session: Session, purchase: Purchase, now: datetime) -> None:
        """Pay the first-purchase reward, if the purchaser was referred and is eligible."""
        referral = session.query(Referral).filter(
            Referral.referred_user_id == purchase.user_id
        ).first()

        if not referral:
            self.logger.debug("purchase_not_referred", user_id=purchase.user_id)
            return

        if referral.expiry_date <= now:
            self._skip(referral, "expired")
            return

        if referral.credited:
            self._skip(referral, "already_credited")
            return

        referred = session.get(UserAccount, purchase.user_id)
        referrer = session.get(UserAccount, referral.referrer_id)
        if not referred or not referrer:
            self._skip(referral, "user_missing")
            return

        # Compare-and-set: only one transaction can flip credited to True
        converted = session.execute(
            update(Referral)
            .where(Referral.id == referral.id, Referral.credited.is_(False))
            .values(status=ReferralStatus.CONVERTED, credited=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if converted.rowcount != 1:
            self._skip(referral, "already_credited")
            return

        ledger_service.apply(
            session,
            user_id=referred.id,
            delta=REWARD_CREDITS,
            reason=LedgerReason.FIRST_PURCHASE_REFERRAL,
            counterpart_user_id=referrer.id,
            purchase_id=purchase.id,
        )
        ledger_service.apply(
            session,
            user_id=referrer.id,
            delta=REWARD_CREDITS,
            reason=LedgerReason.FIRST_PURCHASE_REFERRAL,
            counterpart_user_id=referred.id,
            purchase_id=purchase.id,
        )

        self.logger.info(
            "referral_converted",
            referral_id=referral.id,
            referrer_id=referrer.id,
            referred_user_id=referred.id,
            purchase_id=purchase.id,
            reward=REWARD_CREDITS,
        )

        self._reward_grand_referrer(session, purchase, referrer_id=referrer.id, referred_id=referred.id)

    def _reward_grand_referrer(
        self,
        session: Session,
        purchase: Purchase,
        referrer_id: int,
        referred_id: int,
    ) -> None:
        """Second tier: one bonus credit for whoever referred the referrer."""
        parent = session.query(Referral).filter(
            Referral.referred_user_id == referrer_id
        ).first()

        if not parent or parent.level2_credited:
            return

        grand_referrer = session.get(UserAccount, parent.referrer_id)
        if not grand_referrer:
            self._skip(parent, "grand_referrer_missing")
            return

        flagged = session.execute(
            update(Referral)
            .where(Referral.id == parent.id, Referral.level2_credited.is_(False))
            .values(level2_credited=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if flagged.rowcount != 1:
            return

        ledger_service.apply(
            session,
            user_id=grand_referrer.id,
            delta=LEVEL2_REWARD_CREDITS,
            reason=LedgerReason.FIRST_PURCHASE_REFERRAL,
            counterpart_user_id=referred_id,
            purchase_id=purchase.id,
        )

        self.logger.info(
            "level2_reward_awarded",
            referral_id=parent.id,
            grand_referrer_id=grand_referrer.id,
            referred_user_id=referred_id,
            purchase_id=purchase.id,
            reward=LEVEL2_REWARD_CREDITS,
        )

    def _skip(self, referral: Referral, reason: str) -> None:
        self.logger.info(
            "referral_reward_skipped",
            referral_id=referral.id,
            referred_user_id=referral.referred_user_id,
            reason=reason,
        )


def _is_first_purchase_conflict(exc: IntegrityError) -> bool:
    """True if the violated constraint is the one-first-purchase-per-user index."""
    message = str(exc.orig)
    # Postgres names the index; SQLite only names the indexed column
    return FIRST_PURCHASE_INDEX in message or "purchases.user_id" in message


# Singleton instance
purchase_service = PurchaseService()
