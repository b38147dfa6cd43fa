"""Referral service for referral codes and the pending referral registry."""

import secrets
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from refledger.auth.models import UserAccount
from refledger.exceptions import ReferralCodeCollisionError
from refledger.logging_config import get_logger
from refledger.referral.models import Referral, ReferralStatus
from refledger.settings import settings
from refledger.storage.db import db, utcnow

logger = get_logger(__name__)

# A referral converts only if the first purchase happens within this window
REFERRAL_EXPIRY_DAYS = 30

CODE_BYTES = 4  # 8 hex characters
MAX_CODE_ATTEMPTS = 10


def _generate_code() -> str:
    """Generate a random referral code.

    Format: 8 lowercase hex characters, e.g. ``3fa9c01b``.
    """
    return secrets.token_hex(CODE_BYTES)


def normalize_code(code: str | None) -> str | None:
    """Normalize user-entered referral code, None if blank."""
    if not code:
        return None
    code = code.strip().lower()
    return code or None


class ReferralService:
    """Service for referral codes and referral relationships."""

    def __init__(self):
        """Initialize referral service."""
        self.logger = get_logger(__name__)

    # ==================== CODES ====================

    def allocate_code(self, session: Session) -> str:
        """Pick a referral code that no user holds yet.

        The check runs in the caller's registration transaction; the unique
        index on ``user_accounts.referral_code`` catches anything a
        concurrent registration slips in between check and insert.

        Args:
            session: Registration transaction

        Returns:
            Unused referral code

        Raises:
            ReferralCodeCollisionError: If no free code was found
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            code = _generate_code()
            taken = session.query(UserAccount.id).filter(
                UserAccount.referral_code == code
            ).first()
            if not taken:
                return code
            self.logger.debug("referral_code_taken", code=code)

        raise ReferralCodeCollisionError(
            f"No free referral code after {MAX_CODE_ATTEMPTS} attempts"
        )

    def validate_code(self, code: str | None) -> UserAccount | None:
        """Resolve a referral code to its owner.

        Args:
            code: Referral code to validate

        Returns:
            Referrer's account if the code is known, None otherwise
        """
        code = normalize_code(code)
        if not code:
            return None

        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.referral_code == code
            ).first()

    # ==================== REGISTRY ====================

    def link_referral(
        self,
        session: Session,
        code: str | None,
        referred_user_id: int,
        now: datetime | None = None,
    ) -> Referral | None:
        """Record that a new user signed up with a referral code.

        Unknown codes are not an error: registration still succeeds, the
        user simply has no referrer.

        Args:
            session: Registration transaction
            code: Referral code entered at signup
            referred_user_id: ID of the user who just registered
            now: Reference time for the expiry window

        Returns:
            The pending (or already existing) referral, None if the code is unknown
        """
        code = normalize_code(code)
        if not code:
            return None

        referrer = session.query(UserAccount).filter(
            UserAccount.referral_code == code
        ).first()

        if not referrer:
            self.logger.info("referral_code_unknown", code=code, referred_user_id=referred_user_id)
            return None

        if referrer.id == referred_user_id:
            self.logger.warning("self_referral_ignored", user_id=referred_user_id)
            return None

        # A user can only ever be referred once
        existing = session.query(Referral).filter(
            Referral.referred_user_id == referred_user_id
        ).first()
        if existing:
            return existing

        now = now or utcnow()
        referral = Referral(
            referrer_id=referrer.id,
            referred_user_id=referred_user_id,
            referral_code=code,
            status=ReferralStatus.PENDING,
            credited=False,
            level2_credited=False,
            expiry_date=now + timedelta(days=REFERRAL_EXPIRY_DAYS),
        )
        session.add(referral)
        session.flush()

        self.logger.info(
            "referral_linked",
            referral_id=referral.id,
            referrer_id=referrer.id,
            referred_user_id=referred_user_id,
            expiry_date=referral.expiry_date.isoformat(),
        )
        return referral

    def get_referral_for_referred(self, user_id: int) -> Referral | None:
        """Get the referral through which a user signed up, if any."""
        with db.session() as session:
            return session.query(Referral).filter(
                Referral.referred_user_id == user_id,
            ).first()

    def get_referrals_for_referrer(self, user_id: int) -> list[dict[str, Any]]:
        """List the users someone has referred.

        Args:
            user_id: Referrer's user ID

        Returns:
            Referral rows joined with the referred user's email, newest first
        """
        with db.session() as session:
            rows = session.query(Referral, UserAccount.email).join(
                UserAccount, UserAccount.id == Referral.referred_user_id
            ).filter(
                Referral.referrer_id == user_id,
            ).order_by(
                Referral.created_at.desc(),
                Referral.id.desc(),
            ).all()

            return [
                {
                    "id": referral.id,
                    "referred_user_id": referral.referred_user_id,
                    "referred_email": email,
                    "status": referral.status.value,
                    "credited": referral.credited,
                    "expiry_date": referral.expiry_date,
                    "created_at": referral.created_at,
                }
                for referral, email in rows
            ]

    def get_referral_stats(self, user_id: int) -> dict[str, Any]:
        """Get referral statistics for a user's dashboard.

        Args:
            user_id: User ID

        Returns:
            Dict with code, share link, referred and converted counts, balance
        """
        with db.session() as session:
            user = session.query(UserAccount).filter(
                UserAccount.id == user_id
            ).first()

            if not user:
                return {}

            referrals = session.query(Referral.status).filter(
                Referral.referrer_id == user_id,
            ).all()

            converted = sum(1 for (status,) in referrals if status == ReferralStatus.CONVERTED)

            return {
                "code": user.referral_code,
                "link": f"{settings.frontend_url.rstrip('/')}/signup?ref={user.referral_code}",
                "total_referred": len(referrals),
                "converted_count": converted,
                "total_credits": user.credits,
            }


# Singleton instance
referral_service = ReferralService()
