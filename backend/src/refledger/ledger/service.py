"""Ledger service: the append-only log behind every balance change."""

from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from refledger.auth.models import UserAccount
from refledger.exceptions import NotFoundError, ValidationError
from refledger.ledger.models import LedgerEntry, LedgerReason
from refledger.logging_config import get_logger
from refledger.settings import settings
from refledger.storage.db import db, utcnow

logger = get_logger(__name__)

MAX_PAGE_SIZE = 500


class LedgerService:
    """Service for recording and reading credit movements.

    Operations:
    - Append entries inside a caller's transaction
    - Apply a balance change together with its entry
    - Credit history and activity feed
    - Reconciliation of balances against the ledger
    """

    def __init__(self):
        """Initialize ledger service."""
        self.logger = get_logger(__name__)

    # ==================== WRITES ====================

    def append(
        self,
        session: Session,
        user_id: int,
        delta: int,
        reason: LedgerReason,
        balance_after: int,
        counterpart_user_id: int | None = None,
        purchase_id: int | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry.

        Must be called inside the same transaction as the balance mutation
        the entry documents.

        Args:
            session: Open transactional session
            user_id: User whose balance moved
            delta: Signed credit change
            reason: Why the balance moved
            balance_after: User's balance after the change
            counterpart_user_id: Other party of a referral reward
            purchase_id: Purchase that triggered the movement

        Returns:
            The new ledger entry (flushed, id assigned)
        """
        entry = LedgerEntry(
            user_id=user_id,
            delta=delta,
            balance_after=balance_after,
            reason=reason,
            counterpart_user_id=counterpart_user_id,
            purchase_id=purchase_id,
        )
        session.add(entry)
        session.flush()
        return entry

    def apply(
        self,
        session: Session,
        user_id: int,
        delta: int,
        reason: LedgerReason,
        counterpart_user_id: int | None = None,
        purchase_id: int | None = None,
    ) -> LedgerEntry:
        """Change a user's balance and record the change in one step.

        The increment is done in SQL (``credits = credits + delta``) so
        concurrent transactions never overwrite each other's writes.

        Raises:
            NotFoundError: If the user row does not exist
        """
        session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(credits=UserAccount.credits + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        balance_after = session.scalar(
            select(UserAccount.credits).where(UserAccount.id == user_id)
        )
        if balance_after is None:
            raise NotFoundError(f"User {user_id} not found")

        entry = self.append(
            session,
            user_id=user_id,
            delta=delta,
            reason=reason,
            balance_after=balance_after,
            counterpart_user_id=counterpart_user_id,
            purchase_id=purchase_id,
        )

        self.logger.info(
            "ledger_entry_applied",
            user_id=user_id,
            delta=delta,
            reason=reason.value,
            new_balance=balance_after,
        )
        return entry

    # ==================== READS ====================

    def history_for(
        self,
        user_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        """Get a user's ledger entries, newest first.

        Args:
            user_id: User ID
            limit: Max records (defaults to settings.history_page_size)
            offset: Offset for pagination

        Returns:
            List of ledger entries
        """
        limit = settings.history_page_size if limit is None else limit
        _check_page(limit, offset)

        with db.session() as session:
            return session.query(LedgerEntry).filter(
                LedgerEntry.user_id == user_id
            ).order_by(
                LedgerEntry.created_at.desc(),
                LedgerEntry.id.desc(),
            ).offset(offset).limit(limit).all()

    def activity_for(self, user_id: int, limit: int | None = None) -> list[str]:
        """Narrate recent activity the user took part in.

        Includes the user's own entries and entries where the user is the
        counterpart (e.g. the referrer's reward seen by the referred user).

        Args:
            user_id: User ID
            limit: Max items (defaults to settings.activity_feed_limit)

        Returns:
            Human-readable lines, newest first
        """
        limit = settings.activity_feed_limit if limit is None else limit
        _check_page(limit, 0)

        with db.session() as session:
            entries = session.query(LedgerEntry).filter(
                or_(
                    LedgerEntry.user_id == user_id,
                    LedgerEntry.counterpart_user_id == user_id,
                )
            ).order_by(
                LedgerEntry.created_at.desc(),
                LedgerEntry.id.desc(),
            ).limit(limit).all()

            # Resolve emails of everyone mentioned in one query
            mentioned = {e.user_id for e in entries} | {
                e.counterpart_user_id for e in entries if e.counterpart_user_id
            }
            emails = dict(
                session.query(UserAccount.id, UserAccount.email).filter(
                    UserAccount.id.in_(mentioned)
                ).all()
            ) if mentioned else {}

        return [_narrate(entry, user_id, emails) for entry in entries]

    def balance_from_ledger(self, user_id: int) -> int:
        """Sum of all ledger deltas for a user."""
        with db.session() as session:
            return session.scalar(
                select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
                    LedgerEntry.user_id == user_id
                )
            )

    def reconcile(self) -> list[dict[str, Any]]:
        """Find users whose cached balance disagrees with their ledger.

        Returns:
            One dict per mismatching user (empty when the books balance)
        """
        ledger_totals = (
            select(
                LedgerEntry.user_id.label("user_id"),
                func.sum(LedgerEntry.delta).label("total"),
            )
            .group_by(LedgerEntry.user_id)
            .subquery()
        )

        with db.session() as session:
            rows = session.execute(
                select(
                    UserAccount.id,
                    UserAccount.email,
                    UserAccount.credits,
                    func.coalesce(ledger_totals.c.total, 0),
                )
                .outerjoin(ledger_totals, ledger_totals.c.user_id == UserAccount.id)
                .order_by(UserAccount.id)
            ).all()

        mismatches = [
            {
                "user_id": user_id,
                "email": email,
                "credits": credits,
                "ledger_total": int(total),
            }
            for user_id, email, credits, total in rows
            if credits != total
        ]

        if mismatches:
            self.logger.error("ledger_mismatch", users=[m["user_id"] for m in mismatches])
        else:
            self.logger.info("ledger_reconciled", users_checked=len(rows))

        return mismatches


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
    if offset < 0:
        raise ValidationError("offset must not be negative", field="offset")


def _credits(amount: int) -> str:
    return f"{amount} credit" if amount == 1 else f"{amount} credits"


def _narrate(entry: LedgerEntry, viewer_id: int, emails: dict[int, str]) -> str:
    """Turn one ledger entry into a sentence from the viewer's point of view."""
    if entry.user_id != viewer_id:
        # Someone else's reward that names the viewer as counterpart
        owner = emails.get(entry.user_id, "A user")
        return f"{owner} earned {_credits(entry.delta)} from your referral activity"

    if entry.delta < 0:
        return f"You redeemed {_credits(-entry.delta)}"

    if entry.reason in (LedgerReason.FIRST_PURCHASE_REFERRAL, LedgerReason.SIGNUP_REFERRAL):
        source = emails.get(entry.counterpart_user_id, "a referral")
        return f"You earned {_credits(entry.delta)} from {source}"

    return "Activity recorded"


# Singleton instance
ledger_service = LedgerService()
