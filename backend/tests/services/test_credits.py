"""
Tests for redemptions, credit history, activity feed, leaderboard and reconciliation.
"""
import pytest
from sqlalchemy import update

from conftest import count_rows, credits_of, ledger_entries
from refledger.auth.credits import credit_service
from refledger.auth.models import Redemption, UserAccount
from refledger.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from refledger.ledger.models import LedgerReason
from refledger.ledger.service import ledger_service
from refledger.purchases.service import REWARD_CREDITS, purchase_service
from refledger.storage.db import db


@pytest.fixture
def rewarded_pair(referral_pair):
    """R and U after U's first purchase: both hold REWARD_CREDITS"""
    referrer, referred = referral_pair
    purchase_service.process_purchase(referred.id, 10)
    return referrer, referred


class TestRedeem:
    """Spending credits"""

    def test_insufficient_credits_changes_nothing(self, rewarded_pair):
        _, referred = rewarded_pair

        with pytest.raises(InsufficientCreditsError) as exc_info:
            credit_service.redeem_credits(referred.id, 3, "gift card")

        assert exc_info.value.required == 3
        assert exc_info.value.available == REWARD_CREDITS
        assert credits_of(referred.id) == REWARD_CREDITS
        assert count_rows(Redemption) == 0
        assert len(ledger_entries(referred.id)) == 1

    def test_redeem_debits_balance_and_ledger(self, rewarded_pair):
        _, referred = rewarded_pair

        redemption = credit_service.redeem_credits(referred.id, REWARD_CREDITS, " gift card ")

        assert redemption.item == "gift card"
        assert redemption.amount == REWARD_CREDITS
        assert credit_service.get_balance(referred.id) == 0

        debit = ledger_entries(referred.id)[-1]
        assert debit.delta == -REWARD_CREDITS
        assert debit.balance_after == 0
        assert debit.reason == LedgerReason.REDEMPTION
        assert debit.counterpart_user_id is None
        assert ledger_service.reconcile() == []

    def test_balance_cannot_go_negative(self, rewarded_pair):
        _, referred = rewarded_pair
        credit_service.redeem_credits(referred.id, 1, "sticker")
        credit_service.redeem_credits(referred.id, 1, "sticker")

        with pytest.raises(InsufficientCreditsError):
            credit_service.redeem_credits(referred.id, 1, "sticker")

        assert credits_of(referred.id) == 0
        assert count_rows(Redemption) == 2

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_rejects_invalid_amount(self, rewarded_pair, amount):
        _, referred = rewarded_pair

        with pytest.raises(ValidationError) as exc_info:
            credit_service.redeem_credits(referred.id, amount, "gift card")

        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("item", ["", "   ", None, 123])
    def test_rejects_blank_or_non_text_item(self, rewarded_pair, item):
        _, referred = rewarded_pair

        with pytest.raises(ValidationError) as exc_info:
            credit_service.redeem_credits(referred.id, 1, item)

        assert exc_info.value.field == "item"

    def test_unknown_user(self):
        with pytest.raises(NotFoundError):
            credit_service.redeem_credits(9999, 1, "gift card")
        with pytest.raises(NotFoundError):
            credit_service.get_balance(9999)


class TestHistory:
    """Ledger entries per user, newest first"""

    def test_newest_first_with_pagination(self, rewarded_pair):
        _, referred = rewarded_pair
        credit_service.redeem_credits(referred.id, 1, "sticker")

        history = ledger_service.history_for(referred.id)

        assert [e.reason for e in history] == [
            LedgerReason.REDEMPTION,
            LedgerReason.FIRST_PURCHASE_REFERRAL,
        ]
        assert [e.balance_after for e in history] == [REWARD_CREDITS - 1, REWARD_CREDITS]

        page = ledger_service.history_for(referred.id, limit=1, offset=1)
        assert [e.id for e in page] == [history[1].id]

    def test_empty_for_user_without_activity(self, register):
        user = register("solo@example.com")
        assert ledger_service.history_for(user.id) == []

    @pytest.mark.parametrize("limit,offset", [(0, 0), (501, 0), (10, -1)])
    def test_rejects_bad_page(self, register, limit, offset):
        user = register("solo@example.com")

        with pytest.raises(ValidationError):
            ledger_service.history_for(user.id, limit=limit, offset=offset)


class TestActivityFeed:
    """Readable sentences from the viewer's point of view"""

    def test_referred_user_feed(self, rewarded_pair):
        referrer, referred = rewarded_pair
        credit_service.redeem_credits(referred.id, 1, "sticker")

        feed = ledger_service.activity_for(referred.id)

        assert feed[0] == "You redeemed 1 credit"
        assert set(feed[1:]) == {
            f"You earned {REWARD_CREDITS} credits from r@example.com",
            f"r@example.com earned {REWARD_CREDITS} credits from your referral activity",
        }

    def test_referrer_feed_mentions_referred_user(self, rewarded_pair):
        referrer, _ = rewarded_pair

        feed = ledger_service.activity_for(referrer.id)

        assert f"You earned {REWARD_CREDITS} credits from u@example.com" in feed
        assert f"u@example.com earned {REWARD_CREDITS} credits from your referral activity" in feed

    def test_singular_credit_for_second_tier_bonus(self, referral_chain):
        grand, referrer, referred = referral_chain
        purchase_service.process_purchase(referred.id, 10)

        assert ledger_service.activity_for(grand.id) == ["You earned 1 credit from u@example.com"]
        assert "g@example.com earned 1 credit from your referral activity" in (
            ledger_service.activity_for(referred.id)
        )

    def test_limit(self, rewarded_pair):
        _, referred = rewarded_pair
        assert len(ledger_service.activity_for(referred.id, limit=1)) == 1


class TestLeaderboard:
    """Users ranked by balance"""

    def test_sorted_by_credits_then_id(self, referral_chain, register):
        grand, referrer, referred = referral_chain
        register("late@example.com")
        purchase_service.process_purchase(referred.id, 10)

        board = credit_service.get_leaderboard()

        assert [row["user_id"] for row in board[:3]] == [referrer.id, referred.id, grand.id]
        assert [row["credits"] for row in board] == [2, 2, 1, 0]
        assert board[0]["email"] == "r@example.com"
        assert board[0]["referral_code"] == referrer.referral_code

    def test_limit(self, referral_chain):
        assert len(credit_service.get_leaderboard(2)) == 2

    @pytest.mark.parametrize("limit", [0, 101])
    def test_rejects_bad_limit(self, limit):
        with pytest.raises(ValidationError):
            credit_service.get_leaderboard(limit)


class TestReconcile:
    """Cached balances checked against the ledger"""

    def test_clean_books(self, rewarded_pair):
        assert ledger_service.reconcile() == []

    def test_detects_tampered_balance(self, rewarded_pair):
        referrer, referred = rewarded_pair
        with db.session() as session:
            session.execute(
                update(UserAccount).where(UserAccount.id == referrer.id).values(credits=50)
            )

        mismatches = ledger_service.reconcile()

        assert mismatches == [{
            "user_id": referrer.id,
            "email": "r@example.com",
            "credits": 50,
            "ledger_total": REWARD_CREDITS,
        }]
