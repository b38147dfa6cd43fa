"""Referral registry for refledger.

- Every user gets an 8-character hex referral code at signup
- Signing up with a code creates a pending referral valid for 30 days
- The referred user's first purchase converts it (see refledger.purchases)
"""

from refledger.referral.models import Referral, ReferralStatus
from refledger.referral.service import ReferralService, referral_service

__all__ = ["Referral", "ReferralStatus", "ReferralService", "referral_service"]
