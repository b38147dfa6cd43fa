"""Purchase processing.

A user's first purchase pays 2 credits to them and to their referrer, and
1 credit to the referrer's own referrer.
"""

from refledger.purchases.models import Purchase
from refledger.purchases.service import (
    LEVEL2_REWARD_CREDITS,
    REWARD_CREDITS,
    PurchaseService,
    purchase_service,
)

__all__ = [
    "Purchase",
    "PurchaseService",
    "purchase_service",
    "REWARD_CREDITS",
    "LEVEL2_REWARD_CREDITS",
]
