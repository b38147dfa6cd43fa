"""Identity store: user accounts, local auth and credit balances.

Services live in ``refledger.auth.local`` and ``refledger.auth.credits``;
they are not re-exported here because the ledger imports the models.
"""

from refledger.auth.models import Redemption, User, UserAccount

__all__ = ["Redemption", "User", "UserAccount"]
