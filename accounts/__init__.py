"""Accounts module.

An account is created the first time a wallet address logs in and is
credited the signup bonus exactly once. Balances only change through
settlement in the ``auctions`` module.
"""

import logging
import re
from typing import Optional

from config import settings_conf
from store import RecordStore, get_store
from store.models import Account
from auctions.errors import AccountNotFoundError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MAX_DISPLAY_NAME_LENGTH = 64

class ProfileError(Exception):
    """Raised when profile fields are invalid."""
    pass

def normalize_address(address: str) -> str:
    return address.strip().lower()

def _clean(value: Optional[str]) -> Optional[str]:
    # Blank strings clear the field
    if value is None:
        return None
    value = value.strip()
    return value or None

class AccountManager:
    """Manager class for wallet accounts."""

    def __init__(self, store: Optional[RecordStore] = None, signup_bonus: Optional[int] = None):
        self._store = store
        self._signup_bonus = signup_bonus

    @property
    def store(self) -> RecordStore:
        return self._store or get_store()

    @property
    def signup_bonus(self) -> int:
        if self._signup_bonus is not None:
            return self._signup_bonus
        return settings_conf['signup_bonus']

    async def get_or_create(self, address: str) -> Account:
        """Get the account for a wallet address, creating it on first login."""
        address = normalize_address(address)
        account, created = await self.store.create_account(address, self.signup_bonus)
        if created:
            logger.info(f"Created account {account.id} for {address} with {account.balance} coins")
        return account

    async def get_account(self, account_id: str) -> Account:
        account = await self.store.get_account(account_id)
        if not account:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    async def get_account_by_address(self, address: str) -> Account:
        account = await self.store.get_account_by_address(normalize_address(address))
        if not account:
            raise AccountNotFoundError(f"No account for address {address}")
        return account

    async def update_profile(
        self,
        account_id: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None
    ) -> Account:
        """Replace the account's display name and email.

        Raises:
            ProfileError: If the display name is too long or the email is malformed
            AccountNotFoundError: If the account does not exist
        """
        display_name = _clean(display_name)
        email = _clean(email)

        if display_name and len(display_name) > MAX_DISPLAY_NAME_LENGTH:
            raise ProfileError(f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters")
        if email and not EMAIL_PATTERN.match(email):
            raise ProfileError(f"Invalid email address: {email}")

        account = await self.store.update_account_profile(account_id, display_name, email)
        if not account:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

# Create global instance
manager = AccountManager()

__all__ = [
    'manager',
    'AccountManager',
    'ProfileError',
    'AccountNotFoundError',
    'normalize_address'
]
