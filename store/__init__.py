"""Record store module.

The record store is the durable home of accounts, listings, bids and login
state. Two backends implement the same interface:

- PostgresStore: CockroachDB/PostgreSQL through the asyncpg pool in ``database``
- MemoryStore: process-local dictionaries, used for tests and local runs

Every multi-record write the auction rules depend on (accepting a bid,
settling a listing) is exposed as one conditional operation so a backend can
run it atomically. Those operations return None when their condition no
longer holds; callers re-read to find out why.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .models import Account, Listing, Bid, AuthChallenge, AuthSession

logger = logging.getLogger(__name__)

# Columns listings may be ordered by
LISTING_ORDER_FIELDS = {'created_at', 'bid_end_time', 'amount', 'name'}

class StoreError(Exception):
    """Raised when the record store itself fails (connection, query)."""
    pass

class RecordStore(ABC):
    """Async interface over account, listing, bid and auth records."""

    async def open(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release backend resources."""

    # Accounts

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def get_account_by_address(self, address: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def create_account(self, address: str, balance: int) -> Tuple[Account, bool]:
        """Create an account for ``address`` unless one exists.

        Returns the account and whether it was created by this call.
        """

    @abstractmethod
    async def update_account_profile(
        self,
        account_id: str,
        display_name: Optional[str],
        email: Optional[str]
    ) -> Optional[Account]:
        ...

    # Listings

    @abstractmethod
    async def insert_listing(self, fields: Dict[str, Any]) -> Listing:
        ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        ...

    @abstractmethod
    async def find_listings(
        self,
        owner_id: Optional[str] = None,
        highest_bidder_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search_term: Optional[str] = None,
        order_by: str = 'created_at',
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Listing]:
        ...

    @abstractmethod
    async def count_listings(
        self,
        owner_id: Optional[str] = None,
        highest_bidder_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search_term: Optional[str] = None
    ) -> int:
        ...

    @abstractmethod
    async def find_expired_unsold(self, now: datetime) -> List[Listing]:
        """Active listings past their deadline that never received a bid."""

    @abstractmethod
    async def compare_and_set_highest_bid(
        self,
        listing_id: str,
        expected_highest_bid: Optional[int],
        bidder_id: str,
        amount: int,
        now: datetime
    ) -> Optional[Tuple[Listing, Bid]]:
        """Append a bid and move the listing's highest bid in one unit.

        Applies only while the listing is active, ``now`` is before its
        deadline and its highest bid still equals ``expected_highest_bid``.
        """

    @abstractmethod
    async def settle_listing(
        self,
        listing_id: str,
        payer_id: str,
        now: datetime
    ) -> Optional[Tuple[Listing, Account]]:
        """Charge the winner and transfer ownership in one unit.

        Applies only while the listing is active, past its deadline, won by
        ``payer_id`` and the payer can cover ``listing.amount``.
        """

    @abstractmethod
    async def close_listing(self, listing_id: str, now: datetime) -> Optional[Listing]:
        """Deactivate an active, ended listing that has no highest bidder."""

    # Bids

    @abstractmethod
    async def find_bids(
        self,
        listing_id: Optional[str] = None,
        bidder_id: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None
    ) -> List[Bid]:
        ...

    # Authentication

    @abstractmethod
    async def insert_challenge(self, address: str, challenge: str, expires_at: datetime) -> AuthChallenge:
        ...

    @abstractmethod
    async def get_challenge(self, challenge_id: str) -> Optional[AuthChallenge]:
        ...

    @abstractmethod
    async def consume_challenge(self, challenge_id: str) -> bool:
        """Mark a challenge used. False if it was already used."""

    @abstractmethod
    async def insert_session(
        self,
        address: str,
        token: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> AuthSession:
        ...

    @abstractmethod
    async def get_session(self, address: str, token: str) -> Optional[AuthSession]:
        """Return the non-revoked session matching address and token."""

    @abstractmethod
    async def touch_session(
        self,
        address: str,
        token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> None:
        ...

    @abstractmethod
    async def revoke_sessions(self, address: str) -> int:
        """Revoke every active session for an address, returning how many."""

def check_order_field(order_by: str) -> str:
    if order_by not in LISTING_ORDER_FIELDS:
        raise ValueError(f"Cannot order listings by {order_by!r}")
    return order_by

_store: Optional[RecordStore] = None

def get_store() -> RecordStore:
    """Get the process-wide record store, creating it from settings on first use."""
    global _store
    if _store is None:
        from config import settings_conf

        if settings_conf['store_backend'] == 'memory':
            from .memory import MemoryStore
            _store = MemoryStore()
        else:
            from .postgres import PostgresStore
            _store = PostgresStore()
        logger.info(f"Using {type(_store).__name__} record store")
    return _store

def set_store(store: Optional[RecordStore]) -> None:
    """Replace the process-wide record store (None resets to settings)."""
    global _store
    _store = store

__all__ = [
    'RecordStore', 'StoreError', 'get_store', 'set_store',
    'Account', 'Listing', 'Bid', 'AuthChallenge', 'AuthSession',
    'LISTING_ORDER_FIELDS'
]
