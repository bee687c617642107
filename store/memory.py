"""In-process record store.

All writes run under one asyncio lock, which is the single authority that
serialises bid acceptance and settlement for this process. Records are
handed out as copies so callers hold snapshots, just as they would with a
database.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from . import RecordStore, check_order_field
from .models import Account, Listing, Bid, AuthChallenge, AuthSession

def _now() -> datetime:
    return datetime.now(timezone.utc)

class MemoryStore(RecordStore):
    """Dictionary-backed RecordStore."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._accounts: Dict[str, Account] = {}
        self._listings: Dict[str, Listing] = {}
        self._bids: List[Bid] = []
        self._challenges: Dict[str, AuthChallenge] = {}
        self._sessions: List[AuthSession] = []

    # Internal writers; stored records never share nested state with callers

    def _write_account(self, account: Account) -> None:
        self._accounts[account.id] = account.model_copy(deep=True)

    def _write_listing(self, listing: Listing) -> None:
        self._listings[listing.id] = listing.model_copy(deep=True)

    # Accounts

    async def get_account(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def get_account_by_address(self, address: str) -> Optional[Account]:
        for account in self._accounts.values():
            if account.address == address:
                return account.model_copy(deep=True)
        return None

    async def create_account(self, address: str, balance: int) -> Tuple[Account, bool]:
        async with self._lock:
            existing = await self.get_account_by_address(address)
            if existing:
                return existing, False

            now = _now()
            account = Account(
                id=str(uuid.uuid4()),
                address=address,
                balance=balance,
                created_at=now,
                updated_at=now
            )
            self._write_account(account)
            return account.model_copy(deep=True), True

    async def update_account_profile(
        self,
        account_id: str,
        display_name: Optional[str],
        email: Optional[str]
    ) -> Optional[Account]:
        async with self._lock:
            account = self._accounts.get(account_id)
            if not account:
                return None
            updated = account.model_copy(deep=True, update={
                'display_name': display_name,
                'email': email,
                'updated_at': _now()
            })
            self._write_account(updated)
            return updated.model_copy(deep=True)

    # Listings

    async def insert_listing(self, fields: Dict[str, Any]) -> Listing:
        async with self._lock:
            fields = dict(fields)
            now = fields.pop('created_at', None) or _now()
            listing = Listing(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                **fields
            )
            self._write_listing(listing)
            return listing.model_copy(deep=True)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        listing = self._listings.get(listing_id)
        return listing.model_copy(deep=True) if listing else None

    def _matching_listings(
        self,
        owner_id: Optional[str],
        highest_bidder_id: Optional[str],
        is_active: Optional[bool],
        search_term: Optional[str]
    ) -> List[Listing]:
        term = search_term.lower() if search_term else None
        matches = []
        for listing in self._listings.values():
            if owner_id is not None and listing.owner_id != owner_id:
                continue
            if highest_bidder_id is not None and listing.current_highest_bidder != highest_bidder_id:
                continue
            if is_active is not None and listing.is_active != is_active:
                continue
            if term and term not in listing.name.lower() and term not in listing.description.lower():
                continue
            matches.append(listing)
        return matches

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
        check_order_field(order_by)
        matches = self._matching_listings(owner_id, highest_bidder_id, is_active, search_term)
        matches.sort(key=lambda l: getattr(l, order_by), reverse=descending)
        end = offset + limit if limit is not None else None
        return [l.model_copy(deep=True) for l in matches[offset:end]]

    async def count_listings(
        self,
        owner_id: Optional[str] = None,
        highest_bidder_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search_term: Optional[str] = None
    ) -> int:
        return len(self._matching_listings(owner_id, highest_bidder_id, is_active, search_term))

    async def find_expired_unsold(self, now: datetime) -> List[Listing]:
        return [
            l.model_copy(deep=True) for l in self._listings.values()
            if l.is_active and l.bid_end_time <= now and l.current_highest_bidder is None
        ]

    async def compare_and_set_highest_bid(
        self,
        listing_id: str,
        expected_highest_bid: Optional[int],
        bidder_id: str,
        amount: int,
        now: datetime
    ) -> Optional[Tuple[Listing, Bid]]:
        async with self._lock:
            listing = self._listings.get(listing_id)
            if (
                listing is None
                or not listing.is_active
                or now >= listing.bid_end_time
                or listing.current_highest_bid != expected_highest_bid
            ):
                return None

            bid = Bid(
                id=str(uuid.uuid4()),
                listing_id=listing_id,
                bidder_id=bidder_id,
                amount=amount,
                created_at=now
            )
            updated = listing.model_copy(deep=True, update={
                'current_highest_bid': amount,
                'current_highest_bidder': bidder_id,
                'updated_at': now
            })
            self._write_listing(updated)
            self._bids.append(bid)
            return updated.model_copy(deep=True), bid.model_copy(deep=True)

    async def settle_listing(
        self,
        listing_id: str,
        payer_id: str,
        now: datetime
    ) -> Optional[Tuple[Listing, Account]]:
        async with self._lock:
            listing = self._listings.get(listing_id)
            payer = self._accounts.get(payer_id)
            if (
                listing is None
                or payer is None
                or not listing.is_active
                or now < listing.bid_end_time
                or listing.current_highest_bidder != payer_id
                or payer.balance < listing.amount
            ):
                return None

            charged = payer.model_copy(deep=True, update={
                'balance': payer.balance - listing.amount,
                'updated_at': now
            })
            transferred = listing.model_copy(deep=True, update={
                'owner_id': payer_id,
                'is_active': False,
                'closed_at': now,
                'updated_at': now
            })

            # Both records are built before either is written
            self._write_account(charged)
            self._write_listing(transferred)

            return transferred.model_copy(deep=True), charged.model_copy(deep=True)

    async def close_listing(self, listing_id: str, now: datetime) -> Optional[Listing]:
        async with self._lock:
            listing = self._listings.get(listing_id)
            if (
                listing is None
                or not listing.is_active
                or now < listing.bid_end_time
                or listing.current_highest_bidder is not None
            ):
                return None
            closed = listing.model_copy(deep=True, update={
                'is_active': False,
                'closed_at': now,
                'updated_at': now
            })
            self._write_listing(closed)
            return closed.model_copy(deep=True)

    # Bids

    async def find_bids(
        self,
        listing_id: Optional[str] = None,
        bidder_id: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None
    ) -> List[Bid]:
        # Append order is acceptance order, which breaks created_at ties
        bids = [
            b for b in self._bids
            if (listing_id is None or b.listing_id == listing_id)
            and (bidder_id is None or b.bidder_id == bidder_id)
        ]
        if descending:
            bids.reverse()
        if limit is not None:
            bids = bids[:limit]
        return [b.model_copy(deep=True) for b in bids]

    # Authentication

    async def insert_challenge(self, address: str, challenge: str, expires_at: datetime) -> AuthChallenge:
        async with self._lock:
            record = AuthChallenge(
                id=str(uuid.uuid4()),
                address=address,
                challenge=challenge,
                expires_at=expires_at,
                created_at=_now()
            )
            self._challenges[record.id] = record
            return record.model_copy(deep=True)

    async def get_challenge(self, challenge_id: str) -> Optional[AuthChallenge]:
        record = self._challenges.get(challenge_id)
        return record.model_copy(deep=True) if record else None

    async def consume_challenge(self, challenge_id: str) -> bool:
        async with self._lock:
            record = self._challenges.get(challenge_id)
            if record is None or record.used:
                return False
            self._challenges[challenge_id] = record.model_copy(deep=True, update={'used': True})
            return True

    async def insert_session(
        self,
        address: str,
        token: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> AuthSession:
        async with self._lock:
            session = AuthSession(
                id=str(uuid.uuid4()),
                address=address,
                token=token,
                expires_at=expires_at,
                user_agent=user_agent,
                ip_address=ip_address,
                created_at=_now()
            )
            self._sessions.append(session)
            return session.model_copy(deep=True)

    async def get_session(self, address: str, token: str) -> Optional[AuthSession]:
        for session in self._sessions:
            if session.address == address and session.token == token and not session.revoked:
                return session.model_copy(deep=True)
        return None

    async def touch_session(
        self,
        address: str,
        token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> None:
        async with self._lock:
            for i, session in enumerate(self._sessions):
                if session.address == address and session.token == token and not session.revoked:
                    self._sessions[i] = session.model_copy(deep=True, update={
                        'last_used_at': _now(),
                        'user_agent': user_agent,
                        'ip_address': ip_address
                    })

    async def revoke_sessions(self, address: str) -> int:
        async with self._lock:
            revoked = 0
            now = _now()
            for i, session in enumerate(self._sessions):
                if session.address == address and not session.revoked:
                    self._sessions[i] = session.model_copy(deep=True, update={'revoked': True, 'revoked_at': now})
                    revoked += 1
            return revoked
