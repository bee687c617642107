"""Auction engine module.

This module owns the bidding and settlement rules:
- Accepting bids against a listing's current highest bid
- Settling an ended listing by charging the winner and transferring ownership
- Closing ended listings that never received a bid

Every state change goes through one conditional record store call, so two
bids racing on the same listing can never both be accepted and a listing
can never be settled twice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from config import settings_conf
from store import RecordStore, get_store
from store.models import Account, Bid, Listing
from .errors import (
    AccountNotFoundError, AuctionEnded, AuctionError, AuctionInactive,
    AuctionNotEnded, BidTooLow, ConflictError, InsufficientBalance,
    ListingNotFoundError, NotHighestBidder, NotListingOwner,
    OwnerBidNotAllowed, PreconditionError, SettlementPending, StoreError
)
from .rules import (
    AuctionState, auction_state, check_bid, check_settlement, current_price,
    format_countdown, has_ended, minimum_next_bid, time_remaining, utcnow
)

logger = logging.getLogger(__name__)

# Marks an expected_highest_bid the caller did not supply
UNSET: Any = object()

@dataclass
class BidReceipt:
    listing: Listing
    bid: Bid

@dataclass
class Settlement:
    listing: Listing
    account: Account

class AuctionEngine:
    """Applies bids, settlements and closures to listings."""

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        allow_owner_bids: Optional[bool] = None
    ):
        """Initialize the auction engine.

        Args:
            store: Optional record store. If not provided, the process-wide store is used.
            clock: Optional callable returning the current aware UTC time.
            allow_owner_bids: Whether owners may bid on their own listings.
                Defaults to the ``allow_owner_bids`` setting.
        """
        self._store = store
        self.clock = clock or utcnow
        self._allow_owner_bids = allow_owner_bids

    @property
    def store(self) -> RecordStore:
        return self._store or get_store()

    @property
    def allow_owner_bids(self) -> bool:
        if self._allow_owner_bids is not None:
            return self._allow_owner_bids
        return bool(settings_conf['allow_owner_bids'])

    async def _get_listing(self, listing_id: str) -> Listing:
        listing = await self.store.get_listing(listing_id)
        if not listing:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing

    async def _get_account(self, account_id: str) -> Account:
        account = await self.store.get_account(account_id)
        if not account:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    async def place_bid(
        self,
        listing_id: str,
        bidder_id: str,
        amount: int,
        expected_highest_bid: Optional[int] = UNSET
    ) -> BidReceipt:
        """Place a bid on a listing.

        Args:
            listing_id: Listing being bid on
            bidder_id: Account placing the bid
            amount: Bid amount in coins
            expected_highest_bid: The highest bid the bidder last saw (None for
                no bids yet). A bid that passes the rules but was made
                against a stale value is refused with ConflictError.

        Returns:
            BidReceipt with the updated listing and the recorded bid

        Raises:
            ListingNotFoundError, AccountNotFoundError: Unknown listing or bidder
            AuctionInactive, AuctionEnded, OwnerBidNotAllowed, BidTooLow: Rule violations
            ConflictError: Another bid was accepted first
            StoreError: The record store failed
        """
        listing = await self._get_listing(listing_id)
        await self._get_account(bidder_id)

        now = self.clock()
        check_bid(listing, bidder_id, amount, now, self.allow_owner_bids)

        if expected_highest_bid is not UNSET and expected_highest_bid != listing.current_highest_bid:
            raise ConflictError(
                f"Listing {listing_id} has a newer highest bid",
                current_highest_bid=listing.current_highest_bid,
                minimum_next_bid=minimum_next_bid(listing)
            )

        result = await self.store.compare_and_set_highest_bid(
            listing_id,
            listing.current_highest_bid,
            bidder_id,
            amount,
            now
        )
        if result is None:
            raise await self._bid_miss(listing_id, now)

        updated, bid = result
        logger.info(f"Accepted bid of {amount} from {bidder_id} on listing {listing_id}")
        return BidReceipt(listing=updated, bid=bid)

    async def _bid_miss(self, listing_id: str, now: datetime) -> AuctionError:
        """Work out why a conditional bid write did not apply."""
        fresh = await self._get_listing(listing_id)
        if not fresh.is_active:
            return AuctionInactive(f"Listing {listing_id} is no longer active")
        if has_ended(fresh, now):
            return AuctionEnded(f"Bidding on listing {listing_id} has ended")

        logger.info(f"Bid on listing {listing_id} lost a race to a concurrent bid")
        return ConflictError(
            f"Listing {listing_id} received a higher bid first",
            current_highest_bid=fresh.current_highest_bid,
            minimum_next_bid=minimum_next_bid(fresh)
        )

    async def settle(self, listing_id: str, payer_id: str) -> Settlement:
        """Pay for a won listing and take ownership.

        Raises:
            ListingNotFoundError, AccountNotFoundError: Unknown listing or payer
            NotHighestBidder, AuctionInactive, AuctionNotEnded, InsufficientBalance:
                Rule violations, checked in that order
            StoreError: The record store failed; nothing was charged
        """
        listing = await self._get_listing(listing_id)
        payer = await self._get_account(payer_id)

        now = self.clock()
        check_settlement(listing, payer, now)

        result = await self.store.settle_listing(listing_id, payer_id, now)
        if result is None:
            # State moved between the read and the write; judge it again
            fresh_listing = await self._get_listing(listing_id)
            fresh_payer = await self._get_account(payer_id)
            check_settlement(fresh_listing, fresh_payer, now)
            raise ConflictError(
                f"Listing {listing_id} changed during settlement",
                current_highest_bid=fresh_listing.current_highest_bid,
                minimum_next_bid=minimum_next_bid(fresh_listing)
            )

        settled, account = result
        logger.info(
            f"Settled listing {listing_id}: {payer_id} paid {settled.amount}, "
            f"balance now {account.balance}"
        )
        return Settlement(listing=settled, account=account)

    async def close_unsold(self, listing_id: str, requester_id: Optional[str] = None) -> Listing:
        """Close an ended listing that never received a bid.

        Args:
            listing_id: Listing to close
            requester_id: Account asking for the closure. When given it must
                own the listing; the background sweep passes None.
        """
        listing = await self._get_listing(listing_id)
        if requester_id is not None and requester_id != listing.owner_id:
            raise NotListingOwner("Only the owner can close this listing")

        now = self.clock()
        self._check_closable(listing, now)

        closed = await self.store.close_listing(listing_id, now)
        if closed is None:
            self._check_closable(await self._get_listing(listing_id), now)
            raise ConflictError(f"Listing {listing_id} changed while closing")

        logger.info(f"Closed unsold listing {listing_id}")
        return closed

    @staticmethod
    def _check_closable(listing: Listing, now: datetime) -> None:
        if not listing.is_active:
            raise AuctionInactive(f"Listing {listing.id} is no longer active")
        if not has_ended(listing, now):
            raise AuctionNotEnded(f"Bidding on listing {listing.id} is still open")
        if listing.current_highest_bidder is not None:
            raise SettlementPending(f"Listing {listing.id} has a winning bid awaiting settlement")

    async def close_expired_unsold(self) -> int:
        """Close every ended listing without bids, returning how many were closed."""
        now = self.clock()
        closed = 0
        for listing in await self.store.find_expired_unsold(now):
            if await self.store.close_listing(listing.id, now):
                closed += 1
        if closed:
            logger.info(f"Closed {closed} unsold listings")
        return closed

    def describe(self, listing: Listing) -> Dict[str, Any]:
        """Listing fields plus the values derived from the clock."""
        now = self.clock()
        remaining = time_remaining(listing, now)
        data = listing.model_dump()
        data.update({
            'state': auction_state(listing, now).value,
            'current_price': current_price(listing),
            'minimum_next_bid': minimum_next_bid(listing),
            'time_remaining_seconds': int(remaining.total_seconds()),
            'countdown': format_countdown(remaining)
        })
        return data

# Create global instance
engine = AuctionEngine()

__all__ = [
    'engine',
    'AuctionEngine',
    'BidReceipt',
    'Settlement',
    'AuctionState',
    'UNSET',
    'AuctionError',
    'PreconditionError',
    'AuctionEnded',
    'AuctionInactive',
    'AuctionNotEnded',
    'BidTooLow',
    'OwnerBidNotAllowed',
    'NotHighestBidder',
    'InsufficientBalance',
    'NotListingOwner',
    'SettlementPending',
    'ConflictError',
    'ListingNotFoundError',
    'AccountNotFoundError',
    'StoreError'
]
