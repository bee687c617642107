"""Listings module for managing property auctions.

This module provides functionality for:
- Creating listings with their reserve price and bidding terms
- Browsing, searching and sorting active listings
- Bid history and per-account activity

Bidding and settlement themselves live in the ``auctions`` module.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Callable

from store import RecordStore, get_store
from store.models import Listing, Bid
from auctions import AuctionEngine, AuctionState, engine as auction_engine
from auctions.errors import ListingNotFoundError
from auctions.rules import auction_state

logger = logging.getLogger(__name__)

# Feed sort keys mapped to (field, descending)
SORTS = {
    'newest': ('created_at', True),
    'ending_soon': ('bid_end_time', False),
    'price_high': ('amount', True),
    'price_low': ('amount', False)
}

MAX_PAGE_SIZE = 100
URL_SCHEMES = ('http://', 'https://')

class ListingError(Exception):
    """Base exception for listing operations."""
    pass

class InvalidListingError(ListingError):
    """Raised when listing fields are invalid."""
    pass

def _required_text(field: str, value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise InvalidListingError(f"{field} is required")
    return value.strip()

def _optional_url(field: str, value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    value = value.strip()
    if not value.startswith(URL_SCHEMES):
        raise InvalidListingError(f"{field} must be an http(s) URL")
    return value

def _positive_int(field: str, value: Any, optional: bool = False) -> Optional[int]:
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidListingError(f"{field} must be a whole number")
    if value <= 0:
        raise InvalidListingError(f"{field} must be positive")
    return value

class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        engine: Optional[AuctionEngine] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the listing manager.

        Args:
            store: Optional record store. If not provided, the process-wide store is used.
            engine: Optional auction engine used to describe listings.
            clock: Optional clock. Defaults to the engine's clock.
        """
        self._store = store
        self.engine = engine or auction_engine
        self._clock = clock

    @property
    def store(self) -> RecordStore:
        return self._store or get_store()

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock or self.engine.clock

    async def create_listing(
        self,
        owner_id: str,
        name: str,
        description: str,
        photo_url: str,
        amount: int,
        initial_bid: int,
        bid_increment: int,
        bid_end_time: datetime,
        square_footage: Optional[int] = None,
        year_built: Optional[int] = None,
        google_maps_url: Optional[str] = None,
        youtube_url: Optional[str] = None,
        additional_info: Optional[Dict[str, Any]] = None
    ) -> Listing:
        """Create a new listing.

        Args:
            owner_id: Account listing the property
            name: Title of the listing
            description: Free-text description
            photo_url: URL of the main photo
            amount: Price the winner pays at settlement
            initial_bid: Minimum first bid
            bid_increment: Minimum raise over the current highest bid
            bid_end_time: Bidding deadline; naive datetimes are taken as UTC
            square_footage: Optional floor area
            year_built: Optional construction year
            google_maps_url: Optional map link
            youtube_url: Optional video tour link
            additional_info: Optional free-form details

        Returns:
            The created Listing

        Raises:
            InvalidListingError: If a field is missing or out of range
        """
        if bid_end_time.tzinfo is None:
            bid_end_time = bid_end_time.replace(tzinfo=timezone.utc)
        now = self.clock()
        if bid_end_time <= now:
            raise InvalidListingError("bid_end_time must be in the future")

        fields = {
            'created_at': now,
            'owner_id': owner_id,
            'name': _required_text('name', name),
            'description': _required_text('description', description),
            'photo_url': _required_text('photo_url', photo_url),
            'amount': _positive_int('amount', amount),
            'initial_bid': _positive_int('initial_bid', initial_bid),
            'bid_increment': _positive_int('bid_increment', bid_increment),
            'bid_end_time': bid_end_time,
            'square_footage': _positive_int('square_footage', square_footage, optional=True),
            'year_built': _positive_int('year_built', year_built, optional=True),
            'google_maps_url': _optional_url('google_maps_url', google_maps_url),
            'youtube_url': _optional_url('youtube_url', youtube_url),
            'additional_info': additional_info or None
        }

        listing = await self.store.insert_listing(fields)
        logger.info(f"Created listing {listing.id} for {owner_id} ending {bid_end_time.isoformat()}")
        return listing

    async def get_listing(self, listing_id: str) -> Listing:
        listing = await self.store.get_listing(listing_id)
        if not listing:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing

    async def browse(
        self,
        sort: str = 'newest',
        search_term: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Dict[str, Any]:
        """Page through active listings.

        Returns:
            Dict containing:
                - listings: Page of listings, each with derived auction fields
                - total_count: Number of matching listings
                - total_pages: Number of pages at this limit
                - current_page: 1-based page number
                - limit, offset: Echo of the paging arguments
        """
        if sort not in SORTS:
            raise ListingError(f"Unknown sort {sort!r}, expected one of {', '.join(SORTS)}")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ListingError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ListingError("offset cannot be negative")

        search_term = search_term.strip() if search_term else None
        order_by, descending = SORTS[sort]

        listings = await self.store.find_listings(
            is_active=True,
            search_term=search_term,
            order_by=order_by,
            descending=descending,
            limit=limit,
            offset=offset
        )
        total_count = await self.store.count_listings(is_active=True, search_term=search_term)

        return {
            'listings': [self.engine.describe(l) for l in listings],
            'total_count': total_count,
            'total_pages': (total_count + limit - 1) // limit,
            'current_page': offset // limit + 1,
            'limit': limit,
            'offset': offset
        }

    async def listings_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        listings = await self.store.find_listings(owner_id=owner_id)
        return [self.engine.describe(l) for l in listings]

    async def _with_bidders(self, bids: List[Bid]) -> List[Dict[str, Any]]:
        bidders = {}
        for bidder_id in {b.bidder_id for b in bids}:
            bidders[bidder_id] = await self.store.get_account(bidder_id)

        history = []
        for bid in bids:
            bidder = bidders.get(bid.bidder_id)
            entry = bid.model_dump()
            entry['bidder_address'] = bidder.address if bidder else None
            entry['bidder_name'] = bidder.display_name if bidder else None
            history.append(entry)
        return history

    async def bid_history(self, listing_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Bids on a listing, newest first, with bidder name and address."""
        await self.get_listing(listing_id)
        bids = await self.store.find_bids(listing_id=listing_id, descending=True, limit=limit)
        return await self._with_bidders(bids)

    async def activity(self, account_id: str) -> Dict[str, Any]:
        """Everything an account has listed, bid on and won.

        Returns:
            Dict containing:
                - owned: Listings the account currently owns
                - active_bids: The account's bids on listings still open for bidding or settlement
                - won: Ended listings the account won but has not settled yet
                - bid_history: All of the account's bids, newest first
        """
        now = self.clock()
        owned = await self.store.find_listings(owner_id=account_id)
        bids = await self.store.find_bids(bidder_id=account_id, descending=True)

        listings: Dict[str, Optional[Listing]] = {}
        for listing_id in {b.listing_id for b in bids}:
            listings[listing_id] = await self.store.get_listing(listing_id)

        active_bids = []
        history = []
        for bid in bids:
            listing = listings.get(bid.listing_id)
            entry = bid.model_dump()
            entry['listing_name'] = listing.name if listing else None
            history.append(entry)
            if listing and listing.is_active:
                entry = dict(entry)
                entry['is_highest'] = listing.current_highest_bidder == account_id
                active_bids.append(entry)

        leading = await self.store.find_listings(highest_bidder_id=account_id, is_active=True)
        won = [l for l in leading if auction_state(l, now) == AuctionState.ENDED_UNSETTLED]

        return {
            'owned': [self.engine.describe(l) for l in owned],
            'active_bids': active_bids,
            'won': [self.engine.describe(l) for l in won],
            'bid_history': history
        }

# Create global instance
manager = ListingManager()

__all__ = [
    'manager',
    'ListingManager',
    'ListingError',
    'InvalidListingError',
    'ListingNotFoundError',
    'SORTS'
]
