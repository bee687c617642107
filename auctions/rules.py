"""Bidding rules as pure functions of a listing snapshot and the time.

Nothing here touches the record store; the engine applies these checks
before its conditional writes, and the store re-checks the time and price
conditions inside the write itself.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from store.models import Account, Listing
from .errors import (
    AuctionEnded, AuctionInactive, AuctionNotEnded, BidTooLow,
    InsufficientBalance, NotHighestBidder, OwnerBidNotAllowed
)

class AuctionState(str, Enum):
    OPEN = "open"
    ENDED_UNSETTLED = "ended_unsettled"
    ENDED_NO_BIDS = "ended_no_bids"
    SETTLED = "settled"
    CLOSED = "closed"

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def minimum_next_bid(listing: Listing) -> int:
    """Smallest amount the next bid may carry."""
    if listing.current_highest_bid is not None:
        return listing.current_highest_bid + listing.bid_increment
    return listing.initial_bid

def current_price(listing: Listing) -> int:
    if listing.current_highest_bid is not None:
        return listing.current_highest_bid
    return listing.initial_bid

def has_ended(listing: Listing, now: datetime) -> bool:
    return now >= listing.bid_end_time

def auction_state(listing: Listing, now: datetime) -> AuctionState:
    """Derive the listing's state from its flags and the clock.

    The ended states are never written back; every read recomputes them.
    """
    has_winner = listing.current_highest_bidder is not None
    if not listing.is_active:
        return AuctionState.SETTLED if has_winner else AuctionState.CLOSED
    if not has_ended(listing, now):
        return AuctionState.OPEN
    return AuctionState.ENDED_UNSETTLED if has_winner else AuctionState.ENDED_NO_BIDS

def time_remaining(listing: Listing, now: datetime) -> timedelta:
    return max(timedelta(0), listing.bid_end_time - now)

def format_countdown(remaining: timedelta) -> str:
    """Render a countdown such as '2d 3h 4m 5s', dropping leading zero units."""
    total = int(remaining.total_seconds())
    if total <= 0:
        return "Bidding ended"

    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    return f"{minutes}m {seconds}s"

def check_bid(
    listing: Listing,
    bidder_id: str,
    amount: int,
    now: datetime,
    allow_owner_bids: bool = False
) -> None:
    """Raise the first bidding rule the bid breaks, if any."""
    if not listing.is_active:
        raise AuctionInactive(f"Listing {listing.id} is no longer active")
    if has_ended(listing, now):
        raise AuctionEnded(f"Bidding on listing {listing.id} ended at {listing.bid_end_time.isoformat()}")
    if not allow_owner_bids and bidder_id == listing.owner_id:
        raise OwnerBidNotAllowed("Owners cannot bid on their own listing")

    minimum = minimum_next_bid(listing)
    if amount < minimum:
        raise BidTooLow(amount, minimum)

def check_settlement(listing: Listing, payer: Account, now: datetime) -> None:
    """Raise the first settlement rule the payer breaks, if any.

    Identity is checked first so that anyone other than the winner always
    gets NotHighestBidder, and a repeated settlement by the winner gets
    AuctionInactive.
    """
    if listing.current_highest_bidder is None or payer.id != listing.current_highest_bidder:
        raise NotHighestBidder("Only the highest bidder can settle this listing")
    if not listing.is_active:
        raise AuctionInactive(f"Listing {listing.id} has already been settled")
    if not has_ended(listing, now):
        raise AuctionNotEnded(f"Bidding on listing {listing.id} is still open")
    if payer.balance < listing.amount:
        raise InsufficientBalance(payer.balance, listing.amount)
