"""Authenticated listing endpoints: creating listings, bidding, settlement and closing."""

from fastapi import APIRouter, status, Security
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from store import StoreError
from store.models import Account
from auctions import engine, UNSET, AuctionError
from listings import manager, ListingError
from auth import get_current_account
from ..errors import http_error

# Create router without prefix since it will be included in the main listings router
router = APIRouter()

class CreateListingRequest(BaseModel):
    """Model for creating a new listing."""
    name: str = Field(..., description="Title of the listing")
    description: str = Field(..., description="Description of the property")
    photo_url: str = Field(..., description="URL of the main photo")
    amount: int = Field(..., description="Price the winning bidder pays at settlement")
    initial_bid: int = Field(..., description="Minimum first bid")
    bid_increment: int = Field(..., description="Minimum raise over the current highest bid")
    bid_end_time: datetime = Field(..., description="Bidding deadline (UTC if no offset is given)")
    square_footage: Optional[int] = None
    year_built: Optional[int] = None
    google_maps_url: Optional[str] = None
    youtube_url: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None

class BidRequest(BaseModel):
    """Model for placing a bid."""
    amount: int = Field(..., description="Bid amount in coins")
    expected_highest_bid: Optional[int] = Field(
        None,
        description="Highest bid the client last saw (null when there were no bids). "
                    "When sent, a stale value is refused with 409 instead of being re-judged."
    )

@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_listing(
    listing: CreateListingRequest,
    account: Account = Security(get_current_account)
):
    """Create a new listing owned by the authenticated account."""
    try:
        created = await manager.create_listing(owner_id=account.id, **listing.model_dump())
        return engine.describe(created)
    except (ListingError, AuctionError, StoreError) as e:
        raise http_error(e)

@router.post("/{listing_id}/bids")
async def place_bid(
    listing_id: str,
    request: BidRequest,
    account: Account = Security(get_current_account)
):
    """Place a bid on a listing.

    Returns the updated listing and the accepted bid. A lost race returns
    409 with the fresh ``current_highest_bid`` and ``minimum_next_bid``.
    """
    expected = request.expected_highest_bid if 'expected_highest_bid' in request.model_fields_set else UNSET
    try:
        receipt = await engine.place_bid(listing_id, account.id, request.amount, expected)
        return {
            'listing': engine.describe(receipt.listing),
            'bid': receipt.bid.model_dump()
        }
    except (AuctionError, StoreError) as e:
        raise http_error(e)

@router.post("/{listing_id}/settle")
async def settle(
    listing_id: str,
    account: Account = Security(get_current_account)
):
    """Pay for a won listing and take ownership of it."""
    try:
        settlement = await engine.settle(listing_id, account.id)
        return {
            'listing': engine.describe(settlement.listing),
            'balance': settlement.account.balance
        }
    except (AuctionError, StoreError) as e:
        raise http_error(e)

@router.post("/{listing_id}/close")
async def close(
    listing_id: str,
    account: Account = Security(get_current_account)
):
    """Close an ended listing that received no bids."""
    try:
        closed = await engine.close_unsold(listing_id, requester_id=account.id)
        return engine.describe(closed)
    except (AuctionError, StoreError) as e:
        raise http_error(e)
