"""Listings API endpoints."""

from fastapi import APIRouter, Query
from typing import Optional

from store import StoreError
from auctions import engine, AuctionError
from listings import manager, ListingError, SORTS
from ..errors import http_error

# Create router without global security
router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)

# Import management endpoints
from .management import router as management_router

# Include management router (protected endpoints)
router.include_router(management_router)

""" Public Endpoints - No Authentication Required """
@router.get("/")
async def list_listings(
    sort: str = Query('newest', description=f"One of: {', '.join(SORTS)}"),
    search: Optional[str] = Query(None, description="Case-insensitive match on name or description"),
    per_page: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1)
):
    """Get active listings with pagination metadata."""
    try:
        offset = (page - 1) * per_page
        return await manager.browse(sort=sort, search_term=search, limit=per_page, offset=offset)
    except (ListingError, StoreError) as e:
        raise http_error(e)

@router.get("/{listing_id}")
async def get_listing(listing_id: str):
    """Get a listing with its auction state and countdown."""
    try:
        listing = await manager.get_listing(listing_id)
        return engine.describe(listing)
    except (AuctionError, StoreError) as e:
        raise http_error(e)

@router.get("/{listing_id}/bids")
async def get_bid_history(
    listing_id: str,
    limit: Optional[int] = Query(None, ge=1)
):
    """Get bids on a listing, newest first."""
    try:
        return {
            'listing_id': listing_id,
            'bids': await manager.bid_history(listing_id, limit=limit)
        }
    except (AuctionError, StoreError) as e:
        raise http_error(e)

# Export the router
__all__ = ['router']
