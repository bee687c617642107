"""Profile management endpoints."""

from fastapi import APIRouter, Security
from typing import Optional
from pydantic import BaseModel

from store import StoreError
from store.models import Account
from accounts import manager as account_manager, ProfileError
from auctions import AuctionError
from listings import manager as listing_manager
from auth import get_current_account
from ..errors import http_error

router = APIRouter(
    prefix="/profile",
    tags=["Profile"]
)

class ProfileUpdate(BaseModel):
    """Model for profile updates. Omitted fields are kept; blank strings clear them."""
    display_name: Optional[str] = None
    email: Optional[str] = None

@router.get("/")
async def get_profile(account: Account = Security(get_current_account)):
    """Get the authenticated account, including its coin balance."""
    return account.model_dump()

@router.patch("/")
async def update_profile(
    update: ProfileUpdate,
    account: Account = Security(get_current_account)
):
    """Update the authenticated account's display name or email."""
    fields = update.model_fields_set
    try:
        updated = await account_manager.update_profile(
            account.id,
            display_name=update.display_name if 'display_name' in fields else account.display_name,
            email=update.email if 'email' in fields else account.email
        )
        return updated.model_dump()
    except (ProfileError, AuctionError, StoreError) as e:
        raise http_error(e)

@router.get("/listings")
async def get_my_listings(account: Account = Security(get_current_account)):
    """Get listings owned by the authenticated account."""
    try:
        return {'listings': await listing_manager.listings_by_owner(account.id)}
    except StoreError as e:
        raise http_error(e)

@router.get("/activity")
async def get_activity(account: Account = Security(get_current_account)):
    """Get owned listings, active bids, won auctions and bid history."""
    try:
        activity = await listing_manager.activity(account.id)
        activity['balance'] = account.balance
        return activity
    except StoreError as e:
        raise http_error(e)

# Export the router
__all__ = ['router']
