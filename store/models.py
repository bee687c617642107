from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class Account(BaseModel):
    id: str
    address: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    balance: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime


class Listing(BaseModel):
    id: str
    name: str
    description: str
    photo_url: str
    square_footage: Optional[int] = None
    year_built: Optional[int] = None
    google_maps_url: Optional[str] = None
    youtube_url: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None
    amount: int
    initial_bid: int
    bid_increment: int
    bid_end_time: datetime
    owner_id: str
    is_active: bool = True
    current_highest_bid: Optional[int] = None
    current_highest_bidder: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None


class Bid(BaseModel):
    id: str
    listing_id: str
    bidder_id: str
    amount: int
    created_at: datetime


class AuthChallenge(BaseModel):
    id: str
    address: str
    challenge: str
    expires_at: datetime
    used: bool = False
    created_at: datetime


class AuthSession(BaseModel):
    id: str
    address: str
    token: str
    expires_at: datetime
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime
