"""Shared fixtures: an in-memory record store, a controllable clock and managers bound to both."""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from store import set_store
from store.memory import MemoryStore
from accounts import AccountManager
from auctions import AuctionEngine
from listings import ListingManager

SELLER_ADDRESS = "0x" + "a1" * 20
BIDDER_ADDRESS = "0x" + "b2" * 20
RIVAL_ADDRESS = "0x" + "c3" * 20

SAMPLE_LISTING = {
    "name": "Lakeside Cabin",
    "description": "Two bedroom cabin with a private dock",
    "photo_url": "https://example.com/cabin.jpg",
    "amount": 1500,
    "initial_bid": 1000,
    "bid_increment": 100,
    "square_footage": 1200,
    "year_built": 1987
}

class FakeClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, now: datetime = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def store():
    """Fresh in-memory store installed as the process-wide store."""
    memory = MemoryStore()
    set_store(memory)
    yield memory
    set_store(None)

@pytest.fixture
def engine(store, clock):
    return AuctionEngine(store=store, clock=clock, allow_owner_bids=False)

@pytest.fixture
def account_manager(store):
    return AccountManager(store=store, signup_bonus=2000)

@pytest.fixture
def listing_manager(store, engine):
    return ListingManager(store=store, engine=engine)

@pytest_asyncio.fixture
async def seller(account_manager):
    return await account_manager.get_or_create(SELLER_ADDRESS)

@pytest_asyncio.fixture
async def bidder(account_manager):
    return await account_manager.get_or_create(BIDDER_ADDRESS)

@pytest_asyncio.fixture
async def rival(account_manager):
    return await account_manager.get_or_create(RIVAL_ADDRESS)

@pytest.fixture
def make_listing(listing_manager, seller, clock):
    """Factory creating a listing owned by the seller, ending in one hour by default."""
    async def _make(**overrides: Any):
        fields: Dict[str, Any] = dict(SAMPLE_LISTING)
        fields["bid_end_time"] = clock() + timedelta(hours=1)
        fields.update(overrides)
        owner_id = fields.pop("owner_id", seller.id)
        return await listing_manager.create_listing(owner_id=owner_id, **fields)
    return _make
