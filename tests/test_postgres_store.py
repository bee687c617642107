"""Integration tests for PostgresStore.

These need a disposable CockroachDB/PostgreSQL database, given as
TEST_DB_URL. Its tables are dropped and recreated.
"""

import asyncio
import os
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone

from database import init_db, get_pool, close as close_db
from store.postgres import PostgresStore

TEST_DB_URL = os.environ.get('TEST_DB_URL')

pytestmark = pytest.mark.skipif(not TEST_DB_URL, reason="TEST_DB_URL not set")

@pytest_asyncio.fixture
async def pg_store():
    """Create a PostgresStore on a freshly created schema."""
    await init_db(TEST_DB_URL, force_recreate=True)
    pool = await get_pool()
    yield PostgresStore(pool)
    await close_db()

@pytest_asyncio.fixture
async def ended_listing(pg_store):
    owner, _ = await pg_store.create_account("0xowner", 0)
    buyer, _ = await pg_store.create_account("0xbuyer", 2000)
    end = datetime.now(timezone.utc) + timedelta(minutes=5)
    listing = await pg_store.insert_listing({
        'name': 'Ranch',
        'description': 'Ten acres',
        'photo_url': 'https://example.com/r.jpg',
        'amount': 1500,
        'initial_bid': 1000,
        'bid_increment': 100,
        'bid_end_time': end,
        'owner_id': owner.id,
        'additional_info': {'garage': True}
    })
    return listing, owner, buyer

@pytest.mark.asyncio
async def test_listing_round_trip(pg_store, ended_listing):
    listing, owner, _ = ended_listing
    stored = await pg_store.get_listing(listing.id)
    assert stored.owner_id == owner.id
    assert stored.additional_info == {'garage': True}
    assert await pg_store.get_listing("not-a-uuid") is None

@pytest.mark.asyncio
async def test_concurrent_bids_apply_once(pg_store, ended_listing):
    listing, _, buyer = ended_listing
    rival, _ = await pg_store.create_account("0xrival", 2000)
    now = datetime.now(timezone.utc)

    results = await asyncio.gather(
        pg_store.compare_and_set_highest_bid(listing.id, None, buyer.id, 1000, now),
        pg_store.compare_and_set_highest_bid(listing.id, None, rival.id, 1000, now)
    )

    assert sum(1 for r in results if r is not None) == 1
    assert len(await pg_store.find_bids(listing_id=listing.id)) == 1

@pytest.mark.asyncio
async def test_settlement_is_atomic(pg_store, ended_listing):
    listing, _, buyer = ended_listing
    now = datetime.now(timezone.utc)
    await pg_store.compare_and_set_highest_bid(listing.id, None, buyer.id, 1000, now)

    after_end = listing.bid_end_time + timedelta(seconds=1)
    settled = await asyncio.gather(
        pg_store.settle_listing(listing.id, buyer.id, after_end),
        pg_store.settle_listing(listing.id, buyer.id, after_end)
    )

    assert sum(1 for r in settled if r is not None) == 1
    account = await pg_store.get_account(buyer.id)
    assert account.balance == 500
    assert (await pg_store.get_listing(listing.id)).owner_id == buyer.id

@pytest.mark.asyncio
async def test_unaffordable_settlement_rolls_back(pg_store, ended_listing):
    listing, owner, _ = ended_listing
    poor, _ = await pg_store.create_account("0xpoor", 10)
    await pg_store.compare_and_set_highest_bid(listing.id, None, poor.id, 1000, datetime.now(timezone.utc))

    assert await pg_store.settle_listing(listing.id, poor.id, listing.bid_end_time) is None

    stored = await pg_store.get_listing(listing.id)
    assert stored.owner_id == owner.id
    assert stored.is_active is True
    assert (await pg_store.get_account(poor.id)).balance == 10
