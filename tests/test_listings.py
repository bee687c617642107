"""Tests for the listings module."""

import pytest
from datetime import timedelta

from listings import InvalidListingError, ListingError, ListingNotFoundError
from auctions.errors import ListingNotFoundError as AuctionListingNotFound
from conftest import SAMPLE_LISTING

@pytest.mark.asyncio
async def test_create_listing(make_listing, seller, clock):
    """Test creating a new listing."""
    listing = await make_listing(google_maps_url="https://maps.example.com/?q=cabin")

    assert listing.id
    assert listing.owner_id == seller.id
    assert listing.name == SAMPLE_LISTING["name"]
    assert listing.amount == 1500
    assert listing.is_active is True
    assert listing.current_highest_bid is None
    assert listing.current_highest_bidder is None
    assert listing.bid_end_time == clock() + timedelta(hours=1)
    assert listing.google_maps_url == "https://maps.example.com/?q=cabin"

@pytest.mark.asyncio
async def test_create_listing_naive_end_time_is_utc(make_listing, clock):
    naive = (clock() + timedelta(days=1)).replace(tzinfo=None)
    listing = await make_listing(bid_end_time=naive)
    assert listing.bid_end_time.utcoffset() == timedelta(0)
    assert listing.bid_end_time.replace(tzinfo=None) == naive

@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"name": "  "},
    {"description": ""},
    {"photo_url": None},
    {"amount": 0},
    {"initial_bid": -5},
    {"bid_increment": 2.5},
    {"square_footage": 0},
    {"youtube_url": "ftp://video"},
])
async def test_create_listing_invalid_fields(make_listing, overrides):
    with pytest.raises(InvalidListingError):
        await make_listing(**overrides)

@pytest.mark.asyncio
async def test_create_listing_in_past(make_listing, clock):
    with pytest.raises(InvalidListingError):
        await make_listing(bid_end_time=clock() - timedelta(seconds=1))

@pytest.mark.asyncio
async def test_get_listing_not_found(listing_manager):
    with pytest.raises(ListingNotFoundError):
        await listing_manager.get_listing("does-not-exist")
    assert ListingNotFoundError is AuctionListingNotFound

@pytest.mark.asyncio
async def test_browse_sorts(make_listing, listing_manager, clock):
    cheap = await make_listing(name="Studio", amount=500, bid_end_time=clock() + timedelta(hours=5))
    clock.advance(seconds=1)
    pricey = await make_listing(name="Mansion", amount=9000, bid_end_time=clock() + timedelta(hours=1))
    clock.advance(seconds=1)
    middle = await make_listing(name="Bungalow", amount=3000, bid_end_time=clock() + timedelta(hours=3))

    def ids(result):
        return [l["id"] for l in result["listings"]]

    assert ids(await listing_manager.browse("newest")) == [middle.id, pricey.id, cheap.id]
    assert ids(await listing_manager.browse("ending_soon")) == [pricey.id, middle.id, cheap.id]
    assert ids(await listing_manager.browse("price_high")) == [pricey.id, middle.id, cheap.id]
    assert ids(await listing_manager.browse("price_low")) == [cheap.id, middle.id, pricey.id]

    with pytest.raises(ListingError):
        await listing_manager.browse("alphabetical")

@pytest.mark.asyncio
async def test_browse_search_and_paging(make_listing, listing_manager, engine, clock):
    await make_listing(name="Beach House", description="Ocean views")
    await make_listing(name="City Loft", description="Walk to the BEACH")
    await make_listing(name="Farm", description="Forty acres")

    result = await listing_manager.browse(search_term="beach")
    assert result["total_count"] == 2
    assert {l["name"] for l in result["listings"]} == {"Beach House", "City Loft"}

    page = await listing_manager.browse(limit=2, offset=2)
    assert page["total_count"] == 3
    assert page["total_pages"] == 2
    assert page["current_page"] == 2
    assert len(page["listings"]) == 1
    assert page["listings"][0]["state"] == "open"

@pytest.mark.asyncio
async def test_browse_hides_closed_listings(make_listing, listing_manager, engine, clock, seller):
    listing = await make_listing()
    clock.advance(hours=2)
    await engine.close_unsold(listing.id, requester_id=seller.id)

    result = await listing_manager.browse()
    assert result["total_count"] == 0
    assert result["listings"] == []

@pytest.mark.asyncio
async def test_bid_history_newest_first_with_bidders(make_listing, listing_manager, engine, account_manager, bidder, rival):
    await account_manager.update_profile(rival.id, display_name="Rival")
    listing = await make_listing()
    await engine.place_bid(listing.id, bidder.id, 1000)
    await engine.place_bid(listing.id, rival.id, 1100)

    history = await listing_manager.bid_history(listing.id)
    assert [h["amount"] for h in history] == [1100, 1000]
    assert history[0]["bidder_name"] == "Rival"
    assert history[0]["bidder_address"] == rival.address
    assert history[1]["bidder_name"] is None

    with pytest.raises(ListingNotFoundError):
        await listing_manager.bid_history("missing")

@pytest.mark.asyncio
async def test_activity(make_listing, listing_manager, engine, clock, seller, bidder, rival):
    won = await make_listing(name="Won")
    outbid = await make_listing(name="Outbid", bid_end_time=clock() + timedelta(days=1))
    await engine.place_bid(won.id, bidder.id, 1000)
    await engine.place_bid(outbid.id, bidder.id, 1000)
    await engine.place_bid(outbid.id, rival.id, 1100)

    clock.advance(hours=2)
    activity = await listing_manager.activity(bidder.id)

    assert activity["owned"] == []
    assert [l["id"] for l in activity["won"]] == [won.id]
    assert activity["won"][0]["state"] == "ended_unsettled"
    assert {b["listing_id"]: b["is_highest"] for b in activity["active_bids"]} == {
        won.id: True,
        outbid.id: False
    }
    assert len(activity["bid_history"]) == 2

    await engine.settle(won.id, bidder.id)
    activity = await listing_manager.activity(bidder.id)
    assert [l["id"] for l in activity["owned"]] == [won.id]
    assert activity["won"] == []
    assert [b["listing_id"] for b in activity["active_bids"]] == [outbid.id]
    assert [b["listing_name"] for b in activity["bid_history"]] == ["Outbid", "Won"]

    seller_listings = await listing_manager.listings_by_owner(seller.id)
    assert [l["id"] for l in seller_listings] == [outbid.id]
