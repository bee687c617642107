"""End-to-end tests for the HTTP API using FastAPI's TestClient and the in-memory store."""

import pytest
from datetime import timedelta
from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

import auctions
import auth
from api import app
from store import StoreError
from conftest import SAMPLE_LISTING

@pytest.fixture
def client(store, clock, monkeypatch):
    monkeypatch.setattr(auctions.engine, "clock", clock)
    monkeypatch.setattr(auth.manager, "clock", clock)
    with TestClient(app) as test_client:
        yield test_client

def login(client, wallet):
    """Run the challenge/sign/login flow and return auth headers."""
    response = client.post("/auth/challenge", json={"address": wallet.address})
    assert response.status_code == 200
    challenge = response.json()

    signature = wallet.sign_message(encode_defunct(text=challenge["message"])).signature
    response = client.post("/auth/login", json={
        "challenge_id": challenge["challenge_id"],
        "address": wallet.address,
        "signature": "0x" + bytes(signature).hex()
    })
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}

def create_listing(client, headers, clock, **overrides):
    body = dict(SAMPLE_LISTING)
    body["bid_end_time"] = (clock() + timedelta(hours=1)).isoformat()
    body.update(overrides)
    response = client.post("/listings/", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()

@pytest.fixture
def seller_headers(client):
    return login(client, EthAccount.create())

@pytest.fixture
def bidder_headers(client):
    return login(client, EthAccount.create())

@pytest.fixture
def rival_headers(client):
    return login(client, EthAccount.create())

def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"

def test_login_returns_funded_account(client):
    wallet = EthAccount.create()
    headers = login(client, wallet)

    response = client.get("/profile/", headers=headers)
    assert response.status_code == 200
    assert response.json()["address"] == wallet.address.lower()
    assert response.json()["balance"] == 2000

    response = client.get("/auth/verify", headers=headers)
    assert response.json() == {"valid": True, "address": wallet.address.lower()}

def test_login_errors(client):
    response = client.post("/auth/challenge", json={"address": "not-an-address"})
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidAddressError"

    wallet = EthAccount.create()
    impostor = EthAccount.create()
    challenge = client.post("/auth/challenge", json={"address": wallet.address}).json()
    signature = impostor.sign_message(encode_defunct(text=challenge["message"])).signature
    response = client.post("/auth/login", json={
        "challenge_id": challenge["challenge_id"],
        "address": wallet.address,
        "signature": "0x" + bytes(signature).hex()
    })
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidSignatureError"

def test_auction_flow(client, clock, seller_headers, bidder_headers, rival_headers):
    listing = create_listing(client, seller_headers, clock)
    listing_id = listing["id"]
    assert listing["state"] == "open"
    assert listing["minimum_next_bid"] == 1000

    response = client.post(f"/listings/{listing_id}/bids", json={"amount": 1000}, headers=bidder_headers)
    assert response.status_code == 200
    assert response.json()["listing"]["current_highest_bid"] == 1000

    response = client.post(f"/listings/{listing_id}/bids", json={"amount": 1050}, headers=rival_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "BidTooLow"
    assert response.json()["minimum_next_bid"] == 1100

    response = client.post(
        f"/listings/{listing_id}/bids",
        json={"amount": 1200, "expected_highest_bid": 1000},
        headers=rival_headers
    )
    assert response.status_code == 200

    # The bidder still thinks the highest bid is 1000
    response = client.post(
        f"/listings/{listing_id}/bids",
        json={"amount": 1300, "expected_highest_bid": 1000},
        headers=bidder_headers
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ConflictError"
    assert response.json()["current_highest_bid"] == 1200
    assert response.json()["minimum_next_bid"] == 1300

    clock.advance(hours=1, seconds=1)
    response = client.post(f"/listings/{listing_id}/bids", json={"amount": 1300}, headers=bidder_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "AuctionEnded"

    response = client.post(f"/listings/{listing_id}/settle", headers=bidder_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "NotHighestBidder"

    response = client.post(f"/listings/{listing_id}/settle", headers=rival_headers)
    assert response.status_code == 200
    assert response.json()["balance"] == 2000 - SAMPLE_LISTING["amount"]
    assert response.json()["listing"]["state"] == "settled"

    response = client.post(f"/listings/{listing_id}/settle", headers=rival_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "AuctionInactive"

    rival = client.get("/profile/", headers=rival_headers).json()
    detail = client.get(f"/listings/{listing_id}").json()
    assert detail["owner_id"] == rival["id"]
    assert detail["is_active"] is False
    assert rival["balance"] == 2000 - SAMPLE_LISTING["amount"]

    history = client.get(f"/listings/{listing_id}/bids").json()["bids"]
    assert [b["amount"] for b in history] == [1200, 1000]

    activity = client.get("/profile/activity", headers=rival_headers).json()
    assert [l["id"] for l in activity["owned"]] == [listing_id]
    assert activity["balance"] == 2000 - SAMPLE_LISTING["amount"]

def test_settle_without_funds(client, clock, seller_headers, bidder_headers):
    listing = create_listing(client, seller_headers, clock, amount=5000)
    client.post(f"/listings/{listing['id']}/bids", json={"amount": 1000}, headers=bidder_headers)
    clock.advance(hours=2)

    response = client.post(f"/listings/{listing['id']}/settle", headers=bidder_headers)
    assert response.status_code == 402
    assert response.json() == {
        "error": "InsufficientBalance",
        "message": "Balance of 2000 does not cover the price of 5000",
        "balance": 2000,
        "required": 5000
    }

def test_owner_cannot_bid(client, clock, seller_headers):
    listing = create_listing(client, seller_headers, clock)
    response = client.post(f"/listings/{listing['id']}/bids", json={"amount": 1000}, headers=seller_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "OwnerBidNotAllowed"

def test_close_unsold(client, clock, seller_headers, bidder_headers):
    listing = create_listing(client, seller_headers, clock)

    response = client.post(f"/listings/{listing['id']}/close", headers=seller_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "AuctionNotEnded"

    clock.advance(hours=2)
    response = client.post(f"/listings/{listing['id']}/close", headers=bidder_headers)
    assert response.status_code == 403

    response = client.post(f"/listings/{listing['id']}/close", headers=seller_headers)
    assert response.status_code == 200
    assert response.json()["state"] == "closed"

def test_feed(client, clock, seller_headers):
    create_listing(client, seller_headers, clock, name="Beach House", amount=3000)
    create_listing(client, seller_headers, clock, name="Mountain Hut", amount=800)
    create_listing(client, seller_headers, clock, name="Beach Shack", amount=1200)

    response = client.get("/listings/", params={"sort": "price_low", "search": "beach"})
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 2
    assert [l["name"] for l in body["listings"]] == ["Beach Shack", "Beach House"]

    body = client.get("/listings/", params={"per_page": 2, "page": 2}).json()
    assert body["total_pages"] == 2
    assert body["current_page"] == 2
    assert len(body["listings"]) == 1

    response = client.get("/listings/", params={"sort": "random"})
    assert response.status_code == 400
    assert response.json()["error"] == "ListingError"

def test_create_listing_validation(client, clock, seller_headers):
    body = dict(SAMPLE_LISTING, bid_end_time=(clock() - timedelta(minutes=1)).isoformat())
    response = client.post("/listings/", json=body, headers=seller_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidListingError"

def test_listing_not_found(client, bidder_headers):
    assert client.get("/listings/nope").status_code == 404
    response = client.post("/listings/nope/bids", json={"amount": 1000}, headers=bidder_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "ListingNotFoundError"

def test_requires_session(client):
    response = client.post("/listings/anything/bids", json={"amount": 1000})
    assert response.status_code in (401, 403)

    response = client.get("/profile/", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401

def test_wallet_switch_rejected(client):
    wallet = EthAccount.create()
    headers = login(client, wallet)

    switched = dict(headers, **{"X-Wallet-Address": EthAccount.create().address})
    assert client.get("/profile/", headers=switched).status_code == 401
    assert client.get("/profile/", headers=headers).status_code == 401

def test_logout(client, bidder_headers):
    assert client.post("/auth/logout", headers=bidder_headers).json() == {"success": True}
    assert client.get("/profile/", headers=bidder_headers).status_code == 401

def test_update_profile(client, bidder_headers):
    response = client.patch("/profile/", json={"display_name": "Casey"}, headers=bidder_headers)
    assert response.status_code == 200
    assert response.json()["display_name"] == "Casey"

    response = client.patch("/profile/", json={"email": "casey@example.com"}, headers=bidder_headers)
    assert response.json()["display_name"] == "Casey"
    assert response.json()["email"] == "casey@example.com"

    response = client.patch("/profile/", json={"email": "nope"}, headers=bidder_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ProfileError"

def test_store_failure_is_503(client, store, monkeypatch):
    async def unavailable(listing_id):
        raise StoreError("connection refused")

    monkeypatch.setattr(store, "get_listing", unavailable)
    response = client.get("/listings/some-id")
    assert response.status_code == 503
    assert response.json()["error"] == "StoreError"
