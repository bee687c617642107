"""Tests for the accounts module."""

import pytest

from accounts import AccountNotFoundError, ProfileError
from conftest import BIDDER_ADDRESS

@pytest.mark.asyncio
async def test_signup_bonus_granted_once(account_manager):
    first = await account_manager.get_or_create(BIDDER_ADDRESS.upper().replace("0X", "0x"))
    assert first.address == BIDDER_ADDRESS.lower()
    assert first.balance == 2000

    again = await account_manager.get_or_create(BIDDER_ADDRESS)
    assert again.id == first.id
    assert again.balance == 2000

@pytest.mark.asyncio
async def test_get_account_by_address(account_manager, bidder):
    found = await account_manager.get_account_by_address(BIDDER_ADDRESS.upper().replace("0X", "0x"))
    assert found.id == bidder.id

    with pytest.raises(AccountNotFoundError):
        await account_manager.get_account_by_address("0x" + "f" * 40)
    with pytest.raises(AccountNotFoundError):
        await account_manager.get_account("missing")

@pytest.mark.asyncio
async def test_update_profile(account_manager, bidder):
    updated = await account_manager.update_profile(bidder.id, display_name=" Sam ", email="sam@example.com")
    assert updated.display_name == "Sam"
    assert updated.email == "sam@example.com"
    assert updated.balance == bidder.balance

    cleared = await account_manager.update_profile(bidder.id, display_name="", email="   ")
    assert cleared.display_name is None
    assert cleared.email is None

@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"email": "not-an-email"},
    {"email": "two@@example.com"},
    {"display_name": "x" * 65},
])
async def test_update_profile_invalid(account_manager, bidder, kwargs):
    with pytest.raises(ProfileError):
        await account_manager.update_profile(bidder.id, **kwargs)
