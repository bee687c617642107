"""Auction error taxonomy.

PreconditionError subclasses name the rule that rejected a bid, settlement
or closure. ConflictError means another write won the race and the caller
should re-read and resubmit. StoreError (from ``store``) means the record
store call failed and the whole operation can be retried.
"""

from typing import Any, Dict, Optional

from store import StoreError

class AuctionError(Exception):
    """Base exception for auction operations."""

    def details(self) -> Dict[str, Any]:
        """Extra fields a caller can use to recover."""
        return {}

class ListingNotFoundError(AuctionError, LookupError):
    """Raised when a listing does not exist."""
    pass

class AccountNotFoundError(AuctionError, LookupError):
    """Raised when an account does not exist."""
    pass

class PreconditionError(AuctionError):
    """Raised when a named bidding or settlement rule is not met."""
    pass

class AuctionInactive(PreconditionError):
    """The listing is no longer open (settled or closed)."""
    pass

class AuctionEnded(PreconditionError):
    """The bid arrived at or after the listing's bid end time."""
    pass

class AuctionNotEnded(PreconditionError):
    """Settlement or closure was attempted before the bid end time."""
    pass

class BidTooLow(PreconditionError):
    """The bid is below the minimum next bid."""

    def __init__(self, amount: int, minimum: int):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Bid of {amount} is below the minimum bid of {minimum}")

    def details(self) -> Dict[str, Any]:
        return {'minimum_next_bid': self.minimum}

class OwnerBidNotAllowed(PreconditionError):
    """The listing owner tried to bid on their own listing."""
    pass

class NotHighestBidder(PreconditionError):
    """Only the current highest bidder may settle a listing."""
    pass

class InsufficientBalance(PreconditionError):
    """The payer's balance does not cover the listing amount."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Balance of {balance} does not cover the price of {required}")

    def details(self) -> Dict[str, Any]:
        return {'balance': self.balance, 'required': self.required}

class NotListingOwner(PreconditionError):
    """Only the listing owner may perform this action."""
    pass

class SettlementPending(PreconditionError):
    """The listing has a winning bidder and can only be settled, not closed."""
    pass

class ConflictError(AuctionError):
    """A concurrent bid changed the listing before this one was applied."""

    def __init__(
        self,
        message: str,
        current_highest_bid: Optional[int] = None,
        minimum_next_bid: Optional[int] = None
    ):
        self.current_highest_bid = current_highest_bid
        self.minimum_next_bid = minimum_next_bid
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {
            'current_highest_bid': self.current_highest_bid,
            'minimum_next_bid': self.minimum_next_bid
        }

__all__ = [
    'AuctionError', 'ListingNotFoundError', 'AccountNotFoundError',
    'PreconditionError', 'AuctionInactive', 'AuctionEnded', 'AuctionNotEnded',
    'BidTooLow', 'OwnerBidNotAllowed', 'NotHighestBidder', 'InsufficientBalance',
    'NotListingOwner', 'SettlementPending', 'ConflictError', 'StoreError'
]
