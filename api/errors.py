"""Translate domain exceptions into HTTP errors.

Error bodies have the shape ``{"error": <exception class>, "message": str}``
plus any recovery fields the exception carries (for example the fresh
``minimum_next_bid`` on a lost bid race).
"""

from typing import Any, Dict
from fastapi import HTTPException, status

from store import StoreError
from auctions.errors import (
    AccountNotFoundError, AuctionEnded, AuctionError, AuctionInactive,
    AuctionNotEnded, BidTooLow, ConflictError, InsufficientBalance,
    ListingNotFoundError, NotHighestBidder, NotListingOwner,
    OwnerBidNotAllowed, SettlementPending
)

# Checked in order, so subclasses must come before their bases
STATUS_CODES = [
    (ListingNotFoundError, status.HTTP_404_NOT_FOUND),
    (AccountNotFoundError, status.HTTP_404_NOT_FOUND),
    (BidTooLow, status.HTTP_400_BAD_REQUEST),
    (NotHighestBidder, status.HTTP_403_FORBIDDEN),
    (NotListingOwner, status.HTTP_403_FORBIDDEN),
    (OwnerBidNotAllowed, status.HTTP_403_FORBIDDEN),
    (InsufficientBalance, status.HTTP_402_PAYMENT_REQUIRED),
    (ConflictError, status.HTTP_409_CONFLICT),
    (AuctionEnded, status.HTTP_409_CONFLICT),
    (AuctionInactive, status.HTTP_409_CONFLICT),
    (AuctionNotEnded, status.HTTP_409_CONFLICT),
    (SettlementPending, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]

def error_body(error: str, message: str, **extra: Any) -> Dict[str, Any]:
    body = {'error': error, 'message': message}
    body.update(extra)
    return body

def http_error(e: Exception, status_code: int = status.HTTP_400_BAD_REQUEST) -> HTTPException:
    """Build the HTTPException for a domain exception.

    Exceptions not in STATUS_CODES get ``status_code``.
    """
    for exc_type, code in STATUS_CODES:
        if isinstance(e, exc_type):
            status_code = code
            break

    extra = e.details() if isinstance(e, AuctionError) else {}
    return HTTPException(
        status_code=status_code,
        detail=error_body(type(e).__name__, str(e), **extra)
    )

__all__ = ['http_error', 'error_body', 'STATUS_CODES']
