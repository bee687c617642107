"""Authentication API endpoints."""

from fastapi import APIRouter, HTTPException, Request, status, Security
from pydantic import BaseModel

from store import StoreError
from auth import (
    manager, get_current_user, AuthError, InvalidAddressError
)
from ..errors import error_body, http_error

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

class ChallengeRequest(BaseModel):
    """Request model for creating a challenge."""
    address: str

class ChallengeResponse(BaseModel):
    """Response model for challenge creation."""
    challenge_id: str
    message: str
    expires_at: str

class VerifyRequest(BaseModel):
    """Request model for verifying a challenge."""
    challenge_id: str
    address: str
    signature: str

def _bad_request(e: AuthError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error_body(type(e).__name__, str(e))
    )

@router.post("/challenge", response_model=ChallengeResponse)
async def create_challenge(request: ChallengeRequest):
    """Create a new authentication challenge for a wallet to sign."""
    try:
        return await manager.create_challenge(request.address)
    except InvalidAddressError as e:
        raise _bad_request(e)
    except StoreError as e:
        raise http_error(e)

@router.post("/login")
async def login(request: VerifyRequest, fastapi_request: Request):
    """Verify a challenge signature and create session.

    The first login of a wallet creates its account with the signup bonus.
    """
    try:
        result = await manager.verify_challenge(
            request.challenge_id,
            request.address,
            request.signature,
            fastapi_request
        )
        account = result["account"]
        return {
            "token": result["token"],
            "expires_at": result["expires_at"],
            "account": account.model_dump()
        }
    except AuthError as e:
        # ChallengeExpiredError, ChallengeUsedError and InvalidSignatureError included
        raise _bad_request(e)
    except StoreError as e:
        raise http_error(e)

@router.post("/logout")
async def logout(address: str = Security(get_current_user)):
    """Log out the current wallet by revoking its session."""
    try:
        await manager.logout(address)
        return {"success": True}
    except StoreError as e:
        raise http_error(e)

@router.get("/verify")
async def verify_token(address: str = Security(get_current_user)):
    """Verify the current session token."""
    return {
        "valid": True,
        "address": address
    }

# Export the router
__all__ = ['router']
