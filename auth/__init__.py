"""Authentication module using wallet-signed challenges.

This module provides:
1. Challenge creation and verification using EIP-191 personal_sign signatures
2. Single active session per address
3. Dependencies for protecting routes
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable
from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt
from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct

from config import settings_conf
from store import RecordStore, get_store
from store.models import Account
from accounts import AccountManager, manager as account_manager, normalize_address
from auctions.errors import AccountNotFoundError
from auctions.rules import utcnow

# Configure logging
logger = logging.getLogger(__name__)

# Constants
JWT_SECRET = settings_conf['jwt_secret'] or secrets.token_urlsafe(32)  # Random secret on startup unless configured
JWT_ALGORITHM = "HS256"
WALLET_HEADER = "x-wallet-address"
ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class InvalidAddressError(AuthError):
    """Raised when an address is not a valid wallet address."""
    pass

class ChallengeExpiredError(AuthError):
    """Raised when a challenge has expired."""
    pass

class ChallengeUsedError(AuthError):
    """Raised when a challenge has already been used."""
    pass

class InvalidSignatureError(AuthError):
    """Raised when message signature verification fails."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass

def challenge_message(address: str, nonce: str) -> str:
    """Build the text a wallet is asked to sign."""
    return (
        f"Welcome to {settings_conf['platform_name']}!\n\n"
        f"Wallet: {address}\n"
        "Sign this message to authenticate with our platform.\n\n"
        "This request will not trigger a blockchain transaction or cost any gas fees.\n\n"
        f"Nonce: {nonce}"
    )

def recover_signer(message: str, signature: str) -> str:
    """Recover the lower-cased address that produced a personal_sign signature."""
    try:
        signer = EthAccount.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise InvalidSignatureError(f"Malformed signature: {str(e)}") from e
    return signer.lower()

def validate_address(address: str) -> str:
    if not address or not ADDRESS_PATTERN.match(address.strip()):
        raise InvalidAddressError(f"Invalid wallet address: {address!r}")
    return normalize_address(address)

class AuthManager:
    """Manages authentication challenges and sessions."""

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        accounts: Optional[AccountManager] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize auth manager.

        Args:
            store: Optional record store. If not provided, the process-wide store is used.
            accounts: Optional account manager used to create accounts on first login.
            clock: Optional callable returning the current aware UTC time.
        """
        self._store = store
        self.accounts = accounts or account_manager
        self.clock = clock or utcnow

    @property
    def store(self) -> RecordStore:
        return self._store or get_store()

    async def create_challenge(self, address: str) -> Dict[str, Any]:
        """Create a new authentication challenge.

        Args:
            address: The wallet address to authenticate

        Returns:
            Dict containing:
                - challenge_id: ID of challenge
                - message: Message to sign
                - expires_at: Challenge expiration timestamp

        Raises:
            InvalidAddressError: If the address is not 0x followed by 40 hex digits
        """
        address = validate_address(address)
        message = challenge_message(address, secrets.token_hex(16))
        expires_at = self.clock() + timedelta(minutes=settings_conf['challenge_expiry_minutes'])

        record = await self.store.insert_challenge(address, message, expires_at)
        return {
            'challenge_id': record.id,
            'message': message,
            'expires_at': expires_at.isoformat()
        }

    async def verify_challenge(
        self,
        challenge_id: str,
        address: str,
        signature: str,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Verify a challenge signature and create session.

        Args:
            challenge_id: ID of the challenge
            address: The wallet address that signed
            signature: The hex signature to verify
            request: Optional request object for session metadata

        Returns:
            Dict containing:
                - token: Session token for future requests
                - expires_at: Session expiration timestamp
                - account: The logged-in Account

        Raises:
            ChallengeExpiredError: If challenge has expired
            ChallengeUsedError: If challenge was already used
            InvalidSignatureError: If signature verification fails
        """
        address = validate_address(address)

        challenge = await self.store.get_challenge(challenge_id)
        if not challenge or challenge.address != address:
            raise AuthError("Challenge not found")

        now = self.clock()
        if challenge.expires_at <= now:
            raise ChallengeExpiredError("Challenge has expired")

        if challenge.used:
            raise ChallengeUsedError("Challenge has already been used")

        if recover_signer(challenge.challenge, signature) != address:
            raise InvalidSignatureError("Signature does not match address")

        # Flip the used flag atomically; a concurrent login may have won
        if not await self.store.consume_challenge(challenge_id):
            raise ChallengeUsedError("Challenge has already been used")

        account = await self.accounts.get_or_create(address)

        expires_at = now + timedelta(days=settings_conf['session_expiry_days'])
        token = jwt.encode(
            {
                'sub': address,
                'exp': int(expires_at.timestamp()),
                'jti': secrets.token_hex(8)
            },
            JWT_SECRET,
            algorithm=JWT_ALGORITHM
        )

        # Single active session per address
        await self.store.revoke_sessions(address)
        await self.store.insert_session(
            address,
            token,
            expires_at,
            *_request_metadata(request)
        )

        logger.info(f"Wallet {address} logged in")
        return {
            'token': token,
            'expires_at': expires_at.isoformat(),
            'account': account
        }

    async def verify_session(
        self,
        token: str,
        request: Optional[Request] = None,
        required_address: Optional[str] = None
    ) -> str:
        """Verify a session token.

        Args:
            token: The session token to verify
            request: Optional request object for updating session metadata
            required_address: Optional address that must match the token's address.
                A mismatch means the wallet switched accounts and the session is revoked.

        Returns:
            The authenticated address

        Raises:
            SessionExpiredError: If session has expired
            AuthError: For other verification errors
        """
        try:
            payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
            address = payload['sub']
        except jwt.ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except (jwt.JWTError, KeyError) as e:
            raise AuthError(f"Invalid token: {str(e)}")

        session = await self.store.get_session(address, token)
        if not session:
            raise AuthError("Session not found or revoked")

        if session.expires_at <= self.clock():
            raise SessionExpiredError("Session has expired")

        if required_address and normalize_address(required_address) != address:
            await self.logout(address)
            raise AuthError("Wallet account changed, please sign in again")

        if request:
            await self.store.touch_session(address, token, *_request_metadata(request))

        return address

    async def logout(self, address: str) -> int:
        """Log out by revoking the active session.

        Args:
            address: Address to log out

        Returns:
            Number of sessions revoked
        """
        revoked = await self.store.revoke_sessions(normalize_address(address))
        if revoked:
            logger.info(f"Wallet {address} logged out")
        return revoked

def _request_metadata(request: Optional[Request]):
    if not request:
        return None, None
    host = request.client.host if request.client else None
    return request.headers.get('user-agent'), host

# Create global instance
manager = AuthManager()

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Return 401 automatically if token is missing
    description="JWT Bearer token required"
)

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    request: Request = None
) -> str:
    """FastAPI dependency for getting the authenticated address.

    The optional X-Wallet-Address header carries the address the wallet
    currently has selected; if it differs from the session the request is
    refused.

    Raises:
        HTTPException: If authentication fails
    """
    required = request.headers.get(WALLET_HEADER) if request else None
    try:
        return await manager.verify_session(credentials.credentials, request, required)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

async def get_current_account(address: str = Depends(get_current_user)) -> Account:
    """FastAPI dependency for getting the authenticated account."""
    try:
        return await manager.accounts.get_account_by_address(address)
    except AccountNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found for session"
        )

# Export public interface
__all__ = [
    'manager',
    'AuthManager',
    'auth_scheme',
    'get_current_user',
    'get_current_account',
    'challenge_message',
    'recover_signer',
    'validate_address',
    'AuthError',
    'InvalidAddressError',
    'ChallengeExpiredError',
    'ChallengeUsedError',
    'InvalidSignatureError',
    'SessionExpiredError'
]
