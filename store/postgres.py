"""Record store backed by CockroachDB/PostgreSQL through asyncpg.

Bid acceptance and settlement each run inside one transaction whose UPDATE
statements carry their preconditions in the WHERE clause, so a concurrent
writer makes the statement match zero rows instead of overwriting.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
from asyncpg.exceptions import PostgresError

from database import init_db, get_pool, close as db_close
from . import RecordStore, StoreError, check_order_field
from .models import Account, Listing, Bid, AuthChallenge, AuthSession

logger = logging.getLogger(__name__)

LISTING_COLUMNS = (
    'name', 'description', 'photo_url', 'square_footage', 'year_built',
    'google_maps_url', 'youtube_url', 'additional_info', 'amount',
    'initial_bid', 'bid_increment', 'bid_end_time', 'owner_id', 'is_active',
    'created_at'
)

UUID_FIELDS = ('id', 'listing_id', 'bidder_id', 'owner_id', 'current_highest_bidder')

class _Abort(Exception):
    """Raised inside a transaction to roll it back when a condition fails."""

def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True

def _record(row: asyncpg.Record) -> Dict[str, Any]:
    """Convert a row to a dict with UUID columns as strings."""
    data = dict(row)
    for key in UUID_FIELDS:
        if data.get(key) is not None:
            data[key] = str(data[key])
    if isinstance(data.get('additional_info'), str):
        data['additional_info'] = json.loads(data['additional_info'])
    return data

class PostgresStore(RecordStore):
    """asyncpg implementation of RecordStore."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
        """Initialize the store.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def open(self) -> None:
        if not self.pool:
            await init_db()
            self.pool = await get_pool()

    async def close(self) -> None:
        await db_close()
        self.pool = None

    @asynccontextmanager
    async def _connection(self):
        """Acquire a connection, translating driver failures into StoreError."""
        if not self.pool:
            self.pool = await get_pool()
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Record store error: {e}")
            raise StoreError(f"Record store unavailable: {e}") from e

    # Accounts

    async def get_account(self, account_id: str) -> Optional[Account]:
        if not _is_uuid(account_id):
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow('SELECT * FROM accounts WHERE id = $1', account_id)
        return Account(**_record(row)) if row else None

    async def get_account_by_address(self, address: str) -> Optional[Account]:
        async with self._connection() as conn:
            row = await conn.fetchrow('SELECT * FROM accounts WHERE address = $1', address)
        return Account(**_record(row)) if row else None

    async def create_account(self, address: str, balance: int) -> Tuple[Account, bool]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO accounts (address, balance)
                VALUES ($1, $2)
                ON CONFLICT (address) DO NOTHING
                RETURNING *
                ''',
                address,
                balance
            )
            if row:
                return Account(**_record(row)), True

            # Lost the insert race (or the account already existed)
            row = await conn.fetchrow('SELECT * FROM accounts WHERE address = $1', address)
            return Account(**_record(row)), False

    async def update_account_profile(
        self,
        account_id: str,
        display_name: Optional[str],
        email: Optional[str]
    ) -> Optional[Account]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE accounts
                SET display_name = $2,
                    email = $3,
                    updated_at = now()
                WHERE id = $1
                RETURNING *
                ''',
                account_id,
                display_name,
                email
            )
        return Account(**_record(row)) if row else None

    # Listings

    async def insert_listing(self, fields: Dict[str, Any]) -> Listing:
        columns = [c for c in LISTING_COLUMNS if c in fields]
        placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f'''
                INSERT INTO listings ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING *
                ''',
                *[fields[c] for c in columns]
            )
        return Listing(**_record(row))

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        if not _is_uuid(listing_id):
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow('SELECT * FROM listings WHERE id = $1', listing_id)
        return Listing(**_record(row)) if row else None

    @staticmethod
    def _listing_filters(
        owner_id: Optional[str],
        highest_bidder_id: Optional[str],
        is_active: Optional[bool],
        search_term: Optional[str]
    ) -> Tuple[str, List[Any]]:
        conditions = []
        params: List[Any] = []

        if owner_id is not None:
            params.append(owner_id)
            conditions.append(f"owner_id = ${len(params)}")
        if highest_bidder_id is not None:
            params.append(highest_bidder_id)
            conditions.append(f"current_highest_bidder = ${len(params)}")
        if is_active is not None:
            params.append(is_active)
            conditions.append(f"is_active = ${len(params)}")
        if search_term:
            params.append(f"%{search_term}%")
            conditions.append(f"(name ILIKE ${len(params)} OR description ILIKE ${len(params)})")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''
        return where, params

    async def find_listings(
        self,
        owner_id: Optional[str] = None,
        highest_bidder_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search_term: Optional[str] = None,
        order_by: str = 'created_at',
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Listing]:
        check_order_field(order_by)
        where, params = self._listing_filters(owner_id, highest_bidder_id, is_active, search_term)
        query = f"SELECT * FROM listings {where} ORDER BY {order_by} {'DESC' if descending else 'ASC'}, id"

        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            query += f" OFFSET ${len(params)}"

        logger.debug("Executing listing query: %s with params: %r", query, params)
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [Listing(**_record(r)) for r in rows]

    async def count_listings(
        self,
        owner_id: Optional[str] = None,
        highest_bidder_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search_term: Optional[str] = None
    ) -> int:
        where, params = self._listing_filters(owner_id, highest_bidder_id, is_active, search_term)
        async with self._connection() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM listings {where}", *params)

    async def find_expired_unsold(self, now: datetime) -> List[Listing]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM listings
                WHERE is_active
                AND bid_end_time <= $1
                AND current_highest_bidder IS NULL
                ORDER BY bid_end_time
                ''',
                now
            )
        return [Listing(**_record(r)) for r in rows]

    async def compare_and_set_highest_bid(
        self,
        listing_id: str,
        expected_highest_bid: Optional[int],
        bidder_id: str,
        amount: int,
        now: datetime
    ) -> Optional[Tuple[Listing, Bid]]:
        async with self._connection() as conn:
            try:
                async with conn.transaction():
                    listing = await conn.fetchrow(
                        '''
                        UPDATE listings
                        SET current_highest_bid = $3,
                            current_highest_bidder = $4,
                            updated_at = $5
                        WHERE id = $1
                        AND is_active
                        AND bid_end_time > $5
                        AND current_highest_bid IS NOT DISTINCT FROM $2::INT8
                        RETURNING *
                        ''',
                        listing_id,
                        expected_highest_bid,
                        amount,
                        bidder_id,
                        now
                    )
                    if not listing:
                        raise _Abort()

                    bid = await conn.fetchrow(
                        '''
                        INSERT INTO bids (listing_id, bidder_id, amount, created_at)
                        VALUES ($1, $2, $3, $4)
                        RETURNING *
                        ''',
                        listing_id,
                        bidder_id,
                        amount,
                        now
                    )
            except _Abort:
                return None

        return Listing(**_record(listing)), Bid(**_record(bid))

    async def settle_listing(
        self,
        listing_id: str,
        payer_id: str,
        now: datetime
    ) -> Optional[Tuple[Listing, Account]]:
        async with self._connection() as conn:
            try:
                async with conn.transaction():
                    # Listing first so concurrent settlements queue on its row lock
                    listing = await conn.fetchrow(
                        '''
                        UPDATE listings
                        SET owner_id = $2,
                            is_active = false,
                            closed_at = $3,
                            updated_at = $3
                        WHERE id = $1
                        AND is_active
                        AND bid_end_time <= $3
                        AND current_highest_bidder = $2
                        RETURNING *
                        ''',
                        listing_id,
                        payer_id,
                        now
                    )
                    if not listing:
                        raise _Abort()

                    account = await conn.fetchrow(
                        '''
                        UPDATE accounts
                        SET balance = balance - $2,
                            updated_at = $3
                        WHERE id = $1
                        AND balance >= $2
                        RETURNING *
                        ''',
                        payer_id,
                        listing['amount'],
                        now
                    )
                    if not account:
                        raise _Abort()
            except _Abort:
                return None

        return Listing(**_record(listing)), Account(**_record(account))

    async def close_listing(self, listing_id: str, now: datetime) -> Optional[Listing]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE listings
                SET is_active = false,
                    closed_at = $2,
                    updated_at = $2
                WHERE id = $1
                AND is_active
                AND bid_end_time <= $2
                AND current_highest_bidder IS NULL
                RETURNING *
                ''',
                listing_id,
                now
            )
        return Listing(**_record(row)) if row else None

    # Bids

    async def find_bids(
        self,
        listing_id: Optional[str] = None,
        bidder_id: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None
    ) -> List[Bid]:
        conditions = []
        params: List[Any] = []
        if listing_id is not None:
            params.append(listing_id)
            conditions.append(f"listing_id = ${len(params)}")
        if bidder_id is not None:
            params.append(bidder_id)
            conditions.append(f"bidder_id = ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''
        direction = 'DESC' if descending else 'ASC'
        # Within one listing the accepted amounts strictly increase, so amount breaks timestamp ties
        query = f"SELECT * FROM bids {where} ORDER BY created_at {direction}, amount {direction}"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [Bid(**_record(r)) for r in rows]

    # Authentication

    async def insert_challenge(self, address: str, challenge: str, expires_at: datetime) -> AuthChallenge:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO auth_challenges (address, challenge, expires_at)
                VALUES ($1, $2, $3)
                RETURNING *
                ''',
                address,
                challenge,
                expires_at
            )
        return AuthChallenge(**_record(row))

    async def get_challenge(self, challenge_id: str) -> Optional[AuthChallenge]:
        if not _is_uuid(challenge_id):
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow('SELECT * FROM auth_challenges WHERE id = $1', challenge_id)
        return AuthChallenge(**_record(row)) if row else None

    async def consume_challenge(self, challenge_id: str) -> bool:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE auth_challenges
                SET used = true
                WHERE id = $1 AND NOT used
                RETURNING id
                ''',
                challenge_id
            )
        return row is not None

    async def insert_session(
        self,
        address: str,
        token: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> AuthSession:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO auth_sessions (
                    address, token, expires_at,
                    user_agent, ip_address
                ) VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                ''',
                address,
                token,
                expires_at,
                user_agent,
                ip_address
            )
        return AuthSession(**_record(row))

    async def get_session(self, address: str, token: str) -> Optional[AuthSession]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                '''
                SELECT * FROM auth_sessions
                WHERE address = $1 AND token = $2
                AND NOT revoked
                ''',
                address,
                token
            )
        return AuthSession(**_record(row)) if row else None

    async def touch_session(
        self,
        address: str,
        token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                '''
                UPDATE auth_sessions
                SET
                    last_used_at = now(),
                    user_agent = $3,
                    ip_address = $4
                WHERE address = $1 AND token = $2
                AND NOT revoked
                ''',
                address,
                token,
                user_agent,
                ip_address
            )

    async def revoke_sessions(self, address: str) -> int:
        async with self._connection() as conn:
            rows = await conn.fetch(
                '''
                UPDATE auth_sessions
                SET
                    revoked = true,
                    revoked_at = now()
                WHERE address = $1
                AND NOT revoked
                RETURNING id
                ''',
                address
            )
        return len(rows)
