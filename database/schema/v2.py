"""Schema v2 - Record when a listing leaves bidding.

Adds listings.closed_at (set on settlement or when an unsold listing is
closed) and an index for per-bidder bid history.
"""

from .v1 import ACCOUNTS, AUTH_CHALLENGES, AUTH_SESSIONS, BIDS, schema as v1_schema

_v1_listings = next(t for t in v1_schema['tables'] if t['name'] == 'listings')

LISTINGS = {
    **_v1_listings,
    'columns': _v1_listings['columns'] + [
        {'name': 'closed_at', 'type': 'TIMESTAMPTZ'}
    ]
}

schema = {
    'version': 2,
    'tables': [
        ACCOUNTS,
        LISTINGS,
        {
            **BIDS,
            'indexes': BIDS['indexes'] + [
                {'name': 'idx_bids_bidder', 'columns': ['bidder_id', 'created_at']}
            ]
        },
        AUTH_CHALLENGES,
        AUTH_SESSIONS
    ],
    'migrations': [
        '''
        ALTER TABLE listings
        ADD COLUMN IF NOT EXISTS closed_at TIMESTAMPTZ;
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_bids_bidder ON bids (bidder_id, created_at);
        '''
    ]
}
