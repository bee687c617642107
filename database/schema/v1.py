"""Schema v1 - Initial database schema.

This version includes tables for:
- Accounts (wallet identities and coin balances)
- Listings with their cached highest bid
- Append-only bid history
- Authentication challenges and sessions
"""

ACCOUNTS = {
    'name': 'accounts',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'address', 'type': 'TEXT', 'nullable': False},
        {'name': 'display_name', 'type': 'TEXT'},
        {'name': 'email', 'type': 'TEXT'},
        {'name': 'balance', 'type': 'INT8', 'nullable': False, 'default': '0'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'checks': [
        {'name': 'chk_accounts_balance', 'expression': 'balance >= 0'}
    ],
    'indexes': [
        {'name': 'idx_accounts_address', 'columns': ['address'], 'unique': True}
    ]
}

BIDS = {
    'name': 'bids',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
        {'name': 'bidder_id', 'type': 'UUID', 'nullable': False},
        {'name': 'amount', 'type': 'INT8', 'nullable': False},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'checks': [
        {'name': 'chk_bids_amount', 'expression': 'amount > 0'}
    ],
    'foreign_keys': [
        {'columns': ['listing_id'], 'references': 'listings(id)'},
        {'columns': ['bidder_id'], 'references': 'accounts(id)'}
    ],
    'indexes': [
        {'name': 'idx_bids_listing', 'columns': ['listing_id', 'created_at']}
    ]
}

AUTH_CHALLENGES = {
    'name': 'auth_challenges',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'address', 'type': 'TEXT', 'nullable': False},
        {'name': 'challenge', 'type': 'TEXT', 'nullable': False},
        {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
        {'name': 'used', 'type': 'BOOL', 'nullable': False, 'default': 'false'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_auth_challenges_address', 'columns': ['address']}
    ]
}

AUTH_SESSIONS = {
    'name': 'auth_sessions',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'address', 'type': 'TEXT', 'nullable': False},
        {'name': 'token', 'type': 'TEXT', 'nullable': False},
        {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
        {'name': 'revoked', 'type': 'BOOL', 'nullable': False, 'default': 'false'},
        {'name': 'revoked_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'user_agent', 'type': 'TEXT'},
        {'name': 'ip_address', 'type': 'TEXT'},
        {'name': 'last_used_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_auth_sessions_address', 'columns': ['address']},
        {'name': 'idx_auth_sessions_token', 'columns': ['token'], 'unique': True}
    ]
}

schema = {
    'version': 1,
    'tables': [
        ACCOUNTS,
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'photo_url', 'type': 'TEXT', 'nullable': False},
                {'name': 'square_footage', 'type': 'INT8'},
                {'name': 'year_built', 'type': 'INT8'},
                {'name': 'google_maps_url', 'type': 'TEXT'},
                {'name': 'youtube_url', 'type': 'TEXT'},
                {'name': 'additional_info', 'type': 'JSONB'},
                {'name': 'amount', 'type': 'INT8', 'nullable': False},
                {'name': 'initial_bid', 'type': 'INT8', 'nullable': False},
                {'name': 'bid_increment', 'type': 'INT8', 'nullable': False},
                {'name': 'bid_end_time', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'owner_id', 'type': 'UUID', 'nullable': False},
                {'name': 'is_active', 'type': 'BOOL', 'nullable': False, 'default': 'true'},
                {'name': 'current_highest_bid', 'type': 'INT8'},
                {'name': 'current_highest_bidder', 'type': 'UUID'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_listings_amounts', 'expression': 'amount > 0 AND initial_bid > 0 AND bid_increment > 0'},
                {'name': 'chk_listings_highest_bid', 'expression': 'current_highest_bid IS NULL OR current_highest_bid >= initial_bid'}
            ],
            'foreign_keys': [
                {'columns': ['owner_id'], 'references': 'accounts(id)'},
                {'columns': ['current_highest_bidder'], 'references': 'accounts(id)'}
            ],
            'indexes': [
                {'name': 'idx_listings_owner', 'columns': ['owner_id']},
                {'name': 'idx_listings_active_end', 'columns': ['is_active', 'bid_end_time']},
                {'name': 'idx_listings_highest_bidder', 'columns': ['current_highest_bidder']}
            ]
        },
        BIDS,
        AUTH_CHALLENGES,
        AUTH_SESSIONS
    ]
}
