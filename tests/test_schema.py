"""Tests for schema loading and migration planning, run against a mocked pool."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from database.lib.schema_manager import SchemaManager
from database.exceptions import DatabaseSchemaError

def mock_pool(current_version=None):
    conn = AsyncMock()
    conn.fetchrow.return_value = {'version': current_version} if current_version else None
    conn.fetch.return_value = []
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return pool, conn

def executed_sql(conn):
    return [call.args[0] for call in conn.execute.call_args_list]

def test_load_schema_files_in_order():
    manager = SchemaManager(pool=None)
    schemas = manager.load_schema_files()

    assert list(schemas) == [1, 2]
    table_names = [t['name'] for t in schemas[2]['tables']]
    assert table_names == ['accounts', 'listings', 'bids', 'auth_challenges', 'auth_sessions']

def test_load_schema_files_missing_dir(tmp_path):
    manager = SchemaManager(pool=None, schema_dir=tmp_path / 'nowhere')
    assert manager.load_schema_files() == {}

def test_table_sql_renders_checks():
    sql = SchemaManager.table_sql({
        'name': 'things',
        'columns': [
            {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
            {'name': 'qty', 'type': 'INT8', 'nullable': False, 'default': '0'}
        ],
        'checks': [{'name': 'chk_things_qty', 'expression': 'qty >= 0'}]
    })
    assert sql == (
        "CREATE TABLE things ("
        "id UUID DEFAULT gen_random_uuid(), "
        "qty INT8 DEFAULT 0 NOT NULL, "
        "PRIMARY KEY (id), "
        "CONSTRAINT chk_things_qty CHECK (qty >= 0))"
    )

def test_latest_listings_table_guards_amounts():
    schemas = SchemaManager(pool=None).load_schema_files()
    listings = next(t for t in schemas[2]['tables'] if t['name'] == 'listings')
    columns = {c['name'] for c in listings['columns']}
    assert {'current_highest_bid', 'current_highest_bidder', 'is_active', 'closed_at'} <= columns
    assert listings['checks']

@pytest.mark.asyncio
async def test_fresh_install_creates_latest_version():
    pool, conn = mock_pool()
    await SchemaManager(pool).initialize()

    statements = executed_sql(conn)
    creates = [s for s in statements if s.startswith('CREATE TABLE accounts') or s.startswith('CREATE TABLE listings')]
    assert len(creates) == 2
    assert any('closed_at TIMESTAMPTZ' in s for s in creates)
    conn.execute.assert_any_call('INSERT INTO schema_version (version) VALUES ($1)', 2)

@pytest.mark.asyncio
async def test_upgrade_runs_pending_migrations():
    pool, conn = mock_pool(current_version=1)
    await SchemaManager(pool).initialize()

    statements = executed_sql(conn)
    assert any('ADD COLUMN IF NOT EXISTS closed_at' in s for s in statements)
    assert not any(s.startswith('CREATE TABLE accounts') for s in statements)
    conn.execute.assert_any_call('INSERT INTO schema_version (version) VALUES ($1)', 2)

@pytest.mark.asyncio
async def test_up_to_date_schema_is_left_alone():
    pool, conn = mock_pool(current_version=2)
    await SchemaManager(pool).initialize()

    # Only the schema_version bootstrap ran
    assert len(executed_sql(conn)) == 1

@pytest.mark.asyncio
async def test_failed_migration_raises_schema_error():
    pool, conn = mock_pool(current_version=1)

    async def execute(sql, *args):
        if 'ALTER TABLE' in sql:
            raise RuntimeError("permission denied")

    conn.execute.side_effect = execute
    with pytest.raises(DatabaseSchemaError):
        await SchemaManager(pool).initialize()
