"""
Persistence for saved accounts, saved routes, users and the records cache.

SQLite by default; Postgres (psycopg2) when DATABASE_URL is set. Queries are
written with '?' placeholders and rewritten for Postgres in _sql().
"""
import json
import sqlite3
from datetime import datetime, timedelta, timezone

import psycopg2

import config
from account_state import AccountState

DB_PATH = config.DB_PATH
DATABASE_URL = config.DATABASE_URL

ACCOUNT_COLUMNS = 'id, name, address, lat, lng, notes, created_at'
ROUTE_COLUMNS = 'id, name, route_data, created_at'


class MergeConflictError(Exception):
    """Raised when a notes blob keeps changing underneath a read-modify-write."""
    pass


def get_db():
    if DATABASE_URL:
        return psycopg2.connect(DATABASE_URL)
    conn = sqlite3.connect(DB_PATH)
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _sql(query):
    return query.replace('?', '%s') if DATABASE_URL else query


def _insert(c, query, params):
    """Run an INSERT and return the new row id on either backend."""
    if DATABASE_URL:
        c.execute(_sql(query + ' RETURNING id'), params)
        return c.fetchone()[0]
    c.execute(query, params)
    return c.lastrowid


def _rows(c):
    names = [d[0] for d in c.description]
    rows = []
    for row in c.fetchall():
        item = dict(zip(names, row))
        for k, v in item.items():
            if isinstance(v, datetime):
                item[k] = v.isoformat()
        rows.append(item)
    return rows


def _one(c):
    rows = _rows(c)
    return rows[0] if rows else None


def _ensure_column(c, table, column, ddl):
    """Add a column to an existing table if it is missing."""
    if DATABASE_URL:
        c.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {ddl}")
        return
    try:
        c.execute(f"SELECT {column} FROM {table} LIMIT 1")
    except sqlite3.OperationalError:
        c.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


def init_db():
    """Create tables (idempotent)."""
    pk = 'SERIAL PRIMARY KEY' if DATABASE_URL else 'INTEGER PRIMARY KEY AUTOINCREMENT'
    real = 'DOUBLE PRECISION' if DATABASE_URL else 'REAL'

    conn = get_db()
    c = conn.cursor()
    c.execute(f'''
        CREATE TABLE IF NOT EXISTS users (
            id {pk},
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            google_sheet_id TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')
    c.execute(f'''
        CREATE TABLE IF NOT EXISTS accounts (
            id {pk},
            name TEXT NOT NULL,
            address TEXT,
            lat {real},
            lng {real},
            notes TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            user_id INTEGER
        )
    ''')
    # Optimistic concurrency token for notes read-modify-write (added later)
    _ensure_column(c, 'accounts', 'version', 'INTEGER DEFAULT 0')
    c.execute(f'''
        CREATE TABLE IF NOT EXISTS saved_routes (
            id {pk},
            user_id INTEGER,
            name TEXT NOT NULL,
            route_data TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')
    c.execute('''
        CREATE TABLE IF NOT EXISTS search_cache (
            cache_key TEXT PRIMARY KEY,
            created_at TIMESTAMP,
            expires_at TIMESTAMP,
            payload_json TEXT
        )
    ''')
    c.execute('CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id, created_at)')
    conn.commit()
    conn.close()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

def list_accounts(user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql(f'SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE user_id = ? '
                       'ORDER BY created_at DESC, id DESC'), (user_id,))
        return _rows(c)
    finally:
        conn.close()


def get_account(account_id, user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql(f'SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ? AND user_id = ?'),
                  (account_id, user_id))
        return _one(c)
    finally:
        conn.close()


def find_account_by_key(user_id, key):
    """Saved account whose notes blob carries the given taxpayer-location key."""
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql(f'SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE user_id = ? AND notes LIKE ?'),
                  (user_id, f'%{key}%'))
        for row in _rows(c):
            if AccountState.parse(row['notes']).key == key:
                return row
        return None
    finally:
        conn.close()


def create_account(user_id, name, address, lat, lng, notes):
    conn = get_db()
    try:
        c = conn.cursor()
        new_id = _insert(c, 'INSERT INTO accounts (name, address, lat, lng, notes, user_id, version) '
                            'VALUES (?, ?, ?, ?, ?, ?, 0)',
                         (name, address, lat, lng, notes, user_id))
        conn.commit()
        c.execute(_sql(f'SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?'), (new_id,))
        row = _one(c)
    finally:
        conn.close()
    print(f"[Store] Account {new_id} created for user {user_id}: {name}")
    return row


def update_account(account_id, user_id, lat=None, lng=None, notes=None):
    """Overwrite any subset of lat/lng/notes. Returns the row or None if not found."""
    sets, params = [], []
    if lat is not None:
        sets.append('lat = ?')
        params.append(lat)
    if lng is not None:
        sets.append('lng = ?')
        params.append(lng)
    if notes is not None:
        sets.append('notes = ?')
        params.append(notes)
    if not sets:
        raise ValueError('Nothing to update')
    sets.append('version = version + 1')

    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql(f"UPDATE accounts SET {', '.join(sets)} WHERE id = ? AND user_id = ?"),
                  params + [account_id, user_id])
        if c.rowcount == 0:
            return None
        conn.commit()
        c.execute(_sql(f'SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?'), (account_id,))
        return _one(c)
    finally:
        conn.close()


def delete_account(account_id, user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('DELETE FROM accounts WHERE id = ? AND user_id = ?'), (account_id, user_id))
        deleted = c.rowcount > 0
        conn.commit()
        return deleted
    finally:
        conn.close()


def delete_all_accounts(user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('DELETE FROM accounts WHERE user_id = ?'), (user_id,))
        count = c.rowcount
        conn.commit()
        return count
    finally:
        conn.close()


def mutate_account_state(account_id, user_id, fn):
    """
    Read-modify-write the notes blob of one account.

    fn(state) applies a single change to the parsed AccountState and may
    return a value. The whole blob is written back only if nobody else wrote
    in between (version check); otherwise the cycle is retried.

    Returns (state, fn_result), or None when the account does not exist.
    """
    for attempt in range(config.MAX_MERGE_ATTEMPTS):
        conn = get_db()
        try:
            c = conn.cursor()
            c.execute(_sql('SELECT notes, version FROM accounts WHERE id = ? AND user_id = ?'),
                      (account_id, user_id))
            row = c.fetchone()
            if not row:
                return None
            raw, version = row[0], row[1] or 0

            state = AccountState.parse(raw)
            result = fn(state)

            c.execute(_sql('UPDATE accounts SET notes = ?, version = ? '
                           'WHERE id = ? AND user_id = ? AND COALESCE(version, 0) = ?'),
                      (state.to_json(), version + 1, account_id, user_id, version))
            if c.rowcount == 1:
                conn.commit()
                return state, result
            conn.rollback()
        finally:
            conn.close()
        print(f"[Store] Notes for account {account_id} changed mid-update, retrying "
              f"({attempt + 1}/{config.MAX_MERGE_ATTEMPTS})")
    raise MergeConflictError('Account was modified concurrently. Please retry.')


# ---------------------------------------------------------------------------
# Saved routes
# ---------------------------------------------------------------------------

def _route_row(row):
    try:
        row['route_data'] = json.loads(row['route_data']) if row['route_data'] else {}
    except (json.JSONDecodeError, TypeError):
        row['route_data'] = {}
    return row


def list_routes(user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql(f'SELECT {ROUTE_COLUMNS} FROM saved_routes WHERE user_id = ? '
                       'ORDER BY created_at DESC, id DESC'), (user_id,))
        return [_route_row(r) for r in _rows(c)]
    finally:
        conn.close()


def create_route(user_id, name, route_data):
    conn = get_db()
    try:
        c = conn.cursor()
        new_id = _insert(c, 'INSERT INTO saved_routes (user_id, name, route_data) VALUES (?, ?, ?)',
                         (user_id, name, json.dumps(route_data)))
        conn.commit()
        c.execute(_sql(f'SELECT {ROUTE_COLUMNS} FROM saved_routes WHERE id = ?'), (new_id,))
        return _route_row(_one(c))
    finally:
        conn.close()


def delete_route(route_id, user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('DELETE FROM saved_routes WHERE id = ? AND user_id = ?'), (route_id, user_id))
        deleted = c.rowcount > 0
        conn.commit()
        return deleted
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def create_user(username, password_hash):
    conn = get_db()
    try:
        c = conn.cursor()
        new_id = _insert(c, 'INSERT INTO users (username, password_hash) VALUES (?, ?)',
                         (username, password_hash))
        conn.commit()
        return new_id
    finally:
        conn.close()


def get_user_by_username(username):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('SELECT id, username, password_hash, google_sheet_id FROM users WHERE username = ?'),
                  (username,))
        return _one(c)
    finally:
        conn.close()


def get_user(user_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('SELECT id, username, google_sheet_id FROM users WHERE id = ?'), (user_id,))
        return _one(c)
    finally:
        conn.close()


def set_sheet_id(user_id, sheet_id):
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('UPDATE users SET google_sheet_id = ? WHERE id = ?'), (sheet_id, user_id))
        updated = c.rowcount > 0
        conn.commit()
        return updated
    finally:
        conn.close()


def assign_orphans(user_id):
    """Give rows saved before multi-user support to one user. Returns (accounts, routes)."""
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('UPDATE accounts SET user_id = ? WHERE user_id IS NULL'), (user_id,))
        accounts = c.rowcount
        c.execute(_sql('UPDATE saved_routes SET user_id = ? WHERE user_id IS NULL'), (user_id,))
        routes = c.rowcount
        conn.commit()
        return accounts, routes
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Records cache (TTL)
# ---------------------------------------------------------------------------

def get_cached(cache_key):
    """Return cached payload if still valid, else None."""
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('SELECT payload_json FROM search_cache WHERE cache_key = ? AND expires_at > ?'),
                  (cache_key, datetime.now(timezone.utc).replace(tzinfo=None).isoformat()))
        row = c.fetchone()
    finally:
        conn.close()
    if row:
        return json.loads(row[0])
    return None


def set_cached(cache_key, payload, ttl_hours):
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    expires = now + timedelta(hours=ttl_hours)
    conn = get_db()
    try:
        c = conn.cursor()
        c.execute(_sql('''INSERT INTO search_cache (cache_key, created_at, expires_at, payload_json)
                          VALUES (?, ?, ?, ?)
                          ON CONFLICT (cache_key) DO UPDATE SET
                              created_at = excluded.created_at,
                              expires_at = excluded.expires_at,
                              payload_json = excluded.payload_json'''),
                  (cache_key, now.isoformat(), expires.isoformat(), json.dumps(payload)))
        conn.commit()
    finally:
        conn.close()
