"""Database schema definition, initialization, and migrations.

Every row in the cache can be rebuilt from the remote catalog, so a
schema version without a registered migration path is handled by
dropping and recreating all tables rather than failing startup.
"""

import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Drop order matters: children before parents
CACHE_TABLES = ["bookmarks", "listings", "merchants", "accounts"]

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    # Accounts (local identity; ids are assigned here, not remotely)
    """CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        phone TEXT NOT NULL DEFAULT '',
        address TEXT NOT NULL DEFAULT '',
        role TEXT NOT NULL DEFAULT 'CLIENT'
            CHECK (role IN ('CLIENT', 'MERCHANT')),
        photo_url TEXT,
        is_email_verified INTEGER NOT NULL DEFAULT 0,
        verification_code TEXT,
        created_at INTEGER NOT NULL
    )""",

    # Merchants share their primary key with the owning account
    """CREATE TABLE IF NOT EXISTS merchants (
        id INTEGER PRIMARY KEY,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL,
        phone TEXT NOT NULL DEFAULT '',
        address TEXT NOT NULL DEFAULT '',
        storefront_name TEXT NOT NULL DEFAULT '',
        photo_url TEXT,
        remote_id INTEGER,
        FOREIGN KEY (id) REFERENCES accounts(id) ON DELETE CASCADE
    )""",

    # Listings; owner_id is deliberately not a foreign key
    """CREATE TABLE IF NOT EXISTS listings (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        producer TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        owner_id INTEGER,
        owner_remote_id INTEGER,
        images TEXT NOT NULL
            CHECK (json_valid(images)
                   AND json_array_length(images) BETWEEN 1 AND 10),
        price REAL NOT NULL DEFAULT 0.0 CHECK (price >= 0),
        location TEXT NOT NULL DEFAULT ''
    )""",

    # Bookmarks (favorites join table)
    """CREATE TABLE IF NOT EXISTS bookmarks (
        account_id INTEGER NOT NULL,
        listing_id INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (account_id, listing_id),
        FOREIGN KEY (account_id) REFERENCES accounts(id) ON DELETE CASCADE,
        FOREIGN KEY (listing_id) REFERENCES listings(id) ON DELETE CASCADE
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_merchants_email ON merchants(email)",
    "CREATE INDEX IF NOT EXISTS idx_merchants_remote ON merchants(remote_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_owner ON listings(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_owner_remote "
    "ON listings(owner_remote_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_category ON listings(category)",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_listing ON bookmarks(listing_id)",
]

_VERSION_TABLE = """CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)"""


def _get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        row = conn.execute(
            "SELECT MAX(version) as v FROM schema_version"
        ).fetchone()
        return row["v"] if row and row["v"] else 0
    except Exception:
        return 0


def _create_schema(conn):
    conn.execute(_VERSION_TABLE)
    for stmt in _SCHEMA_STATEMENTS:
        conn.execute(stmt)
    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )


def _drop_schema(conn):
    for table in CACHE_TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")  # noqa: S608
    conn.execute("DROP TABLE IF EXISTS schema_version")


# from_version -> step that lands on from_version + 1
_MIGRATIONS: dict = {}


def has_migration_path(version: int) -> bool:
    """True when every step from *version* to SCHEMA_VERSION is defined."""
    return all(v in _MIGRATIONS for v in range(version, SCHEMA_VERSION))


def initialize_database(db_connection):
    """Create all tables, or bring an existing cache up to date.

    A fresh database gets the full schema directly. An older one is
    migrated step by step when a path exists and recreated from
    scratch otherwise, as is a database newer than this code.
    """
    with db_connection.get_connection() as conn:
        # Must precede any DML; SQLite ignores it inside a transaction
        conn.execute("PRAGMA foreign_keys = OFF")
        version = _get_schema_version(conn)

        if version == 0:
            _create_schema(conn)
        elif version < SCHEMA_VERSION and has_migration_path(version):
            logger.info(
                "Migrating local cache schema v%d -> v%d",
                version, SCHEMA_VERSION,
            )
            for step in range(version, SCHEMA_VERSION):
                _MIGRATIONS[step](conn)
        elif version != SCHEMA_VERSION:
            logger.warning(
                "No migration path from schema v%d to v%d; "
                "recreating local cache",
                version, SCHEMA_VERSION,
            )
            _drop_schema(conn)
            _create_schema(conn)
