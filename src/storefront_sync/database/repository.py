"""Repository layer: the local cache store with change subscriptions.

All writes use whole-row upserts keyed by primary key. They are written
as ``INSERT ... ON CONFLICT(pk) DO UPDATE`` with every column taken from
the incoming row instead of ``INSERT OR REPLACE``: REPLACE deletes the old
row first, which would fire the ON DELETE CASCADE on merchants and
bookmarks every time a parent row was refreshed.
"""

import logging
import threading
from typing import Callable, Iterable, Optional

from .connection import DatabaseConnection
from .models import Account, Bookmark, Listing, Merchant

logger = logging.getLogger(__name__)

ChangeListener = Callable[[frozenset], None]

_ACCOUNT_COLUMNS = (
    "id", "first_name", "last_name", "email", "password_hash", "phone",
    "address", "role", "photo_url", "is_email_verified",
    "verification_code", "created_at",
)
_MERCHANT_COLUMNS = (
    "id", "first_name", "last_name", "email", "phone", "address",
    "storefront_name", "photo_url", "remote_id",
)
_LISTING_COLUMNS = (
    "id", "name", "description", "producer", "category", "owner_id",
    "owner_remote_id", "images", "price", "location",
)


def _upsert_sql(table: str, columns: tuple) -> str:
    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (
        f"INSERT INTO {table} ({names}) VALUES ({placeholders}) "  # noqa: S608
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


_UPSERT_ACCOUNT = _upsert_sql("accounts", _ACCOUNT_COLUMNS)
_UPSERT_MERCHANT = _upsert_sql("merchants", _MERCHANT_COLUMNS)
_UPSERT_LISTING = _upsert_sql("listings", _LISTING_COLUMNS)


def _account_params(a: Account) -> tuple:
    return (
        a.id, a.first_name, a.last_name, a.email, a.password_hash, a.phone,
        a.address, a.role, a.photo_url, int(a.is_email_verified),
        a.verification_code, a.created_at,
    )


def _merchant_params(m: Merchant) -> tuple:
    return (
        m.id, m.first_name, m.last_name, m.email, m.phone, m.address,
        m.storefront_name, m.photo_url, m.remote_id,
    )


def _listing_params(item: Listing) -> tuple:
    return (
        item.id, item.name, item.description, item.producer, item.category,
        item.owner_id, item.owner_remote_id, item.images_json,
        float(item.price), item.location,
    )


# Point listings at the local merchant holding their remote owner id and
# take its storefront as producer. Listings whose remote owner has no
# local merchant get no local owner.
_RELINK_OWNED = """
    UPDATE listings SET
        owner_id = (SELECT m.id FROM merchants m
                    WHERE m.remote_id = listings.owner_remote_id),
        producer = (SELECT m.storefront_name FROM merchants m
                    WHERE m.remote_id = listings.owner_remote_id)
    WHERE EXISTS (
        SELECT 1 FROM merchants m
        WHERE m.remote_id = listings.owner_remote_id
          AND (listings.owner_id IS NOT m.id
               OR listings.producer IS NOT m.storefront_name)
    )
"""
_RELINK_ORPHANED = """
    UPDATE listings SET owner_id = NULL
    WHERE owner_remote_id IS NOT NULL AND owner_id IS NOT NULL
      AND NOT EXISTS (SELECT 1 FROM merchants m
                      WHERE m.remote_id = listings.owner_remote_id)
"""


def _relink_owners(conn) -> int:
    changed = conn.execute(_RELINK_OWNED).rowcount
    return changed + conn.execute(_RELINK_ORPHANED).rowcount


def _like_pattern(query: str) -> str:
    escaped = (
        query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


class Subscription:
    """A query that re-runs and re-delivers whenever its tables change.

    Delivery is synchronous, on the thread that committed the write.
    ``LiveQuery`` builds the worker-pool variant on top of the same
    change feed.
    """

    def __init__(self, repo: "Repository", tables: Iterable[str],
                 query: Callable[[], object],
                 callback: Callable[[object], None]):
        self.tables = frozenset(tables)
        self._repo = repo
        self._query = query
        self._callback = callback
        self._remove = repo.add_change_listener(self._on_change)
        self.active = True

    def _on_change(self, changed: frozenset):
        if self.active and changed & self.tables:
            self.refresh()

    def refresh(self):
        """Run the query now and hand the result to the callback."""
        self._callback(self._query())

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._remove()


class Repository:
    """Provides all local cache operations for the sync engine."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = threading.Lock()

    # ── Change notification ─────────────────────────────────────

    def add_change_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener* for committed writes; returns a remover."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def remove():
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _notify(self, *tables: str):
        changed = frozenset(tables)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(changed)
            except Exception:
                logger.exception("Change listener failed for %s", sorted(changed))

    def subscribe(self, tables: Iterable[str], query: Callable[[], object],
                  callback: Callable[[object], None]) -> Subscription:
        """Deliver ``query()`` now and again after every relevant write."""
        sub = Subscription(self, tables, query, callback)
        sub.refresh()
        return sub

    # ── Accounts ────────────────────────────────────────────────

    def insert_account(self, account: Account) -> int:
        """Insert a new account and return its locally assigned id."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO accounts (first_name, last_name, email, "
                "password_hash, phone, address, role, photo_url, "
                "is_email_verified, verification_code, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _account_params(account)[1:],
            )
            account_id = cursor.lastrowid
        self._notify("accounts")
        return account_id

    def upsert_account(self, account: Account):
        with self.db.get_connection() as conn:
            conn.execute(_UPSERT_ACCOUNT, _account_params(account))
        self._notify("accounts")

    def get_account_by_id(self, account_id: int) -> Optional[Account]:
        rows = self.db.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        )
        return Account(**dict(rows[0])) if rows else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        rows = self.db.execute(
            "SELECT * FROM accounts WHERE email = ?", (email,)
        )
        return Account(**dict(rows[0])) if rows else None

    def get_all_accounts(self) -> list[Account]:
        rows = self.db.execute("SELECT * FROM accounts ORDER BY id")
        return [Account(**dict(r)) for r in rows]

    def email_exists(self, email: str) -> bool:
        rows = self.db.execute(
            "SELECT COUNT(*) AS cnt FROM accounts WHERE email = ?", (email,)
        )
        return rows[0]["cnt"] > 0

    def set_account_role(self, account_id: int, role: str):
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE accounts SET role = ? WHERE id = ?", (role, account_id)
            )
        self._notify("accounts")

    def set_verification_code(self, email: str, code: str) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET verification_code = ? WHERE email = ?",
                (code, email),
            )
            count = cursor.rowcount
        self._notify("accounts")
        return count

    def mark_email_verified(self, email: str) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET is_email_verified = 1, "
                "verification_code = NULL WHERE email = ?",
                (email,),
            )
            count = cursor.rowcount
        self._notify("accounts")
        return count

    def update_password(self, email: str, password_hash: str) -> int:
        """Store a new credential hash; returns the number of rows changed."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET password_hash = ? WHERE email = ?",
                (password_hash, email),
            )
            count = cursor.rowcount
        self._notify("accounts")
        return count

    def delete_account(self, account_id: int):
        """Delete an account; its merchant row and bookmarks cascade."""
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        self._notify("accounts", "merchants", "bookmarks")

    # ── Merchants ───────────────────────────────────────────────

    def upsert_merchant(self, merchant: Merchant):
        self.upsert_merchants([merchant])

    def upsert_merchants(self, merchants: list[Merchant]):
        if not merchants:
            return
        with self.db.get_connection() as conn:
            conn.executemany(
                _UPSERT_MERCHANT, [_merchant_params(m) for m in merchants]
            )
        self._notify("merchants")

    def replace_all_merchants(self, merchants: list[Merchant]) -> int:
        """Drop every cached merchant and insert *merchants* in one go.

        Listing producers and remote owners are brought in line inside
        the same transaction. Returns the number of listings touched.
        """
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM merchants")
            conn.executemany(
                _UPSERT_MERCHANT, [_merchant_params(m) for m in merchants]
            )
            touched = sum(
                conn.execute(
                    "UPDATE listings SET producer = ?, "
                    "owner_remote_id = COALESCE(?, owner_remote_id) "
                    "WHERE owner_id = ?",
                    (m.storefront_name, m.remote_id, m.id),
                ).rowcount
                for m in merchants
            )
            touched += _relink_owners(conn)
        self._notify("merchants", "listings")
        return touched

    def get_merchant_by_id(self, merchant_id: int) -> Optional[Merchant]:
        rows = self.db.execute(
            "SELECT * FROM merchants WHERE id = ?", (merchant_id,)
        )
        return Merchant(**dict(rows[0])) if rows else None

    def get_merchant_by_email(self, email: str) -> Optional[Merchant]:
        rows = self.db.execute(
            "SELECT * FROM merchants WHERE email = ?", (email,)
        )
        return Merchant(**dict(rows[0])) if rows else None

    def get_all_merchants(self) -> list[Merchant]:
        rows = self.db.execute("SELECT * FROM merchants ORDER BY id")
        return [Merchant(**dict(r)) for r in rows]

    def get_merchants_by_remote_id(self) -> dict[int, Merchant]:
        """Remote merchant id -> cached merchant, for merchants that have one."""
        rows = self.db.execute(
            "SELECT * FROM merchants WHERE remote_id IS NOT NULL ORDER BY id"
        )
        return {r["remote_id"]: Merchant(**dict(r)) for r in rows}

    def relink_listing_owners(self) -> int:
        """Re-resolve every listing's local owner from its remote owner id.

        Returns the number of listings changed.
        """
        with self.db.get_connection() as conn:
            changed = _relink_owners(conn)
        if changed:
            self._notify("listings")
        return changed

    def save_merchant_profile(self, merchant: Merchant,
                              account: Optional[Account] = None) -> int:
        """Write a merchant edit and its derived data in one transaction.

        The owning account (when given) is rewritten alongside, and every
        listing owned by the merchant takes the storefront name as its
        producer. Returns the number of listings touched.
        """
        with self.db.get_connection() as conn:
            if account is not None:
                conn.execute(_UPSERT_ACCOUNT, _account_params(account))
            conn.execute(_UPSERT_MERCHANT, _merchant_params(merchant))
            cursor = conn.execute(
                "UPDATE listings SET producer = ?, "
                "owner_remote_id = COALESCE(?, owner_remote_id) "
                "WHERE owner_id = ?",
                (merchant.storefront_name, merchant.remote_id, merchant.id),
            )
            touched = cursor.rowcount
        self._notify("accounts", "merchants", "listings")
        return touched

    # ── Listings ────────────────────────────────────────────────

    def upsert_listing(self, listing: Listing):
        self.upsert_listings([listing])

    def upsert_listings(self, listings: list[Listing]):
        if not listings:
            return
        for item in listings:
            item.validate()
        with self.db.get_connection() as conn:
            conn.executemany(
                _UPSERT_LISTING, [_listing_params(i) for i in listings]
            )
        self._notify("listings")

    def replace_all_listings(self, listings: list[Listing],
                             keep_ids: Iterable[int] = ()) -> int:
        """Make the listings table equal to *listings*.

        Rows missing from the new set and from *keep_ids* are deleted
        (their bookmarks cascade); the rest are upserted. Returns the
        number deleted.
        """
        for item in listings:
            item.validate()
        keep = sorted({i.id for i in listings} | set(keep_ids))
        with self.db.get_connection() as conn:
            if keep:
                placeholders = ", ".join("?" for _ in keep)
                cursor = conn.execute(
                    f"DELETE FROM listings WHERE id NOT IN ({placeholders})",  # noqa: S608
                    keep,
                )
            else:
                cursor = conn.execute("DELETE FROM listings")
            removed = cursor.rowcount
            conn.executemany(
                _UPSERT_LISTING, [_listing_params(i) for i in listings]
            )
        self._notify("listings", "bookmarks")
        return removed

    def delete_listing(self, listing_id: int):
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
        self._notify("listings", "bookmarks")

    def get_listing_by_id(self, listing_id: int) -> Optional[Listing]:
        rows = self.db.execute(
            "SELECT * FROM listings WHERE id = ?", (listing_id,)
        )
        return Listing.from_row(rows[0]) if rows else None

    def get_all_listings(self) -> list[Listing]:
        rows = self.db.execute("SELECT * FROM listings ORDER BY id")
        return [Listing.from_row(r) for r in rows]

    def get_listings_by_owner(self, owner_id: int) -> list[Listing]:
        rows = self.db.execute(
            "SELECT * FROM listings WHERE owner_id = ? ORDER BY id",
            (owner_id,),
        )
        return [Listing.from_row(r) for r in rows]

    def get_listings_by_category(self, category: str) -> list[Listing]:
        rows = self.db.execute(
            "SELECT * FROM listings WHERE category = ? ORDER BY id",
            (category,),
        )
        return [Listing.from_row(r) for r in rows]

    def search_listings(self, query: str) -> list[Listing]:
        """Case-insensitive substring search over the display fields."""
        if not query.strip():
            return self.get_all_listings()
        pattern = _like_pattern(query.strip())
        rows = self.db.execute("""
            SELECT * FROM listings
            WHERE name LIKE ? ESCAPE '\\'
               OR category LIKE ? ESCAPE '\\'
               OR location LIKE ? ESCAPE '\\'
               OR producer LIKE ? ESCAPE '\\'
            ORDER BY id
        """, (pattern,) * 4)
        return [Listing.from_row(r) for r in rows]

    def get_categories(self) -> list[str]:
        rows = self.db.execute(
            "SELECT DISTINCT category FROM listings ORDER BY category ASC"
        )
        return [r["category"] for r in rows]

    def get_max_listing_id(self) -> int:
        rows = self.db.execute("SELECT MAX(id) AS m FROM listings")
        return rows[0]["m"] or 0

    # ── Bookmarks ───────────────────────────────────────────────

    def add_bookmark(self, account_id: int, listing_id: int):
        """Bookmark a listing; repeating the call keeps a single row."""
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO bookmarks (account_id, listing_id) VALUES (?, ?) "
                "ON CONFLICT(account_id, listing_id) DO NOTHING",
                (account_id, listing_id),
            )
        self._notify("bookmarks")

    def remove_bookmark(self, account_id: int, listing_id: int):
        with self.db.get_connection() as conn:
            conn.execute(
                "DELETE FROM bookmarks WHERE account_id = ? AND listing_id = ?",
                (account_id, listing_id),
            )
        self._notify("bookmarks")

    def get_bookmarks(self, account_id: int) -> list[Bookmark]:
        rows = self.db.execute(
            "SELECT * FROM bookmarks WHERE account_id = ? ORDER BY listing_id",
            (account_id,),
        )
        return [Bookmark(**dict(r)) for r in rows]

    def is_bookmarked(self, account_id: int, listing_id: int) -> bool:
        rows = self.db.execute(
            "SELECT 1 FROM bookmarks WHERE account_id = ? AND listing_id = ?",
            (account_id, listing_id),
        )
        return bool(rows)

    def get_favorite_listings(self, account_id: int) -> list[Listing]:
        rows = self.db.execute("""
            SELECT l.* FROM listings l
            INNER JOIN bookmarks b ON l.id = b.listing_id
            WHERE b.account_id = ?
            ORDER BY l.id
        """, (account_id,))
        return [Listing.from_row(r) for r in rows]

    # ── Diagnostics ─────────────────────────────────────────────

    def snapshot(self) -> dict[str, list[tuple]]:
        """Every cached row, per table, in primary-key order."""
        order = {
            "accounts": "id",
            "merchants": "id",
            "listings": "id",
            "bookmarks": "account_id, listing_id",
        }
        result = {}
        with self.db.get_connection() as conn:
            for table, key in order.items():
                rows = conn.execute(
                    f"SELECT * FROM {table} ORDER BY {key}"  # noqa: S608
                ).fetchall()
                result[table] = [tuple(r) for r in rows]
        return result
