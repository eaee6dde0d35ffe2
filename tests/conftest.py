"""Shared test fixtures."""

import copy
import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from storefront_sync.database.connection import DatabaseConnection
from storefront_sync.database.repository import Repository
from storefront_sync.database.schema import initialize_database
from storefront_sync.remote.dto import ListingDTO, MerchantDTO
from storefront_sync.remote.errors import DuplicateIdentityError, NotFoundError


class FakeGateway:
    """In-memory stand-in for RemoteGateway.

    ``failures`` maps a method name to the exception it should raise;
    ``calls`` records every call as ``(method, args)``.
    """

    def __init__(self, merchants=(), listings=()):
        self.merchants: list[MerchantDTO] = list(merchants)
        self.listings: list[ListingDTO] = list(listings)
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self.closed = False

    def _call(self, name, *args):
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name) -> list[tuple]:
        return [args for method, args in self.calls if method == name]

    def close(self):
        self.closed = True

    # Merchants

    def fetch_merchants(self):
        self._call("fetch_merchants")
        return copy.deepcopy(self.merchants)

    def fetch_merchant(self, merchant_id):
        self._call("fetch_merchant", merchant_id)
        for m in self.merchants:
            if m.id == merchant_id:
                return copy.deepcopy(m)
        raise NotFoundError(f"GET merchants/{merchant_id}: not found", 404)

    def find_merchants_by_email(self, email):
        self._call("find_merchants_by_email", email)
        return [copy.deepcopy(m) for m in self.merchants if m.email == email]

    def find_merchant_by_email(self, email):
        self._call("find_merchant_by_email", email)
        matches = [copy.deepcopy(m) for m in self.merchants if m.email == email]
        if len(matches) > 1:
            raise DuplicateIdentityError(email, [m.id for m in matches])
        return matches[0] if matches else None

    def create_merchant(self, merchant):
        self._call("create_merchant", merchant)
        self.merchants.append(copy.deepcopy(merchant))
        return copy.deepcopy(merchant)

    def update_merchant(self, merchant_id, patch):
        self._call("update_merchant", merchant_id, patch)
        for m in self.merchants:
            if m.id == merchant_id:
                m.first_name = patch.first_name
                m.last_name = patch.last_name
                m.phone = patch.phone
                m.address = patch.address
                m.storefront_name = patch.storefront_name
                if patch.photo_url is not None:
                    m.photo_url = patch.photo_url
                return copy.deepcopy(m)
        raise NotFoundError(f"PUT merchants/{merchant_id}: not found", 404)

    def patch_merchant(self, merchant_id, patch):
        return self.update_merchant(merchant_id, patch)

    def delete_merchant(self, merchant_id):
        self._call("delete_merchant", merchant_id)
        self.merchants = [m for m in self.merchants if m.id != merchant_id]

    # Listings

    def fetch_listings(self):
        self._call("fetch_listings")
        return copy.deepcopy(self.listings)

    def fetch_listings_by_owner(self, owner_id):
        self._call("fetch_listings_by_owner", owner_id)
        return [copy.deepcopy(l) for l in self.listings if l.owner_id == owner_id]

    def create_listing(self, listing):
        self._call("create_listing", listing)
        self.listings.append(copy.deepcopy(listing))
        return copy.deepcopy(listing)

    def update_listing(self, listing_id, listing):
        self._call("update_listing", listing_id, listing)
        for i, existing in enumerate(self.listings):
            if existing.id == listing_id:
                self.listings[i] = copy.deepcopy(listing)
                return copy.deepcopy(listing)
        raise NotFoundError(f"PUT listings/{listing_id}: not found", 404)

    def delete_listing(self, listing_id):
        self._call("delete_listing", listing_id)
        before = len(self.listings)
        self.listings = [l for l in self.listings if l.id != listing_id]
        if len(self.listings) == before:
            raise NotFoundError(f"DELETE listings/{listing_id}: not found", 404)


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def repo(db):
    """Provide a repository with an initialized database."""
    return Repository(db)


@pytest.fixture
def gateway():
    """An empty in-memory remote service."""
    return FakeGateway()


@pytest.fixture
def ana_dto():
    """A remote merchant with no local account yet."""
    return MerchantDTO(
        id=7, first_name="Ana", last_name="Diaz", email="a@x.com",
        phone="555-0101", address="Calle 1", storefront_name="Ana's Honey",
    )


@pytest.fixture
def make_gateway():
    """Factory for a remote service pre-loaded with merchants/listings."""
    return FakeGateway
