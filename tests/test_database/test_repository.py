"""Tests for the Repository layer."""

import sqlite3

import pytest

from storefront_sync.database.models import (
    ROLE_CLIENT,
    ROLE_MERCHANT,
    Account,
    Listing,
    Merchant,
    ValidationError,
)


def _account(email="buyer@x.com", **kw):
    return Account(email=email, password_hash="h", first_name="Test", **kw)


def _listing(listing_id, owner_id=None, **kw):
    data = dict(
        id=listing_id, name=f"Item {listing_id}", category="Food",
        producer="Farm", images=["a.jpg"], price=10.0, location="Córdoba",
        owner_id=owner_id,
    )
    data.update(kw)
    return Listing(**data)


@pytest.fixture
def seller(repo):
    """An account with a merchant row."""
    account_id = repo.insert_account(_account("seller@x.com", role=ROLE_MERCHANT))
    repo.upsert_merchant(Merchant(
        id=account_id, first_name="Sam", email="seller@x.com",
        storefront_name="Old", remote_id=7,
    ))
    return account_id


class TestAccounts:
    def test_insert_assigns_id(self, repo):
        account_id = repo.insert_account(_account())
        assert account_id > 0
        fetched = repo.get_account_by_id(account_id)
        assert fetched.email == "buyer@x.com"
        assert fetched.role == ROLE_CLIENT

    def test_email_unique(self, repo):
        repo.insert_account(_account())
        with pytest.raises(sqlite3.IntegrityError):
            repo.insert_account(_account())

    def test_email_is_case_sensitive(self, repo):
        repo.insert_account(_account("Case@x.com"))
        assert repo.get_account_by_email("case@x.com") is None
        assert repo.email_exists("Case@x.com")

    def test_set_role(self, repo):
        account_id = repo.insert_account(_account())
        repo.set_account_role(account_id, ROLE_MERCHANT)
        assert repo.get_account_by_id(account_id).is_merchant

    def test_verification_flow(self, repo):
        repo.insert_account(_account())
        assert repo.set_verification_code("buyer@x.com", "1234") == 1
        assert repo.get_account_by_email("buyer@x.com").verification_code == "1234"
        repo.mark_email_verified("buyer@x.com")
        account = repo.get_account_by_email("buyer@x.com")
        assert account.is_email_verified == 1
        assert account.verification_code is None

    def test_update_password_unknown_email(self, repo):
        assert repo.update_password("ghost@x.com", "h2") == 0


class TestUpsertReplace:
    def test_account_upsert_replaces_every_field(self, repo):
        account_id = repo.insert_account(
            _account(phone="111", address="Street 1", photo_url="p.png")
        )
        repo.upsert_account(Account(
            id=account_id, email="buyer@x.com", password_hash="h2",
            first_name="Renamed", created_at=5,
        ))
        fetched = repo.get_account_by_id(account_id)
        assert fetched.first_name == "Renamed"
        assert fetched.phone == ""
        assert fetched.address == ""
        assert fetched.photo_url is None
        assert fetched.created_at == 5

    def test_listing_upsert_replaces_every_field(self, repo):
        repo.upsert_listing(_listing(1, description="long text", images=["a", "b"]))
        repo.upsert_listing(_listing(1, name="New", images=["c"]))
        fetched = repo.get_listing_by_id(1)
        assert fetched.name == "New"
        assert fetched.description == ""
        assert fetched.images == ["c"]

    def test_merchant_upsert_keeps_bookmarks_of_account(self, repo, seller):
        repo.upsert_listing(_listing(1, owner_id=seller))
        repo.add_bookmark(seller, 1)
        repo.upsert_account(_account("seller@x.com", id=seller, role=ROLE_MERCHANT))
        repo.upsert_merchant(Merchant(id=seller, email="seller@x.com"))
        assert repo.is_bookmarked(seller, 1)
        assert repo.get_merchant_by_id(seller).storefront_name == ""


class TestCascadeDelete:
    def test_account_delete_removes_merchant_keeps_listings(self, repo, seller):
        repo.upsert_listing(_listing(1, owner_id=seller))
        repo.delete_account(seller)
        assert repo.get_account_by_id(seller) is None
        assert repo.get_merchant_by_id(seller) is None
        listing = repo.get_listing_by_id(1)
        assert listing is not None
        assert listing.owner_id == seller

    def test_account_delete_removes_bookmarks(self, repo):
        account_id = repo.insert_account(_account())
        repo.upsert_listing(_listing(1))
        repo.add_bookmark(account_id, 1)
        repo.delete_account(account_id)
        assert repo.db.execute("SELECT * FROM bookmarks") == []

    def test_listing_delete_removes_bookmarks(self, repo):
        account_id = repo.insert_account(_account())
        repo.upsert_listing(_listing(1))
        repo.add_bookmark(account_id, 1)
        repo.delete_listing(1)
        assert repo.get_bookmarks(account_id) == []

    def test_merchant_without_account_rejected(self, repo):
        with pytest.raises(sqlite3.IntegrityError):
            repo.upsert_merchant(Merchant(id=404, email="nobody@x.com"))


class TestMerchants:
    def test_merchants_by_remote_id(self, repo, seller):
        merchants = repo.get_merchants_by_remote_id()
        assert list(merchants) == [7]
        assert merchants[7].id == seller
        assert merchants[7].storefront_name == "Old"

    def test_relink_resolves_remote_owner(self, repo, seller):
        repo.upsert_listing(_listing(1, owner_remote_id=7, producer="stale"))
        assert repo.relink_listing_owners() == 1
        listing = repo.get_listing_by_id(1)
        assert listing.owner_id == seller
        assert listing.producer == "Old"
        assert repo.relink_listing_owners() == 0

    def test_relink_clears_owner_without_merchant(self, repo, seller):
        repo.upsert_listing(_listing(1, owner_id=seller, owner_remote_id=55))
        repo.upsert_listing(_listing(2, owner_id=seller))
        repo.relink_listing_owners()
        assert repo.get_listing_by_id(1).owner_id is None
        # Listings without a remote owner are left alone
        assert repo.get_listing_by_id(2).owner_id == seller

    def test_save_profile_propagates_producer(self, repo, seller):
        repo.upsert_listings([_listing(1, owner_id=seller), _listing(2, owner_id=seller)])
        repo.upsert_listing(_listing(3, owner_id=None, producer="Public"))
        merchant = repo.get_merchant_by_id(seller)
        merchant.storefront_name = "New"

        touched = repo.save_merchant_profile(merchant)

        assert touched == 2
        assert [l.producer for l in repo.get_listings_by_owner(seller)] == ["New", "New"]
        assert repo.get_listing_by_id(3).producer == "Public"
        assert repo.get_merchant_by_id(seller).storefront_name == "New"

    def test_save_profile_is_atomic(self, repo, seller):
        repo.upsert_listing(_listing(1, owner_id=seller))
        merchant = repo.get_merchant_by_id(seller)
        merchant.storefront_name = "New"
        # Account with a role the CHECK constraint rejects
        bad_account = _account("seller@x.com", id=seller, role="ADMIN")
        with pytest.raises(sqlite3.IntegrityError):
            repo.save_merchant_profile(merchant, bad_account)
        assert repo.get_merchant_by_id(seller).storefront_name == "Old"
        assert repo.get_listing_by_id(1).producer == "Farm"

    def test_replace_all_merchants(self, repo, seller):
        other = repo.insert_account(_account("other@x.com"))
        repo.upsert_listing(_listing(1, owner_id=seller, owner_remote_id=7))
        repo.replace_all_merchants([Merchant(id=other, email="other@x.com")])
        assert [m.id for m in repo.get_all_merchants()] == [other]
        # Accounts are untouched
        assert repo.get_account_by_id(seller) is not None
        # The seller's listing no longer has a cached merchant
        assert repo.get_listing_by_id(1).owner_id is None


class TestListings:
    def test_validation_rejects_no_images(self, repo):
        with pytest.raises(ValidationError):
            repo.upsert_listing(_listing(1, images=[]))

    def test_validation_rejects_negative_price(self, repo):
        with pytest.raises(ValidationError):
            repo.upsert_listing(_listing(1, price=-1))

    def test_images_keep_order(self, repo):
        repo.upsert_listing(_listing(1, images=["3.jpg", "1.jpg", "2.jpg"]))
        assert repo.get_listing_by_id(1).images == ["3.jpg", "1.jpg", "2.jpg"]

    def test_replace_all_prunes_and_keeps(self, repo):
        repo.upsert_listings([_listing(1), _listing(2), _listing(3)])
        removed = repo.replace_all_listings([_listing(1, name="One")], keep_ids=[3])
        assert removed == 1
        assert [l.id for l in repo.get_all_listings()] == [1, 3]
        assert repo.get_listing_by_id(1).name == "One"

    def test_replace_all_empty_clears(self, repo):
        repo.upsert_listings([_listing(1), _listing(2)])
        assert repo.replace_all_listings([]) == 2
        assert repo.get_all_listings() == []

    def test_by_category_and_categories(self, repo):
        repo.upsert_listings([
            _listing(1, category="Food"),
            _listing(2, category="Crafts"),
            _listing(3, category="Food"),
        ])
        assert [l.id for l in repo.get_listings_by_category("Food")] == [1, 3]
        assert repo.get_categories() == ["Crafts", "Food"]

    def test_max_listing_id(self, repo):
        assert repo.get_max_listing_id() == 0
        repo.upsert_listings([_listing(4), _listing(9)])
        assert repo.get_max_listing_id() == 9


class TestSearch:
    @pytest.fixture(autouse=True)
    def _seed(self, repo):
        repo.upsert_listings([
            _listing(1, name="Wildflower Honey", category="Food",
                     location="Córdoba", producer="Bee Farm"),
            _listing(2, name="Wool Scarf", category="Textiles",
                     location="Salta", producer="Andes Knits"),
            _listing(3, name="Jam 100%", category="Food",
                     location="Mendoza", producer="Berry_Co"),
        ])

    @pytest.mark.parametrize("query, expected", [
        ("honey", [1]),
        ("HONEY", [1]),
        ("textiles", [2]),
        ("salta", [2]),
        ("knits", [2]),
        ("food", [1, 3]),
        ("100%", [3]),
        ("y_c", [3]),
        ("nothing", []),
    ])
    def test_substring_match(self, repo, query, expected):
        assert [l.id for l in repo.search_listings(query)] == expected

    def test_blank_query_returns_all(self, repo):
        assert [l.id for l in repo.search_listings("  ")] == [1, 2, 3]

    def test_percent_is_literal(self, repo):
        assert repo.search_listings("%") == [repo.get_listing_by_id(3)]


class TestBookmarks:
    def test_bookmark_twice_keeps_one_row(self, repo):
        account_id = repo.insert_account(_account())
        repo.upsert_listing(_listing(1))
        repo.add_bookmark(account_id, 1)
        repo.add_bookmark(account_id, 1)
        rows = repo.db.execute("SELECT * FROM bookmarks")
        assert len(rows) == 1

    def test_favorites_join(self, repo):
        account_id = repo.insert_account(_account())
        repo.upsert_listings([_listing(1), _listing(2), _listing(3)])
        repo.add_bookmark(account_id, 3)
        repo.add_bookmark(account_id, 1)
        assert [l.id for l in repo.get_favorite_listings(account_id)] == [1, 3]

    def test_remove_bookmark(self, repo):
        account_id = repo.insert_account(_account())
        repo.upsert_listing(_listing(1))
        repo.add_bookmark(account_id, 1)
        repo.remove_bookmark(account_id, 1)
        assert not repo.is_bookmarked(account_id, 1)


class TestChangeNotification:
    def test_subscription_redelivers_on_write(self, repo):
        seen = []
        sub = repo.subscribe(["listings"], repo.get_all_listings, seen.append)
        repo.upsert_listing(_listing(1))
        sub.unsubscribe()
        repo.upsert_listing(_listing(2))
        assert [len(s) for s in seen] == [0, 1]

    def test_unrelated_table_does_not_redeliver(self, repo):
        seen = []
        repo.subscribe(["listings"], repo.get_all_listings, seen.append)
        repo.insert_account(_account())
        assert len(seen) == 1

    def test_listener_error_does_not_break_write(self, repo):
        def boom(changed):
            raise RuntimeError("listener bug")

        repo.add_change_listener(boom)
        repo.upsert_listing(_listing(1))
        assert repo.get_listing_by_id(1) is not None

    def test_remover_detaches(self, repo):
        seen = []
        remove = repo.add_change_listener(seen.append)
        repo.upsert_listing(_listing(1))
        remove()
        repo.upsert_listing(_listing(2))
        assert seen == [frozenset({"listings"})]
