"""Tests for the reactive cache read model."""

from PySide6.QtCore import QThreadPool

from storefront_sync.database.models import Account, Listing
from storefront_sync.read_model import CacheReadModel


def _seed(repo):
    repo.upsert_listings([
        Listing(id=1, name="Honey", category="Food", owner_id=7,
                producer="Bees", location="Córdoba", images=["a"]),
        Listing(id=2, name="Scarf", category="Textiles", owner_id=8,
                producer="Knits", location="Salta", images=["b"]),
        Listing(id=3, name="Jam", category="Food", owner_id=7,
                producer="Bees", location="Mendoza", images=["c"]),
    ])


def _ids(listings):
    return [l.id for l in listings]


class TestOneShotReads:
    def test_queries(self, repo):
        _seed(repo)
        model = CacheReadModel(repo)
        assert _ids(model.all_listings()) == [1, 2, 3]
        assert _ids(model.listings_by_owner(7)) == [1, 3]
        assert _ids(model.listings_by_category("Textiles")) == [2]
        assert _ids(model.search("sal")) == [2]
        assert model.categories() == ["Food", "Textiles"]


class TestLiveReads:
    def test_watch_by_owner_follows_writes(self, repo):
        _seed(repo)
        model = CacheReadModel(repo)
        seen = []
        model.watch_listings_by_owner(7, lambda r: seen.append(_ids(r)))
        repo.upsert_listing(Listing(id=4, name="Wax", owner_id=7, images=["d"]))
        repo.delete_listing(1)
        assert seen == [[1, 3], [1, 3, 4], [3, 4]]

    def test_watch_search(self, repo):
        model = CacheReadModel(repo)
        seen = []
        model.watch_search("honey", lambda r: seen.append(_ids(r)))
        _seed(repo)
        assert seen == [[], [1]]

    def test_watch_favorites_tracks_both_tables(self, repo):
        _seed(repo)
        account_id = repo.insert_account(Account(email="u@x.com", password_hash="h"))
        model = CacheReadModel(repo)
        seen = []
        model.watch_favorites(account_id, seen.append)

        repo.add_bookmark(account_id, 2)
        repo.upsert_listing(Listing(id=2, name="Red Scarf", category="Textiles",
                                    owner_id=8, images=["b"]))

        assert [_ids(r) for r in seen] == [[], [2], [2]]
        assert seen[-1][0].name == "Red Scarf"

    def test_watch_categories(self, repo):
        model = CacheReadModel(repo)
        live = model.watch_categories()
        _seed(repo)
        assert live.value == ["Food", "Textiles"]

    def test_watch_category(self, repo):
        model = CacheReadModel(repo)
        live = model.watch_listings_by_category("Food")
        _seed(repo)
        assert _ids(live.value) == [1, 3]

    def test_close_stops_everything(self, repo):
        model = CacheReadModel(repo)
        seen = []
        model.watch_all_listings(seen.append)
        model.watch_categories()
        assert model.active_queries == 2
        model.close()
        _seed(repo)
        assert len(seen) == 1
        assert model.active_queries == 0

    def test_stopped_queries_are_released(self, repo):
        model = CacheReadModel(repo)
        for _ in range(5):
            model.watch_all_listings().stop()
        kept = model.watch_categories()
        assert model._live == [kept]
        assert model.active_queries == 1
        model.close()

    def test_observes_partial_sync_state(self, repo):
        model = CacheReadModel(repo)
        seen = []
        model.watch_all_listings(lambda r: seen.append(len(r)))
        repo.upsert_listing(Listing(id=1, name="a", images=["a"]))
        repo.upsert_listing(Listing(id=2, name="b", images=["b"]))
        assert seen == [0, 1, 2]


class TestPooledReads:
    def test_results_arrive_from_pool(self, qtbot, repo):
        pool = QThreadPool()
        model = CacheReadModel(repo, pool=pool)
        _seed(repo)
        live = model.watch_all_listings()
        with qtbot.waitSignal(live.results_ready, timeout=5000) as blocker:
            repo.upsert_listing(Listing(id=9, name="new", images=["z"]))
        pool.waitForDone()
        assert 9 in _ids(live.value)
        assert blocker.args[0]
        model.close()
