"""Reactive read paths over the local cache.

Each ``watch_*`` method returns a started ``LiveQuery`` that re-emits on
every committed write to the tables it reads, sync writes included, so a
reader mid-sync sees the cache as each stage leaves it.
"""

import logging
from typing import Callable, Iterable, Optional

from PySide6.QtCore import QThreadPool

from storefront_sync.database.live_query import LiveQuery
from storefront_sync.database.models import Listing
from storefront_sync.database.repository import Repository

logger = logging.getLogger(__name__)

ResultCallback = Callable[[object], None]


class CacheReadModel:
    """Listing, category and favorites queries, one-shot or live."""

    def __init__(self, repo: Repository, pool: Optional[QThreadPool] = None):
        self.repo = repo
        self.pool = pool
        self._live: list[LiveQuery] = []

    # ── One-shot reads ──────────────────────────────────────────

    def all_listings(self) -> list[Listing]:
        return self.repo.get_all_listings()

    def listings_by_owner(self, owner_id: int) -> list[Listing]:
        return self.repo.get_listings_by_owner(owner_id)

    def listings_by_category(self, category: str) -> list[Listing]:
        return self.repo.get_listings_by_category(category)

    def search(self, query: str) -> list[Listing]:
        return self.repo.search_listings(query)

    def favorites(self, account_id: int) -> list[Listing]:
        return self.repo.get_favorite_listings(account_id)

    def categories(self) -> list[str]:
        return self.repo.get_categories()

    # ── Live reads ──────────────────────────────────────────────

    def watch_all_listings(self, on_results: Optional[ResultCallback] = None):
        return self._watch(("listings",), self.all_listings, on_results)

    def watch_listings_by_owner(self, owner_id: int,
                                on_results: Optional[ResultCallback] = None):
        return self._watch(
            ("listings",), lambda: self.listings_by_owner(owner_id), on_results
        )

    def watch_listings_by_category(self, category: str,
                                   on_results: Optional[ResultCallback] = None):
        return self._watch(
            ("listings",), lambda: self.listings_by_category(category), on_results
        )

    def watch_search(self, query: str,
                     on_results: Optional[ResultCallback] = None):
        return self._watch(("listings",), lambda: self.search(query), on_results)

    def watch_favorites(self, account_id: int,
                        on_results: Optional[ResultCallback] = None):
        # A listing edit changes a favorite's content, so both tables count
        return self._watch(
            ("listings", "bookmarks"), lambda: self.favorites(account_id),
            on_results,
        )

    def watch_categories(self, on_results: Optional[ResultCallback] = None):
        return self._watch(("listings",), self.categories, on_results)

    def _watch(self, tables: Iterable[str], query: Callable[[], object],
               on_results: Optional[ResultCallback]) -> LiveQuery:
        live = LiveQuery(self.repo, tables, query, pool=self.pool)
        if on_results is not None:
            live.results_ready.connect(on_results)
        # Drop queries their callers have already stopped
        self._live = [q for q in self._live if q.active]
        self._live.append(live)
        return live.start()

    @property
    def active_queries(self) -> int:
        return sum(1 for q in self._live if q.active)

    def close(self):
        """Stop every live query this model started."""
        for live in self._live:
            live.stop()
        logger.debug("Stopped %d live queries", len(self._live))
        self._live.clear()
