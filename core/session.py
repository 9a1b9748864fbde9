# core/session.py
import copy
import dataclasses
import threading
from typing import Any, Callable, Iterable, List, Optional

from . import query
from .aggregate import load_all
from .cancel import CancellationToken, is_cancelled
from .enrich import enrich_details
from .errors import TransportError
from .logger import get_logger
from .membership import MutationReport, bulk_add_to_list, bulk_remove_from_all_lists
from .models import (
    CacheEntry,
    CacheEvent,
    FilterCriteria,
    Item,
    LoadState,
    Progress,
    QuerySnapshot,
    SortMode,
)
from .storage import CacheStore, cache_is_fresh, cache_key

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20


class ListViewSession:
    """
    State for one wish-list view: the collection, the active criteria and the
    cancellation token shared by its background work.

    Create one when a list is opened, call enter(), and close() it when the
    user leaves. The query commands are synchronous and always answer from the
    in-memory collection.
    """

    def __init__(
        self,
        client: Any,
        cache: CacheStore,
        list_code: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_progress: Optional[Callable[[Progress], None]] = None,
        on_cache_event: Optional[Callable[[CacheEvent], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.client = client
        self.cache = cache
        self.list_code = list_code if list_code is not None else getattr(client, "list_code", None)
        self.key = cache_key(self.list_code)
        self.on_progress = on_progress
        self.on_cache_event = on_cache_event
        self.on_change = on_change

        self.token = CancellationToken()
        self.items: List[Item] = []
        self.state = LoadState.IDLE
        self.detail_complete = False
        self.criteria = FilterCriteria()
        self.sort_mode = SortMode.DEFAULT
        self.page_index = 1
        self.page_size = page_size

        self._stale = False
        self._worker: Optional[threading.Thread] = None

    # ----- callbacks -----

    def _notify(self, fn: Optional[Callable], *args) -> None:
        if fn is None:
            return
        try:
            fn(*args)
        except Exception as e:
            logger.exception("Session callback %r raised: %s", fn, e)

    def _cache_event(self, event: CacheEvent) -> None:
        logger.info("Cache %s for list %s", event.value, self.key)
        self._notify(self.on_cache_event, event)

    # ----- lifecycle -----

    def enter(self) -> QuerySnapshot:
        """
        Show the list. A cache hit is returned at once and checked in the
        background; a miss loads every page before returning.
        """
        entry = self.cache.get(self.key)
        if entry is not None:
            self.items = copy.deepcopy(entry.items)
            self.detail_complete = entry.detail_complete
            self.state = LoadState.READY
            self._cache_event(CacheEvent.HIT_SHOWN)
            self._start_background(self._after_cache_hit, entry)
        elif self._load():
            self._start_background(self._enrich)
        return self.snapshot()

    def close(self, timeout: Optional[float] = None) -> None:
        """Cancel background work and keep what was collected so far."""
        self.token.cancel()
        self.wait(timeout)
        if self.state == LoadState.READY and not self._stale:
            self._save(self.detail_complete)

    def reload(self) -> QuerySnapshot:
        """Drop the cache entry and load the list again from scratch."""
        self.token.cancel()
        self.wait()
        self.token = CancellationToken()
        self.cache.delete(self.key)
        if self._load():
            self._start_background(self._enrich)
        return self.snapshot()

    def wait(self, timeout: Optional[float] = None) -> None:
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

    @property
    def busy(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _start_background(self, fn: Callable, *args) -> None:
        self._worker = threading.Thread(
            target=self._run_guarded, args=(fn, *args), name=f"list-{self.key}", daemon=True
        )
        self._worker.start()

    def _run_guarded(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.exception("Background work for list %s failed: %s", self.key, e)

    # ----- pipeline -----

    def _load(self) -> bool:
        self.state = LoadState.LOADING
        result = load_all(self.client, self.token, self.on_progress)

        if result.status == "failed":
            self.items = []
            self.state = LoadState.FAILED
            self._notify(self.on_change)
            return False
        if result.status == "cancelled":
            return False

        self.items = result.items or []
        self.detail_complete = False
        self.state = LoadState.READY
        self._stale = False
        self._save(False)
        self._notify(self.on_change)
        return True

    def _save(self, detail_complete: bool) -> None:
        # empty lists are never cached
        if not self.items:
            self.cache.delete(self.key)
            return
        self.cache.put(self.key, self.items, detail_complete)

    def _enrich(self) -> None:
        if self.token.cancelled or not self.items:
            return
        complete = enrich_details(self.items, self.client, self.token, self.on_progress)
        if not complete or self.token.cancelled:
            return
        self.detail_complete = True
        self._save(True)
        self._notify(self.on_change)

    def validate_cache(self, entry: CacheEntry) -> Optional[bool]:
        """
        True if page 1 still matches the cached snapshot, False if it is stale,
        None when the check could not run.
        """
        try:
            live = self.client.fetch_page(1, self.token)
        except TransportError as e:
            logger.warning("Cache validation failed for %s, keeping cache: %s", self.key, e)
            return None
        if is_cancelled(live):
            return None
        return cache_is_fresh(entry.items, [it.item_id for it in live.items], live.total_pages)

    def _after_cache_hit(self, entry: CacheEntry) -> None:
        fresh = self.validate_cache(entry)
        if self.token.cancelled:
            return
        if fresh is False:
            self._stale = True
            self.cache.delete(self.key)
            self._cache_event(CacheEvent.INVALIDATED_RELOADING)
            if self._load():
                self._enrich()
            return
        if fresh:
            self._cache_event(CacheEvent.VALIDATED)
        if not self.detail_complete:
            self._enrich()

    # ----- query commands -----

    def snapshot(self) -> QuerySnapshot:
        result = query.apply(self.items, self.criteria, self.sort_mode, self.page_index, self.page_size)
        return QuerySnapshot(
            page=result.page,
            total_matches=result.total_matches,
            total_pages=result.total_pages,
            page_index=self.page_index,
            total_items=len(self.items),
            state=self.state,
            detail_complete=self.detail_complete,
        )

    def set_criteria(self, criteria: FilterCriteria) -> QuerySnapshot:
        if criteria.subcategory:
            offered = query.filter_options(self.items, criteria.parent_category)["subcategories"]
            if criteria.subcategory not in offered:
                criteria = dataclasses.replace(criteria, subcategory="")
        self.criteria = criteria
        self.page_index = 1
        return self.snapshot()

    def update_criteria(self, **changes) -> QuerySnapshot:
        return self.set_criteria(dataclasses.replace(self.criteria, **changes))

    def add_tag(self, tag: str) -> QuerySnapshot:
        tag = tag.strip()
        if not tag or tag in self.criteria.tags:
            return self.snapshot()
        return self.update_criteria(tags=self.criteria.tags + (tag,))

    def remove_tag(self, tag: str) -> QuerySnapshot:
        return self.update_criteria(tags=tuple(t for t in self.criteria.tags if t != tag))

    def set_sort_mode(self, mode) -> QuerySnapshot:
        self.sort_mode = SortMode(mode)
        self.page_index = 1
        return self.snapshot()

    def set_page(self, page_index: int) -> QuerySnapshot:
        self.page_index = max(1, int(page_index))
        return self.snapshot()

    def set_page_size(self, page_size: int) -> QuerySnapshot:
        if page_size <= 0:
            raise ValueError(f"page size must be positive, got {page_size}")
        self.page_size = page_size
        self.page_index = 1
        return self.snapshot()

    def options(self) -> dict:
        return query.filter_options(self.items, self.criteria.parent_category)

    def suggest_tags(self, text: str, limit: int = 20) -> List[tuple]:
        return query.tag_suggestions(self.items, text, self.criteria.tags, limit)

    def active_filter_count(self) -> int:
        return query.active_filter_count(self.criteria)

    # ----- membership -----

    def remove_items(self, item_ids: Iterable[Any]) -> int:
        drop = {str(i) for i in item_ids}
        before = len(self.items)
        self.items = [it for it in self.items if str(it.item_id) not in drop]
        removed = before - len(self.items)
        if removed and self.state == LoadState.READY and not self._stale:
            self._save(self.detail_complete)
        return removed

    def remove_from_all_lists(self, item_ids: Iterable[Any]) -> MutationReport:
        report = bulk_remove_from_all_lists(self.client, list(item_ids))
        self.remove_items(report.succeeded)
        return report

    def add_to_list(self, item_ids: Iterable[Any], code: str) -> MutationReport:
        return bulk_add_to_list(self.client, list(item_ids), code)

    def list_names(self) -> List[dict]:
        return self.client.fetch_list_names()
