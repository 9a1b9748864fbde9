import copy
import os
import threading

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest

from core.cancel import CANCELLED
from core.errors import TransportError
from core.models import Item, Page
from core.storage import CacheStore


def make_item(item_id, **kw) -> Item:
    kw.setdefault("name", f"item {item_id}")
    return Item(item_id=item_id, **kw)


class FakeClient:
    """In-memory stand-in for BoothClient."""

    def __init__(
        self,
        pages,
        likes=None,
        details=None,
        fail_pages=(),
        fail_likes=False,
        fail_details=(),
        list_code=None,
        page_hook=None,
        detail_hook=None,
    ):
        self.pages = pages
        self.likes = likes or {}
        self.details = details or {}
        self.fail_pages = set(fail_pages)
        self.fail_likes = fail_likes
        self.fail_details = set(fail_details)
        self.list_code = list_code
        self.page_hook = page_hook
        self.detail_hook = detail_hook
        self.page_calls = []
        self.like_calls = []
        self.detail_calls = []
        self._lock = threading.Lock()

    def fetch_page(self, page, token):
        if token.cancelled:
            return CANCELLED
        with self._lock:
            self.page_calls.append(page)
        if self.page_hook:
            self.page_hook(page, token)
        if page in self.fail_pages:
            raise TransportError(f"page {page} down", 500)
        if token.cancelled:
            return CANCELLED
        return Page(items=copy.deepcopy(self.pages.get(page, [])), total_pages=len(self.pages))

    def fetch_likes(self, item_ids, token):
        if token.cancelled:
            return CANCELLED
        with self._lock:
            self.like_calls.append(list(item_ids))
        if self.fail_likes:
            raise TransportError("likes down")
        return {str(i): self.likes[i] for i in item_ids if i in self.likes}

    def fetch_detail(self, item_id, token):
        if token.cancelled:
            return CANCELLED
        with self._lock:
            self.detail_calls.append(item_id)
        if self.detail_hook:
            self.detail_hook(item_id, token)
        if item_id in self.fail_details:
            raise TransportError(f"detail {item_id} down")
        return self.details.get(item_id)


def paged(n_pages, per_page=2, start=1):
    """Listing pages {page: [items]} with sequential integer ids."""
    pages = {}
    next_id = start
    for p in range(1, n_pages + 1):
        pages[p] = [make_item(next_id + i) for i in range(per_page)]
        next_id += per_page
    return pages


@pytest.fixture
def cache(tmp_path):
    store = CacheStore(db_path=str(tmp_path / "cache.sqlite3"))
    store.load_all()
    return store
