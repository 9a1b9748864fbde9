import pytest

from core.cancel import CancellationToken
from core.errors import MutationError
from core.models import CacheEvent, FilterCriteria, LoadState, SortMode
from core.session import ListViewSession

from conftest import FakeClient, make_item, paged


def _details_for(pages):
    return {it.item_id: {"tags": [{"name": f"t{it.item_id}"}]} for items in pages.values() for it in items}


def _session(client, cache, **kw):
    events = []
    session = ListViewSession(client, cache, list_code="abc", on_cache_event=events.append, **kw)
    return session, events


def test_cache_miss_loads_persists_and_enriches(cache):
    pages = paged(3, per_page=20)
    client = FakeClient(pages, details=_details_for(pages))
    session, events = _session(client, cache)

    snap = session.enter()
    assert snap.state == LoadState.READY
    assert snap.total_items == 60
    assert snap.total_pages == 3
    assert [it.item_id for it in snap.page] == list(range(1, 21))
    assert events == []

    session.wait(5)
    assert session.detail_complete is True
    entry = cache.get("abc")
    assert entry.detail_complete is True
    assert entry.items[0].tags == ["t1"]


def test_cache_hit_shown_then_validated(cache):
    pages = paged(2, per_page=20)
    cache.put("abc", [it for p in pages.values() for it in p], detail_complete=True)
    client = FakeClient(pages)
    session, events = _session(client, cache)

    snap = session.enter()
    assert snap.total_items == 40
    assert events[0] == CacheEvent.HIT_SHOWN

    session.wait(5)
    assert events == [CacheEvent.HIT_SHOWN, CacheEvent.VALIDATED]
    assert client.page_calls == [1]
    assert client.detail_calls == []
    assert cache.get("abc") is not None


def test_stale_cache_deleted_and_reloaded(cache):
    old = paged(2, per_page=20)
    cache.put("abc", [it for p in old.values() for it in p], detail_complete=True)

    fresh = paged(2, per_page=20)
    fresh[1][3] = make_item(999)
    client = FakeClient(fresh, details=_details_for(fresh))
    session, events = _session(client, cache)

    session.enter()
    session.wait(5)

    assert events == [CacheEvent.HIT_SHOWN, CacheEvent.INVALIDATED_RELOADING]
    assert 999 in [it.item_id for it in session.items]
    assert sorted(client.page_calls) == [1, 1, 2]
    entry = cache.get("abc")
    assert 999 in [it.item_id for it in entry.items]
    assert entry.detail_complete is True


def test_page_count_change_invalidates(cache):
    old = paged(2, per_page=20)
    cache.put("abc", [it for p in old.values() for it in p], detail_complete=True)
    grown = paged(3, per_page=20)
    client = FakeClient(grown)
    session, events = _session(client, cache)

    session.enter()
    session.wait(5)
    assert CacheEvent.INVALIDATED_RELOADING in events
    assert len(session.items) == 60


def test_validation_transport_error_keeps_cache(cache):
    items = [make_item(i) for i in range(1, 6)]
    cache.put("abc", items, detail_complete=True)
    client = FakeClient(paged(1), fail_pages={1})
    session, events = _session(client, cache)

    session.enter()
    session.wait(5)
    assert events == [CacheEvent.HIT_SHOWN]
    assert session.state == LoadState.READY
    assert cache.get("abc") is not None


def test_first_page_failure_sets_failed_state(cache):
    client = FakeClient(paged(3), fail_pages={1})
    session, _ = _session(client, cache)
    snap = session.enter()
    assert snap.state == LoadState.FAILED
    assert snap.total_items == 0
    assert cache.get("abc") is None


def test_interrupted_enrichment_persists_incomplete_then_resumes_whole_collection(cache):
    pages = paged(1, per_page=12)
    holder = {}

    def stop_early(item_id, token):
        if item_id == 3:
            holder["session"].token.cancel()

    client = FakeClient(pages, details=_details_for(pages), detail_hook=stop_early)
    session, _ = _session(client, cache)
    holder["session"] = session
    session.enter()
    session.close(5)

    entry = cache.get("abc")
    assert entry is not None
    assert entry.detail_complete is False

    resumed_client = FakeClient(pages, details=_details_for(pages))
    resumed, events = _session(resumed_client, cache)
    resumed.enter()
    resumed.wait(5)
    assert events == [CacheEvent.HIT_SHOWN, CacheEvent.VALIDATED]
    assert sorted(resumed_client.detail_calls) == list(range(1, 13))
    assert cache.get("abc").detail_complete is True


def test_commands_return_fresh_snapshots(cache):
    items = [
        make_item(1, name="Coat", parent_category="3D", category="Clothing", price_num=500, likes=3),
        make_item(2, name="Dress", parent_category="3D", category="Clothing", price_num=300, likes=9),
        make_item(3, name="Book", parent_category="Books", category="Art", price_num=900, likes=1),
    ]
    cache.put("abc", items, detail_complete=True)
    client = FakeClient({1: items})
    session, _ = _session(client, cache, page_size=2)
    session.enter()
    session.wait(5)

    snap = session.set_page(2)
    assert [it.item_id for it in snap.page] == [3]
    snap = session.set_sort_mode(SortMode.PRICE_ASC)
    assert snap.page_index == 1
    assert [it.item_id for it in snap.page] == [2, 1]
    snap = session.update_criteria(parent_category="3D")
    assert snap.total_matches == 2
    assert snap.total_pages == 1
    snap = session.set_page_size(1)
    assert snap.total_pages == 2
    snap = session.set_criteria(FilterCriteria(keyword="book"))
    assert [it.item_id for it in snap.page] == [3]


def test_subcategory_cleared_when_not_offered_for_parent(cache):
    items = [
        make_item(1, parent_category="3D", category="Clothing"),
        make_item(2, parent_category="Books", category="Art"),
    ]
    cache.put("abc", items, detail_complete=True)
    session, _ = _session(FakeClient({1: items}), cache)
    session.enter()
    session.wait(5)

    snap = session.set_criteria(FilterCriteria(parent_category="Books", subcategory="Clothing"))
    assert session.criteria.subcategory == ""
    assert snap.total_matches == 1


def test_tag_commands(cache):
    items = [make_item(1, tags=["VRChat", "Coat"]), make_item(2, tags=["VRChat"])]
    cache.put("abc", items, detail_complete=True)
    session, _ = _session(FakeClient({1: items}), cache)
    session.enter()
    session.wait(5)

    assert session.add_tag("coat").total_matches == 1
    assert session.add_tag("coat").total_matches == 1
    assert session.criteria.tags == ("coat",)
    assert session.suggest_tags("vr") == [("VRChat", 2)]
    assert session.remove_tag("coat").total_matches == 2


def test_remove_from_all_lists_keeps_failures_and_persists(cache):
    items = [make_item(i) for i in range(1, 5)]
    cache.put("abc", items, detail_complete=True)

    class Client(FakeClient):
        def remove_from_all_lists(self, item_id):
            if item_id == 3:
                raise MutationError(item_id, "HTTP 500")

    session, _ = _session(Client({1: items}), cache)
    session.enter()
    session.wait(5)

    report = session.remove_from_all_lists([1, 3, 4])
    assert report.succeeded == [1, 4]
    assert report.failed == [3]
    assert [it.item_id for it in session.items] == [2, 3]
    assert [it.item_id for it in cache.get("abc").items] == [2, 3]


def test_reload_replaces_collection(cache):
    pages = paged(1, per_page=3)
    client = FakeClient(pages)
    session, _ = _session(client, cache)
    session.enter()
    session.wait(5)

    client.pages = paged(1, per_page=3, start=50)
    snap = session.reload()
    session.wait(5)
    assert [it.item_id for it in snap.page] == [50, 51, 52]


def test_set_page_size_rejects_non_positive(cache):
    session, _ = _session(FakeClient(paged(1)), cache)
    with pytest.raises(ValueError):
        session.set_page_size(0)


def test_close_cancels_token(cache):
    session, _ = _session(FakeClient(paged(1)), cache)
    session.enter()
    session.close(5)
    assert session.token.cancelled
    assert isinstance(session.token, CancellationToken)


def test_empty_list_is_never_cached(cache):
    client = FakeClient({1: []})
    session, events = _session(client, cache)
    snap = session.enter()
    assert snap.state == LoadState.READY
    assert snap.total_items == 0
    session.close(5)
    assert cache.get("abc") is None

    again, events = _session(client, cache)
    again.enter()
    again.wait(5)
    assert events == []
    assert client.page_calls == [1, 1]


def test_removing_every_item_drops_the_cache_entry(cache):
    items = [make_item(1), make_item(2)]
    cache.put("abc", items, detail_complete=True)
    session, _ = _session(FakeClient({1: items}), cache)
    session.enter()
    session.wait(5)

    session.remove_items([1, 2])
    assert cache.get("abc") is None
