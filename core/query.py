# core/query.py
import unicodedata
from collections import Counter
from typing import Callable, Dict, Iterable, List, Sequence, Union

from .models import AgeRestriction, FilterCriteria, Item, QueryResult, SortMode

Stage = Callable[[List[Item], FilterCriteria], List[Item]]


def _tokens(text: str) -> List[str]:
    return [t for t in text.lower().split() if t]


def _keyword(items: List[Item], c: FilterCriteria) -> List[Item]:
    words = _tokens(c.keyword)
    if not words:
        return items
    return [it for it in items if all(w in it.search_text() for w in words)]


def _exclude(items: List[Item], c: FilterCriteria) -> List[Item]:
    words = _tokens(c.exclude)
    if not words:
        return items
    return [it for it in items if not any(w in it.search_text() for w in words)]


def _tags(items: List[Item], c: FilterCriteria) -> List[Item]:
    wanted = [t.lower() for t in c.tags if t]
    if not wanted:
        return items
    out = []
    for it in items:
        have = [t.lower() for t in it.tags]
        if all(any(w in h for h in have) for w in wanted):
            out.append(it)
    return out


def _parent_category(items: List[Item], c: FilterCriteria) -> List[Item]:
    if not c.parent_category:
        return items
    return [it for it in items if it.parent_category == c.parent_category]


def _subcategory(items: List[Item], c: FilterCriteria) -> List[Item]:
    if not c.subcategory:
        return items
    return [it for it in items if it.category == c.subcategory]


def _price(items: List[Item], c: FilterCriteria) -> List[Item]:
    if c.price_min is not None:
        items = [it for it in items if it.price_num >= c.price_min]
    if c.price_max is not None:
        items = [it for it in items if it.price_num <= c.price_max]
    return items


def _event(items: List[Item], c: FilterCriteria) -> List[Item]:
    if not c.event:
        return items
    return [it for it in items if it.event_name == c.event]


def _age(items: List[Item], c: FilterCriteria) -> List[Item]:
    age = AgeRestriction(c.age)
    if age == AgeRestriction.ALL_AGES:
        return [it for it in items if not it.is_adult]
    if age == AgeRestriction.R18:
        return [it for it in items if it.is_adult]
    return items


def _sold_out(items: List[Item], c: FilterCriteria) -> List[Item]:
    if c.include_sold_out:
        return items
    return [it for it in items if not it.is_sold_out and not it.is_end_of_sale]


# Order matters: each stage narrows the output of the previous one.
PIPELINE: Sequence[Stage] = (
    _keyword,
    _exclude,
    _tags,
    _parent_category,
    _subcategory,
    _price,
    _event,
    _age,
    _sold_out,
)


def filter_items(items: Iterable[Item], criteria: FilterCriteria) -> List[Item]:
    working = list(items)
    for stage in PIPELINE:
        if not working:
            break
        working = stage(working, criteria)
    return working


def _name_key(item: Item) -> str:
    return unicodedata.normalize("NFKC", item.name).casefold()


_SORT_KEYS: Dict[SortMode, tuple] = {
    SortMode.PRICE_ASC: (lambda it: it.price_num, False),
    SortMode.PRICE_DESC: (lambda it: it.price_num, True),
    SortMode.LIKES_ASC: (lambda it: it.likes, False),
    SortMode.LIKES_DESC: (lambda it: it.likes, True),
    SortMode.NAME_ASC: (_name_key, False),
    SortMode.NAME_DESC: (_name_key, True),
}


def sort_items(items: List[Item], mode: Union[SortMode, str]) -> List[Item]:
    """Stable sort; returns a new list. DEFAULT keeps collection order."""
    mode = SortMode(mode)
    if mode == SortMode.DEFAULT:
        return list(items)
    key, reverse = _SORT_KEYS[mode]
    # sorted() keeps ties in input order even with reverse=True
    return sorted(items, key=key, reverse=reverse)


def paginate(items: List[Item], page_index: int, page_size: int) -> List[Item]:
    if page_size <= 0 or page_index < 1:
        return []
    start = (page_index - 1) * page_size
    return items[start:start + page_size]


def apply(
    items: Iterable[Item],
    criteria: FilterCriteria,
    sort_mode: Union[SortMode, str] = SortMode.DEFAULT,
    page_index: int = 1,
    page_size: int = 20,
) -> QueryResult:
    """
    Filter, sort and slice the collection. Pure: the input list and its items
    are never modified.
    """
    matched = sort_items(filter_items(items, criteria), sort_mode)
    return QueryResult(
        page=paginate(matched, page_index, page_size),
        total_matches=len(matched),
        page_size=page_size,
    )


def filter_options(items: Iterable[Item], parent_category: str = "") -> Dict[str, List[str]]:
    """Choices for the category, subcategory and event selectors."""
    items = list(items)
    parents = sorted({it.parent_category for it in items if it.parent_category})
    scoped = [it for it in items if it.parent_category == parent_category] if parent_category else items
    subcategories = sorted({it.category for it in scoped if it.category})
    events = sorted({it.event_name for it in items if it.event_name})
    return {
        "parent_categories": parents,
        "subcategories": subcategories,
        "events": events,
    }


def tag_suggestions(
    items: Iterable[Item],
    text: str,
    selected: Iterable[str] = (),
    limit: int = 20,
) -> List[tuple]:
    """(tag, count) pairs containing `text`, most common first."""
    q = text.strip().lower()
    if not q:
        return []
    chosen = set(selected)
    counts: Counter = Counter()
    for it in items:
        counts.update(it.tags)
    matches = [(tag, n) for tag, n in counts.items() if q in tag.lower() and tag not in chosen]
    matches.sort(key=lambda pair: pair[1], reverse=True)
    return matches[:limit]


def active_filter_count(criteria: FilterCriteria) -> int:
    """Number of filter-panel controls in use. The keyword box is not counted."""
    count = 0
    if criteria.exclude.strip():
        count += 1
    if criteria.tags:
        count += 1
    if criteria.parent_category:
        count += 1
    if criteria.subcategory:
        count += 1
    if criteria.price_min is not None or criteria.price_max is not None:
        count += 1
    if criteria.event:
        count += 1
    if AgeRestriction(criteria.age) != AgeRestriction.NONE:
        count += 1
    if not criteria.include_sold_out:
        count += 1
    return count


def page_numbers(current: int, total: int) -> List[Union[int, str]]:
    """Page links for a pager, with "..." standing in for skipped runs."""
    if total <= 7:
        return list(range(1, total + 1))
    pages: List[Union[int, str]] = [1]
    if current > 3:
        pages.append("...")
    for p in range(max(2, current - 1), min(total - 1, current + 1) + 1):
        pages.append(p)
    if current < total - 2:
        pages.append("...")
    pages.append(total)
    return pages
