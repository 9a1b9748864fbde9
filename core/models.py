# core/models.py
import datetime
import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class Item:
    """
    One liked item as shown in a wish list.
    Tags and parent category may be filled in later by the detail pass.
    """
    item_id: Any
    name: str = ""
    url: str = ""
    image_urls: List[str] = field(default_factory=list)
    parent_category: str = ""
    category: str = ""
    category_url: str = ""
    is_vrchat: bool = False
    is_adult: bool = False
    is_sold_out: bool = False
    is_end_of_sale: bool = False
    event_name: Optional[str] = None
    shop_name: str = ""
    shop_url: str = ""
    shop_icon_url: str = ""
    price_text: str = "¥ 0"
    price_num: int = 0
    tags: List[str] = field(default_factory=list)
    likes: int = 0

    def search_text(self) -> str:
        parts = [self.name, self.shop_name, self.category, self.parent_category, " ".join(self.tags)]
        return " ".join(parts).lower()


@dataclass
class Page:
    items: List[Item]
    total_pages: int


@dataclass
class CacheEntry:
    items: List[Item]
    detail_complete: bool
    saved_at: datetime.datetime


class SortMode(str, enum.Enum):
    DEFAULT = "default"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"
    LIKES_ASC = "likes-asc"
    LIKES_DESC = "likes-desc"
    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"


class AgeRestriction(str, enum.Enum):
    NONE = ""
    ALL_AGES = "all-ages"
    R18 = "r18"


@dataclass(frozen=True)
class FilterCriteria:
    keyword: str = ""
    exclude: str = ""
    tags: Tuple[str, ...] = ()
    parent_category: str = ""
    subcategory: str = ""
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    event: str = ""
    age: AgeRestriction = AgeRestriction.NONE
    include_sold_out: bool = True

    def is_active(self) -> bool:
        return bool(
            self.keyword.strip()
            or self.exclude.strip()
            or self.tags
            or self.parent_category
            or self.subcategory
            or self.price_min is not None
            or self.price_max is not None
            or self.event
            or self.age != AgeRestriction.NONE
            or not self.include_sold_out
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterCriteria":
        def _int_or_none(v):
            if v is None or v == "":
                return None
            return int(v)

        tags = data.get("tags") or ()
        if isinstance(tags, str):
            tags = tags.split()
        return cls(
            keyword=str(data.get("keyword", "") or ""),
            exclude=str(data.get("exclude", "") or ""),
            tags=tuple(str(t).strip() for t in tags if str(t).strip()),
            parent_category=str(data.get("parent_category", "") or ""),
            subcategory=str(data.get("subcategory", "") or ""),
            price_min=_int_or_none(data.get("price_min")),
            price_max=_int_or_none(data.get("price_max")),
            event=str(data.get("event", "") or ""),
            age=AgeRestriction(data.get("age", "") or ""),
            include_sold_out=bool(data.get("include_sold_out", True)),
        )


@dataclass
class QueryResult:
    page: List[Item]
    total_matches: int
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_matches / self.page_size)


@dataclass(frozen=True)
class Progress:
    phase: str  # "pages" | "details"
    loaded: int
    total: int


class LoadState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class CacheEvent(str, enum.Enum):
    HIT_SHOWN = "hit-shown"
    VALIDATED = "validated"
    INVALIDATED_RELOADING = "invalidated-reloading"


@dataclass
class QuerySnapshot:
    page: List[Item]
    total_matches: int
    total_pages: int
    page_index: int
    total_items: int
    state: LoadState
    detail_complete: bool


def category_name(cat: Any) -> str:
    """Category names come as a plain string or a {"ja": ...} mapping."""
    if not isinstance(cat, dict):
        return ""
    name = cat.get("name")
    if isinstance(name, str):
        return name
    if isinstance(name, dict):
        return name.get("ja") or ""
    return ""
