# core/report.py
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader

from .models import FilterCriteria, Item, QuerySnapshot
from .query import page_numbers

# Resolve template directory relative to this file
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def _flags(it: Item) -> str:
    flags = []
    if it.is_adult:
        flags.append("R18")
    if it.is_vrchat:
        flags.append("VRChat")
    if it.is_sold_out:
        flags.append("sold out")
    if it.is_end_of_sale:
        flags.append("end of sale")
    if it.event_name:
        flags.append(it.event_name)
    return ", ".join(flags)


def summary_line(snapshot: QuerySnapshot, criteria: FilterCriteria) -> str:
    if criteria.is_active():
        text = f"{snapshot.total_matches} / {snapshot.total_items} items match"
    else:
        text = f"{snapshot.total_items} items"
    if snapshot.total_pages:
        text += f" · page {snapshot.page_index} of {snapshot.total_pages}"
    if not snapshot.detail_complete and snapshot.total_items:
        text += " · tags still loading"
    return text


def _pager(snapshot: QuerySnapshot) -> str:
    if snapshot.total_pages <= 1:
        return ""
    parts: List[str] = []
    for p in page_numbers(snapshot.page_index, snapshot.total_pages):
        if p == snapshot.page_index:
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return " ".join(parts)


def build_plaintext_report(
    snapshot: QuerySnapshot,
    criteria: FilterCriteria,
    page_size: int,
    list_code: Optional[str] = None,
) -> str:
    template = env.get_template("results.txt")
    start = (snapshot.page_index - 1) * page_size

    items_data = []
    for offset, it in enumerate(snapshot.page, start=1):
        category_path = " > ".join(c for c in (it.parent_category, it.category) if c)
        items_data.append(
            {
                "rank": start + offset,
                "name": it.name,
                "price_text": it.price_text,
                "likes": it.likes,
                "shop_name": it.shop_name,
                "flags": _flags(it),
                "category_path": category_path,
                "tags": ", ".join(it.tags),
                "url": it.url,
            }
        )

    ctx = {
        "list_label": list_code or "all liked items",
        "summary_text": summary_line(snapshot, criteria),
        "state": snapshot.state.value,
        "items": items_data,
        "pager": _pager(snapshot),
    }
    return template.render(**ctx)
