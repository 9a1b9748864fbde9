# core/enrich.py
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from .aggregate import FETCH_CONCURRENCY
from .cancel import CancellationToken
from .errors import TransportError
from .logger import get_logger
from .models import Item, Progress, category_name

logger = get_logger(__name__)


def _detail_category_parent(detail: Dict[str, Any]) -> str:
    category = detail.get("category") or {}
    if not isinstance(category, dict):
        return ""
    return category_name(category.get("parent"))


def apply_detail(item: Item, detail: Optional[Dict[str, Any]]) -> None:
    """Tags are replaced, never merged. Parent category only fills a gap."""
    if not isinstance(detail, dict) or not detail:
        return
    tags = detail.get("tags")
    if isinstance(tags, list):
        item.tags = [t.get("name") or "" for t in tags if isinstance(t, dict) and t.get("name")]
    if not item.parent_category:
        parent = _detail_category_parent(detail)
        if parent:
            item.parent_category = parent


def _fetch_one(client: Any, item_id: Any, token: CancellationToken):
    try:
        return client.fetch_detail(item_id, token)
    except TransportError as e:
        logger.debug("Detail fetch for %s failed: %s", item_id, e)
        return None


def enrich_details(
    items: List[Item],
    client: Any,
    token: CancellationToken,
    on_progress: Optional[Callable[[Progress], None]] = None,
    concurrency: int = FETCH_CONCURRENCY,
) -> bool:
    """
    Fill tags and missing parent categories from the per-item detail endpoint.

    Every item is attempted once per run; failures are not retried. Returns True
    only when the whole collection was attempted, False if the token fired first.
    """
    total = len(items)
    if not total:
        return True
    if token.cancelled:
        return False

    attempted = 0
    failures = 0
    logger.info("Fetching details for %d items.", total)

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="detail") as executor:
        for start in range(0, total, concurrency):
            if token.cancelled:
                logger.info("Detail fetch cancelled at %d/%d.", attempted, total)
                return False

            batch = items[start:start + concurrency]
            futures = [(it, executor.submit(_fetch_one, client, it.item_id, token)) for it in batch]
            results = []
            for it, fut in futures:
                try:
                    results.append((it, fut.result()))
                except Exception as e:
                    logger.warning("Detail worker for %s raised: %s", it.item_id, e)
                    results.append((it, None))

            if token.cancelled:
                logger.info("Detail fetch cancelled at %d/%d.", attempted, total)
                return False

            for it, detail in results:
                if not isinstance(detail, dict):
                    failures += 1
                else:
                    apply_detail(it, detail)
            attempted += len(batch)

            if on_progress is not None:
                try:
                    on_progress(Progress("details", attempted, total))
                except Exception as e:
                    logger.exception("Progress callback raised: %s", e)

    if failures:
        logger.warning("Details unavailable for %d of %d items.", failures, total)
    logger.info("Detail fetch complete for %d items.", total)
    return True
