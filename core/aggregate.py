# core/aggregate.py
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .cancel import CancellationToken, is_cancelled
from .errors import TransportError
from .logger import get_logger
from .models import Item, Progress

logger = get_logger(__name__)

FETCH_CONCURRENCY = 5

ProgressCallback = Optional[Callable[[Progress], None]]


@dataclass
class AggregationResult:
    status: str  # "complete" | "cancelled" | "failed"
    items: Optional[List[Item]] = None
    total_pages: int = 0
    pages_loaded: int = 0
    failed_pages: List[int] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status == "complete"


def _emit(on_progress: ProgressCallback, loaded: int, total: int) -> None:
    if on_progress is None:
        return
    try:
        on_progress(Progress("pages", loaded, total))
    except Exception as e:
        logger.exception("Progress callback raised: %s", e)


def attach_likes(client: Any, items: List[Item], token: CancellationToken):
    """
    Fetch like counts for exactly these items and set them in place.
    Returns CANCELLED if the token fired; a failed lookup leaves counts at 0.
    """
    if not items:
        return items
    try:
        counts = client.fetch_likes([it.item_id for it in items], token)
    except TransportError as e:
        logger.warning("Like counts unavailable for %d items: %s", len(items), e)
        counts = {}
    if is_cancelled(counts):
        return counts
    for it in items:
        it.likes = counts.get(str(it.item_id), 0)
    return items


def fetch_page_with_likes(client: Any, page: int, token: CancellationToken):
    """One listing page with like counts attached. Worker body for a batch."""
    result = client.fetch_page(page, token)
    if is_cancelled(result):
        return result
    items = attach_likes(client, result.items, token)
    if is_cancelled(items):
        return items
    return result


def _merge(collection: List[Item], seen: set, items: List[Item], page: int) -> int:
    added = 0
    for it in items:
        key = str(it.item_id)
        if key in seen:
            logger.debug("Skipping duplicate item %s on page %d", it.item_id, page)
            continue
        seen.add(key)
        collection.append(it)
        added += 1
    return added


def load_all(
    client: Any,
    token: CancellationToken,
    on_progress: ProgressCallback = None,
    concurrency: int = FETCH_CONCURRENCY,
) -> AggregationResult:
    """
    Load every page of the current listing into one collection.

    Page 1 is fetched alone to learn the page count; its failure is fatal.
    Pages 2..N follow in batches of `concurrency` concurrent requests. A batch
    is merged only after all of its requests settle, in page order; a failed
    page contributes nothing. The token is checked before and after each batch.
    """
    try:
        first = fetch_page_with_likes(client, 1, token)
    except TransportError as e:
        logger.error("Failed to fetch listing page 1: %s", e)
        return AggregationResult(status="failed", error=e)

    if is_cancelled(first):
        logger.info("Load cancelled before page 1 completed.")
        return AggregationResult(status="cancelled", items=[])

    total_pages = max(1, first.total_pages)
    collection: List[Item] = []
    seen: set = set()
    _merge(collection, seen, first.items, 1)
    pages_loaded = 1
    _emit(on_progress, pages_loaded, total_pages)

    failed_pages: List[int] = []
    remaining = list(range(2, total_pages + 1))

    if remaining:
        logger.info("Listing has %d pages; fetching the rest %d at a time.", total_pages, concurrency)

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="page") as executor:
        for start in range(0, len(remaining), concurrency):
            if token.cancelled:
                logger.info("Load cancelled after %d/%d pages.", pages_loaded, total_pages)
                return AggregationResult(
                    status="cancelled",
                    items=collection,
                    total_pages=total_pages,
                    pages_loaded=pages_loaded,
                    failed_pages=failed_pages,
                )

            batch = remaining[start:start + concurrency]
            futures = [
                (page, executor.submit(fetch_page_with_likes, client, page, token))
                for page in batch
            ]

            # Buffer the whole batch before touching the collection.
            settled = []
            for page, fut in futures:
                try:
                    settled.append((page, fut.result()))
                except Exception as e:
                    logger.warning("Listing page %d failed: %s", page, e)
                    settled.append((page, None))

            if token.cancelled:
                logger.info("Load cancelled after %d/%d pages.", pages_loaded, total_pages)
                return AggregationResult(
                    status="cancelled",
                    items=collection,
                    total_pages=total_pages,
                    pages_loaded=pages_loaded,
                    failed_pages=failed_pages,
                )

            for page, result in settled:
                if result is None or is_cancelled(result):
                    failed_pages.append(page)
                    continue
                _merge(collection, seen, result.items, page)

            pages_loaded += len(batch)
            _emit(on_progress, pages_loaded, total_pages)

    if failed_pages:
        logger.warning("Load finished with %d failed pages: %s", len(failed_pages), failed_pages)
    logger.info("Loaded %d items from %d pages.", len(collection), total_pages)

    return AggregationResult(
        status="complete",
        items=collection,
        total_pages=total_pages,
        pages_loaded=pages_loaded,
        failed_pages=failed_pages,
    )
