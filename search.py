import os
import json
import time
import random
from typing import Any, Dict

from core.logger import get_logger, log_startup
from core.models import CacheEvent, FilterCriteria, Progress, SortMode
from core.report import build_plaintext_report
from core.session import ListViewSession
from core.storage import CacheStore
from fetchers import BoothClient

logger = get_logger(__name__)

POLL_MINUTES = int(os.getenv("POLL_MINUTES", "10"))
MODE = os.getenv("MODE", "once").lower()  # "daemon" or "once"
CONFIG_PATH = os.getenv("CONFIG_PATH", "/data/config.json")
LIST_CODE = os.getenv("LIST_CODE", "").strip() or None
PAGE_SIZE = int(os.getenv("PAGE_SIZE", "20"))
PAGE = int(os.getenv("PAGE", "1"))
SORT_MODE = os.getenv("SORT_MODE", SortMode.DEFAULT.value).strip().lower()
WAIT_FOR_DETAILS = os.getenv("WAIT_FOR_DETAILS", "true").lower() == "true"


def jitter_sleep_minutes(minutes: int) -> None:
    base = max(1, minutes)
    jitter = random.uniform(-0.1 * base, 0.1 * base)
    total = base + jitter
    logger.info("Sleeping %.1f minutes before next refresh.", total)
    time.sleep(total * 60)


def load_config(path: str = CONFIG_PATH) -> Dict[str, Any]:
    """
    Saved search settings. A missing file means no filters; an unreadable or
    malformed one is fatal.
    """
    if not os.path.exists(path):
        logger.info("No config file at %s; using default criteria.", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except Exception as e:
        logger.error("Failed to load config at %s: %s", path, e)
        raise SystemExit(1)

    if not isinstance(cfg, dict):
        logger.error("Config must be a JSON object.")
        raise SystemExit(1)

    criteria = cfg.get("criteria", {})
    if not isinstance(criteria, dict):
        logger.error("Config 'criteria' must be an object.")
        raise SystemExit(1)

    sort_mode = cfg.get("sort_mode", SORT_MODE)
    if sort_mode not in {m.value for m in SortMode}:
        logger.error("Unknown sort_mode '%s'.", sort_mode)
        raise SystemExit(1)

    return cfg


def build_criteria(cfg: Dict[str, Any]) -> FilterCriteria:
    try:
        return FilterCriteria.from_dict(cfg.get("criteria", {}))
    except (TypeError, ValueError) as e:
        logger.error("Invalid filter criteria in config: %s", e)
        raise SystemExit(1)


def _log_progress(progress: Progress) -> None:
    logger.info("Loading %s... %d/%d", progress.phase, progress.loaded, progress.total)


def _log_cache_event(event: CacheEvent) -> None:
    logger.debug("Cache event: %s", event.value)


def run_session(cache: CacheStore, cfg: Dict[str, Any]) -> int:
    list_code = cfg.get("list_code") or LIST_CODE
    criteria = build_criteria(cfg)
    page_size = int(cfg.get("page_size", PAGE_SIZE))

    client = BoothClient(list_code=list_code)
    session = ListViewSession(
        client,
        cache,
        list_code=list_code,
        page_size=page_size,
        on_progress=_log_progress,
        on_cache_event=_log_cache_event,
    )

    try:
        session.enter()
        if WAIT_FOR_DETAILS:
            session.wait()
        session.set_sort_mode(cfg.get("sort_mode", SORT_MODE))
        session.set_criteria(criteria)
        snapshot = session.set_page(int(cfg.get("page", PAGE)))
        print(build_plaintext_report(snapshot, session.criteria, session.page_size, list_code))
    finally:
        session.close()

    return 0 if snapshot.state.value != "failed" else 2


def run_once() -> int:
    cfg = load_config()
    cache = CacheStore()
    cache.load_all()
    return run_session(cache, cfg)


def run_daemon() -> None:
    logger.info("Starting daemon; refresh every %d minutes.", POLL_MINUTES)
    cache = CacheStore()
    cache.load_all()

    while True:
        try:
            cfg = load_config()
            run_session(cache, cfg)
        except SystemExit:
            raise
        except Exception as e:
            logger.exception("Unhandled error in daemon loop: %s", e)

        jitter_sleep_minutes(POLL_MINUTES)


if __name__ == "__main__":
    log_startup(
        logger,
        mode=MODE,
        list_code=LIST_CODE or "(all liked items)",
        config_path=CONFIG_PATH,
        poll_minutes=POLL_MINUTES,
    )
    try:
        if MODE == "once":
            raise SystemExit(run_once())
        else:
            run_daemon()
    except SystemExit:
        raise
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        raise SystemExit(2)
