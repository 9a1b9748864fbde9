# core/storage.py
import copy
import datetime
import json
import math
import os
import sqlite3
from dataclasses import asdict, fields
from typing import Callable, Dict, List, Optional

import pytz

from .errors import PersistenceError
from .logger import get_logger
from .models import CacheEntry, Item

logger = get_logger(__name__)

DB_PATH = os.getenv("CACHE_DB_PATH", "/data/booth_wishlist_cache.sqlite3")
CACHE_TTL = datetime.timedelta(minutes=30)
RECORD_KEY = "bws_cache"
ALL_ITEMS_KEY = "__all__"

# Number of leading ids compared by validate_cache, also the listing page size.
VALIDATION_WINDOW = 20

_ITEM_FIELDS = {f.name for f in fields(Item)}


def now_utc() -> datetime.datetime:
    return datetime.datetime.now(tz=pytz.UTC)


def cache_key(list_code: Optional[str]) -> str:
    return list_code or ALL_ITEMS_KEY


def item_from_dict(data: Dict) -> Item:
    return Item(**{k: v for k, v in data.items() if k in _ITEM_FIELDS})


def _entry_to_dict(entry: CacheEntry) -> Dict:
    return {
        "items": [asdict(it) for it in entry.items],
        "detail_complete": entry.detail_complete,
        "saved_at": entry.saved_at.isoformat(),
    }


def _entry_from_dict(data: Dict) -> CacheEntry:
    saved_at = datetime.datetime.fromisoformat(data["saved_at"])
    if saved_at.tzinfo is None:
        saved_at = pytz.UTC.localize(saved_at)
    return CacheEntry(
        items=[item_from_dict(d) for d in data.get("items") or []],
        detail_complete=bool(data.get("detail_complete")),
        saved_at=saved_at,
    )


class CacheStore:
    """
    Snapshots of aggregated wish lists keyed by list code.

    The whole key -> entry mapping lives in one row and is rewritten on every
    change. Write failures only cost durability; entries stay usable in memory.
    """

    def __init__(
        self,
        db_path: str = DB_PATH,
        ttl: datetime.timedelta = CACHE_TTL,
        clock: Callable[[], datetime.datetime] = now_utc,
    ):
        self.db_path = db_path
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _connect(self):
        dirname = os.path.dirname(self.db_path)
        if dirname:
            os.makedirs(dirname, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _ensure_db(self, con) -> None:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_record (
                key TEXT PRIMARY KEY,
                payload TEXT,
                updated_at TEXT
            )
        """
        )

    def _read_record(self) -> Dict:
        try:
            with self._connect() as con:
                self._ensure_db(con)
                row = con.execute(
                    "SELECT payload FROM cache_record WHERE key=?", (RECORD_KEY,)
                ).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"reading {self.db_path}: {e}") from e
        if not row or not row[0]:
            return {}
        try:
            data = json.loads(row[0])
        except ValueError as e:
            raise PersistenceError(f"corrupt cache record: {e}") from e
        return data if isinstance(data, dict) else {}

    def _write_record(self) -> None:
        try:
            payload = json.dumps(
                {key: _entry_to_dict(entry) for key, entry in self._entries.items()},
                ensure_ascii=False,
            )
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"serializing cache: {e}") from e
        try:
            with self._connect() as con:
                self._ensure_db(con)
                con.execute(
                    """
                    INSERT INTO cache_record (key, payload, updated_at) VALUES (?,?,?)
                    ON CONFLICT(key) DO UPDATE SET
                        payload=excluded.payload,
                        updated_at=excluded.updated_at
                """,
                    (RECORD_KEY, payload, self.clock().isoformat()),
                )
                con.commit()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"writing {self.db_path}: {e}") from e

    def _persist(self) -> None:
        try:
            self._write_record()
        except PersistenceError as e:
            logger.warning("Cache not persisted, keeping it in memory only: %s", e)

    def _expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.saved_at >= self.ttl

    def load_all(self) -> int:
        """Load the durable record, dropping expired entries. Returns entries kept."""
        try:
            raw = self._read_record()
        except PersistenceError as e:
            logger.warning("Cache unavailable, starting empty: %s", e)
            return len(self._entries)

        dropped = 0
        for key, data in raw.items():
            try:
                entry = _entry_from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring unreadable cache entry %s: %s", key, e)
                dropped += 1
                continue
            if self._expired(entry):
                dropped += 1
                continue
            self._entries[key] = entry

        logger.debug("Cache loaded: %d entries kept, %d dropped.", len(self._entries), dropped)
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry

    def put(self, key: str, items: List[Item], detail_complete: bool) -> CacheEntry:
        entry = CacheEntry(
            items=copy.deepcopy(list(items)),
            detail_complete=detail_complete,
            saved_at=self.clock(),
        )
        self._entries[key] = entry
        self._persist()
        return entry

    def delete(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._persist()

    def keys(self) -> List[str]:
        return list(self._entries)


def cache_is_fresh(cached_items: List[Item], live_ids: List, live_total_pages: int) -> bool:
    """
    Staleness check against a freshly fetched page 1: the first ids must match
    in order and the page count derived from the cached size must agree.
    """
    cached_ids = [str(it.item_id) for it in cached_items[:VALIDATION_WINDOW]]
    live = [str(i) for i in live_ids[:VALIDATION_WINDOW]]
    cached_pages = math.ceil(len(cached_items) / VALIDATION_WINDOW)
    return cached_ids == live and cached_pages == live_total_pages
