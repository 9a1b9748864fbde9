# fetchers/booth.py
import os
import re
from typing import Any, Dict, Iterable, List, Optional

import requests
from bs4 import BeautifulSoup
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.cancel import CANCELLED, CancellationToken
from core.errors import MutationError, TransportError
from core.logger import get_logger
from core.models import Item, Page, category_name

logger = get_logger(__name__)

ACCOUNTS_URL = os.getenv("BOOTH_ACCOUNTS_URL", "https://accounts.booth.pm").rstrip("/")
ITEMS_URL = os.getenv("BOOTH_ITEMS_URL", "https://booth.pm/ja/items").rstrip("/")
USER_AGENT = os.getenv(
    "BOOTH_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)
PROXY_URL = os.getenv("BOOTH_PROXY_URL", "").strip()
COOKIE = os.getenv("BOOTH_COOKIE", "").strip()
TIMEOUT = float(os.getenv("BOOTH_TIMEOUT", "30"))
CONNECT_ATTEMPTS = int(os.getenv("BOOTH_CONNECT_ATTEMPTS", "3"))

JSON_HEADERS = {"Accept": "application/json"}

_DIGITS_RE = re.compile(r"(\d+)")


def parse_price(text: Optional[str]) -> int:
    """'¥1,200' -> 1200. Missing or malformed text gives 0."""
    if not text:
        return 0
    m = _DIGITS_RE.search(str(text).replace(",", ""))
    return int(m.group(1)) if m else 0


def to_item(raw: Dict[str, Any]) -> Item:
    category = raw.get("category") or {}
    event = raw.get("event") or {}
    shop = raw.get("shop") or {}
    price_text = raw.get("price") or "¥ 0"
    return Item(
        item_id=raw.get("id"),
        name=raw.get("name") or "",
        url=raw.get("url") or "",
        image_urls=list(raw.get("thumbnail_image_urls") or []),
        parent_category=category_name(category.get("parent")),
        category=category_name(category),
        category_url=category.get("url") or "",
        is_vrchat=bool(raw.get("is_vrchat")),
        is_adult=bool(raw.get("is_adult")),
        is_sold_out=bool(raw.get("is_sold_out")),
        is_end_of_sale=bool(raw.get("is_end_of_sale")),
        event_name=event.get("name") or None,
        shop_name=shop.get("name") or "",
        shop_url=shop.get("url") or "",
        shop_icon_url=shop.get("thumbnail_url") or "",
        price_text=price_text,
        price_num=parse_price(price_text),
    )


def _build_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": USER_AGENT})
    if COOKIE:
        s.headers.update({"Cookie": COOKIE})
    if PROXY_URL:
        s.proxies.update({"http": PROXY_URL, "https": PROXY_URL})
    return s


class BoothClient:
    """
    Thin wrapper over the BOOTH JSON endpoints used by the wish-list pages.

    Listing, like-count and detail calls take a CancellationToken and return
    CANCELLED instead of a result once it fires.
    """

    def __init__(
        self,
        list_code: str | None = None,
        session: requests.Session | None = None,
        accounts_url: str = ACCOUNTS_URL,
        items_url: str = ITEMS_URL,
        timeout: float = TIMEOUT,
    ):
        self.list_code = list_code or None
        self.session = session or _build_session()
        self.accounts_url = accounts_url.rstrip("/")
        self.items_url = items_url.rstrip("/")
        self.timeout = timeout
        self._csrf_token: str | None = None

    @retry(
        retry=retry_if_exception_type(requests.ConnectionError),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(CONNECT_ATTEMPTS),
    )
    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return self.session.request(method, url, **kwargs)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self._request(method, url, **kwargs)
        except RetryError as e:
            raise TransportError(f"{method} {url} failed after retries: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    # ----- listing -----

    def page_url(self) -> str:
        return f"{self.accounts_url}/wish_list_name_items.json"

    def page_params(self, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page}
        if self.list_code:
            params["wish_list_name_code"] = self.list_code
        return params

    def fetch_page(self, page: int, token: CancellationToken):
        """
        Fetch one listing page. Returns a Page, or CANCELLED if the token fired
        before or during the request. Raises TransportError on failure.
        """
        if token.cancelled:
            return CANCELLED

        resp = self._send(
            "GET", self.page_url(), params=self.page_params(page), headers=JSON_HEADERS
        )
        if token.cancelled:
            return CANCELLED
        if not resp.ok:
            raise TransportError(f"listing page {page}: HTTP {resp.status_code}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(f"listing page {page}: invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise TransportError(f"listing page {page}: unexpected payload {type(data).__name__}")

        raw_items = data.get("items") or []
        pagination = data.get("pagination") or {}
        if not isinstance(raw_items, list) or not isinstance(pagination, dict):
            raise TransportError(f"listing page {page}: malformed items or pagination")
        try:
            total_pages = max(1, int(pagination.get("total_pages") or 1))
        except (TypeError, ValueError) as e:
            raise TransportError(f"listing page {page}: bad total_pages: {e}") from e
        items = [to_item(raw) for raw in raw_items if isinstance(raw, dict)]
        logger.debug("Listing page %d/%d: %d items", page, total_pages, len(items))
        return Page(items=items, total_pages=total_pages)

    def fetch_likes(self, item_ids: Iterable[Any], token: CancellationToken):
        """Mapping str(item_id) -> like count. Non-success responses give {}."""
        ids = list(item_ids)
        if not ids:
            return {}
        if token.cancelled:
            return CANCELLED

        resp = self._send(
            "GET",
            f"{self.accounts_url}/wish_lists.json",
            params={"item_ids[]": ids},
            headers=JSON_HEADERS,
        )
        if token.cancelled:
            return CANCELLED
        if not resp.ok:
            logger.warning("Like counts request failed: HTTP %s", resp.status_code)
            return {}

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Like counts response was not JSON")
            return {}
        counts = data.get("wishlists_counts") if isinstance(data, dict) else None
        if not isinstance(counts, dict):
            return {}

        out: Dict[str, int] = {}
        for k, v in counts.items():
            try:
                out[str(k)] = int(v)
            except (TypeError, ValueError):
                continue
        return out

    # ----- detail -----

    def fetch_detail(self, item_id: Any, token: CancellationToken):
        """Detail payload for one item, None on a non-success response."""
        if token.cancelled:
            return CANCELLED

        resp = self._send("GET", f"{self.items_url}/{item_id}.json", headers=JSON_HEADERS)
        if token.cancelled:
            return CANCELLED
        if not resp.ok:
            logger.debug("Detail for %s: HTTP %s", item_id, resp.status_code)
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    # ----- membership -----

    def csrf_token(self) -> str:
        if self._csrf_token is None:
            resp = self._send("GET", f"{self.accounts_url}/wish_lists")
            if not resp.ok:
                raise TransportError(f"wish list page: HTTP {resp.status_code}", resp.status_code)
            soup = BeautifulSoup(resp.text, "html.parser")
            meta = soup.find("meta", attrs={"name": "csrf-token"})
            self._csrf_token = (meta.get("content") if meta else "") or ""
            if not self._csrf_token:
                logger.warning("No csrf-token meta tag found on %s/wish_lists", self.accounts_url)
        return self._csrf_token

    def _mutation_headers(self) -> Dict[str, str]:
        return {
            "X-CSRF-Token": self.csrf_token(),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def fetch_list_names(self) -> List[Dict[str, str]]:
        resp = self._send("GET", f"{self.accounts_url}/wish_list_names.json", headers=JSON_HEADERS)
        if not resp.ok:
            raise TransportError(f"wish list names: HTTP {resp.status_code}", resp.status_code)
        try:
            entries = resp.json() or []
        except ValueError as e:
            raise TransportError(f"wish list names: invalid JSON: {e}") from e
        if not isinstance(entries, list):
            raise TransportError("wish list names: unexpected payload")
        out = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            out.append(
                {
                    "code": entry.get("code") or entry.get("wish_list_name_code") or "",
                    "name": entry.get("name") or entry.get("wish_list_name_name") or "",
                }
            )
        return out

    def fetch_membership(self, item_id: Any) -> List[str]:
        """Codes of the lists that currently contain the item."""
        try:
            resp = self._send(
                "GET", f"{self.accounts_url}/items/{item_id}/wish_list_items.json", headers=JSON_HEADERS
            )
        except TransportError as e:
            raise MutationError(item_id, str(e)) from e
        if not resp.ok:
            raise MutationError(item_id, f"membership lookup HTTP {resp.status_code}")
        try:
            entries = resp.json() or []
        except ValueError as e:
            # an expired cookie gets the HTML login page with a 200
            raise MutationError(item_id, f"membership lookup returned non-JSON: {e}") from e
        if not isinstance(entries, list):
            raise MutationError(item_id, "membership lookup returned an unexpected payload")
        return [
            entry.get("wish_list_name_code")
            for entry in entries
            if isinstance(entry, dict) and entry.get("is_item_in_wish_list_name")
        ]

    def set_membership(self, item_id: Any, codes: List[str]) -> None:
        try:
            resp = self._send(
                "PATCH",
                f"{self.accounts_url}/items/{item_id}/wish_list_items.json",
                json={"wish_list_name_codes": codes},
                headers=self._mutation_headers(),
            )
        except TransportError as e:
            raise MutationError(item_id, str(e)) from e
        if not resp.ok:
            raise MutationError(item_id, f"membership update HTTP {resp.status_code}")

    def remove_from_all_lists(self, item_id: Any) -> None:
        try:
            resp = self._send(
                "DELETE",
                f"{self.accounts_url}/items/{item_id}/wish_list",
                headers=self._mutation_headers(),
            )
        except TransportError as e:
            raise MutationError(item_id, str(e)) from e
        if not resp.ok:
            raise MutationError(item_id, f"removal HTTP {resp.status_code}")
