import logging
import time
from concurrent.futures import ThreadPoolExecutor

import requests
from django.conf import settings

from .concurrency import MAX_CONCURRENCY, ConcurrencyController
from .exceptions import CatalogAPIError, MissingCredentialsError, RateLimitedError

logger = logging.getLogger(__name__)

API_PREFIX = '/wp-json/wc/v3'


class CatalogClient:
    """Thin client over the store's REST catalog API. One call, one request."""

    def __init__(self, store_url: str, consumer_key: str, consumer_secret: str, timeout=None):
        self._base_url = store_url.rstrip('/') + API_PREFIX
        self._timeout = timeout or settings.CATALOG_REQUEST_TIMEOUT
        self._session = requests.Session()
        self._session.auth = (consumer_key, consumer_secret)
        self._session.headers.update({'Accept': 'application/json'})

    @classmethod
    def for_shop(cls, shop):
        if not shop.has_credentials():
            raise MissingCredentialsError(f"Shop {shop.pk} has no catalog credentials.")
        return cls(shop.store_url, shop.consumer_key, shop.consumer_secret)

    def list_products(self, page=1, per_page=None, filters=None) -> tuple[list, int]:
        params = {'status': 'publish', **(filters or {})}
        return self._list('/products', page, per_page, params)

    def list_variations(self, parent_id, page=1, per_page=None) -> tuple[list, int]:
        return self._list(f'/products/{parent_id}/variations', page, per_page)

    def list_categories(self, page=1, per_page=None) -> tuple[list, int]:
        return self._list('/products/categories', page, per_page)

    def get_store_settings(self) -> dict:
        """Currency and unit settings of the store."""
        general = self._get('/settings/general').json()
        products = self._get('/settings/products').json()

        def _value(entries, setting_id):
            for entry in entries if isinstance(entries, list) else []:
                if entry.get('id') == setting_id:
                    return entry.get('value') or None
            return None

        return {
            'currency': _value(general, 'woocommerce_currency'),
            'dimension_unit': _value(products, 'woocommerce_dimension_unit'),
            'weight_unit': _value(products, 'woocommerce_weight_unit'),
        }

    def _list(self, path, page, per_page, params=None) -> tuple[list, int]:
        query = dict(params or {})
        query['page'] = page
        query['per_page'] = per_page or settings.CATALOG_PER_PAGE
        response = self._get(path, query)
        data = response.json()
        records = data if isinstance(data, list) else []
        return records, self._total_pages(response)

    def _get(self, path, params=None) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            raise CatalogAPIError(f"GET {url} failed: {exc}") from exc

        if response.status_code == 401:
            raise MissingCredentialsError(f"GET {url} rejected the shop credentials.")
        if response.status_code == 429:
            raise RateLimitedError(
                f"GET {url} rate limited.", retry_after=self._parse_retry_after(response),
            )
        if not response.ok:
            raise CatalogAPIError(
                f"GET {url} returned {response.status_code}.", status_code=response.status_code,
            )
        return response

    @staticmethod
    def _total_pages(response: requests.Response) -> int:
        try:
            return max(int(response.headers.get('X-WP-TotalPages', 1)), 1)
        except (TypeError, ValueError):
            return 1

    @staticmethod
    def _parse_retry_after(response: requests.Response):
        """Return float seconds from Retry-After header, or None if absent/invalid."""
        header = response.headers.get('Retry-After')
        if header is None:
            return None
        try:
            return float(header)
        except (TypeError, ValueError):
            return None


class Page:
    """
    Cursor over a paginated listing.

    `fetch(page, per_page)` must return `(records, total_pages)`. The total is
    learned from the first response; until then there is always a next page.
    """

    def __init__(self, fetch, per_page=None, start=1):
        self._fetch = fetch
        self._per_page = per_page
        self._cursor = start
        self._total_pages = None

    @property
    def total_pages(self):
        return self._total_pages

    def has_next(self) -> bool:
        return self._total_pages is None or self._cursor <= self._total_pages

    def next(self) -> tuple[list, int]:
        if not self.has_next():
            raise StopIteration
        cursor = self._cursor
        records, total_pages = self._fetch(cursor, self._per_page)
        self._total_pages = total_pages
        self._cursor += 1
        return records, cursor


class AdaptivePager:
    """
    Drives paginated listings to exhaustion for one shop.

    Page 1 is fetched alone to learn the page count; remaining pages are
    requested in batches whose size follows the ConcurrencyController.
    A 429 anywhere in a batch shrinks the limit, waits and re-queues the
    rate-limited pages; other API errors abort.
    """

    def __init__(self, shop_id, controller: ConcurrencyController, max_retries=None,
                 backoff=1.0, sleep=time.sleep):
        self._shop_id = shop_id
        self._controller = controller
        self._max_retries = max_retries if max_retries is not None else settings.CATALOG_MAX_RETRIES
        self._backoff = backoff
        self._sleep = sleep

    def collect(self, fetch, per_page=None) -> list:
        page = Page(fetch, per_page)
        results = {}
        rate_limit_hits = 0
        while page.total_pages is None:
            try:
                records, cursor = page.next()
            except RateLimitedError as exc:
                rate_limit_hits = self._on_rate_limited(exc, rate_limit_hits)
                continue
            results[cursor] = records
            self._controller.on_success(self._shop_id)

        pending = list(range(2, page.total_pages + 1))
        if pending:
            self._collect_remaining(fetch, per_page, pending, results, rate_limit_hits)

        collected = []
        for number in sorted(results):
            collected.extend(results[number])
        return collected

    def _collect_remaining(self, fetch, per_page, pending, results, rate_limit_hits):
        with ThreadPoolExecutor(max_workers=MAX_CONCURRENCY) as pool:
            while pending:
                limit = self._controller.current_limit(self._shop_id)
                batch, pending = pending[:limit], pending[limit:]
                futures = [(number, pool.submit(fetch, number, per_page)) for number in batch]

                limited = []
                last_error = None
                for number, future in futures:
                    try:
                        results[number] = future.result()[0]
                    except RateLimitedError as exc:
                        limited.append(number)
                        last_error = exc

                if limited:
                    rate_limit_hits = self._on_rate_limited(last_error, rate_limit_hits)
                    pending = limited + pending
                else:
                    self._controller.on_success(self._shop_id)

    def _on_rate_limited(self, exc: RateLimitedError, hits: int) -> int:
        hits += 1
        self._controller.on_rate_limited(self._shop_id)
        if hits > self._max_retries:
            raise exc
        wait = exc.retry_after if exc.retry_after is not None else self._backoff * (2 ** (hits - 1))
        logger.warning(
            "Shop %s: 429 Too Many Requests (attempt %d/%d). Waiting %.1fs before retry.",
            self._shop_id, hits, self._max_retries, wait,
        )
        self._sleep(wait)
        return hits
