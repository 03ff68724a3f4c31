import logging

import requests
from django.conf import settings

from .exceptions import StorageError

logger = logging.getLogger(__name__)


def feed_key(shop_id, generated_at) -> str:
    """Blob key of a feed artifact: {shop_id}/feed-{unix_millis}.jsonl.gz"""
    return f"{shop_id}/feed-{int(generated_at.timestamp() * 1000)}.jsonl.gz"


class BlobStorage:
    """HTTP object store: PUT uploads, DELETE removes, keys are URL paths under the bucket."""

    def __init__(self, base_url=None, api_key=None, timeout=None):
        base_url = settings.BLOB_STORAGE_BASE_URL if base_url is None else base_url
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout or settings.BLOB_STORAGE_TIMEOUT
        self._session = requests.Session()
        api_key = settings.BLOB_STORAGE_API_KEY if api_key is None else api_key
        if api_key:
            self._session.headers.update({'X-Api-Key': api_key})

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{key}"

    def upload(self, key: str, data: bytes, content_type='application/gzip') -> str:
        if not self.configured:
            raise StorageError("Blob storage is not configured.")

        url = self.url_for(key)
        logger.info("Blob upload started: key=%s, size=%d.", key, len(data))
        try:
            response = self._session.put(
                url, data=data, headers={'Content-Type': content_type}, timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc

        logger.info("Blob upload completed: %s.", url)
        return url

    def delete(self, key: str) -> bool:
        """Best-effort delete. Never raises; returns False on any failure."""
        if not self.configured:
            logger.warning("Blob storage not configured, skipping delete of %s.", key)
            return False
        try:
            response = self._session.delete(self.url_for(key), timeout=self._timeout)
        except requests.RequestException as exc:
            logger.error("Blob delete failed for %s: %s", key, exc)
            return False
        if response.status_code == 404:
            logger.info("Blob %s already absent.", key)
            return True
        if not response.ok:
            logger.error("Blob delete failed for %s: HTTP %d", key, response.status_code)
            return False
        logger.info("Blob delete completed: %s.", key)
        return True
