import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import FeedSnapshot
from .storage import BlobStorage

logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    deleted: int = 0
    blobs_deleted: int = 0
    blob_errors: int = 0


class RetentionManager:
    """
    Retires feed snapshots older than the retention window.

    Two phases: snapshot rows are deleted in one transaction, and only after
    it commits are their blobs deleted, one by one, best effort. A blob that
    cannot be deleted is logged and left behind; the rows stay deleted.
    The blob counts of the returned result are filled in at commit.
    """

    def __init__(self, storage: Optional[BlobStorage] = None, window: Optional[timedelta] = None, now=None):
        self.storage = storage or BlobStorage()
        self.window = window or timedelta(days=settings.FEED_RETENTION_DAYS)
        self._now = now or timezone.now

    def sweep(self, shop) -> RetentionResult:
        cutoff = self._now() - self.window
        result = RetentionResult()
        with transaction.atomic():
            expired = FeedSnapshot.objects.filter(shop=shop, generated_at__lt=cutoff)
            keys = list(expired.values_list('storage_key', flat=True))
            result.deleted, _ = expired.delete()
            if keys:
                transaction.on_commit(lambda: self._delete_blobs(shop, keys, result))

        if result.deleted:
            logger.info("Shop %s: deleted %d snapshots older than %s.", shop.pk, result.deleted, cutoff.isoformat())
        return result

    def delete_shop_blobs(self, shop) -> RetentionResult:
        """Remove every snapshot blob of a shop, e.g. before the shop is deleted."""
        keys = list(FeedSnapshot.objects.filter(shop=shop).values_list('storage_key', flat=True))
        result = RetentionResult()
        self._delete_blobs(shop, keys, result)
        return result

    def _delete_blobs(self, shop, keys, result):
        for key in keys:
            if not key:
                continue
            if self.storage.delete(key):
                result.blobs_deleted += 1
            else:
                result.blob_errors += 1
        if result.blob_errors:
            logger.warning(
                "Shop %s: %d snapshot blobs could not be deleted and are orphaned.",
                shop.pk, result.blob_errors,
            )
