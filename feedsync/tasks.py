import logging

from celery import shared_task

from . import scheduler
from .feed import FeedGenerator
from .models import Shop
from .reprocess import ReprocessProcessor
from .retention import RetentionManager
from .sync import SyncProcessor

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY = 30  # seconds, doubled per attempt


def _backoff(task) -> int:
    return RETRY_BASE_DELAY * (2 ** task.request.retries)


def _is_final_attempt(task) -> bool:
    return task.request.retries >= task.max_retries


def _get_shop(shop_id):
    shop = Shop.objects.filter(pk=shop_id).first()
    if shop is None:
        logger.warning("Shop %s not found – dropping job.", shop_id)
    return shop


@shared_task(bind=True, name='feedsync.sync', max_retries=3, acks_late=True)
def sync_shop_task(self, shop_id, mode='full', item_id=None):
    """Pull the shop's catalog and upsert changed products."""
    shop = _get_shop(shop_id)
    if shop is None:
        return None

    try:
        result = SyncProcessor(shop).sync(mode, item_id=item_id, final_attempt=_is_final_attempt(self))
    except Exception as exc:
        logger.warning("Sync attempt %d for shop %s failed: %s", self.request.retries + 1, shop_id, exc)
        raise self.retry(exc=exc, countdown=_backoff(self))
    return result.as_dict()


@shared_task(bind=True, name='feedsync.feed_generation', max_retries=3, acks_late=True)
def feed_generation_task(self, shop_id):
    """Generate and upload a feed snapshot, then retire expired snapshots."""
    shop = _get_shop(shop_id)
    if shop is None:
        return None

    try:
        snapshot = FeedGenerator(shop).generate(final_attempt=_is_final_attempt(self))
    except Exception as exc:
        logger.warning("Feed attempt %d for shop %s failed: %s", self.request.retries + 1, shop_id, exc)
        raise self.retry(exc=exc, countdown=_backoff(self))
    if snapshot is None:
        return None

    retention = RetentionManager().sweep(shop)
    return {
        'snapshot_id': snapshot.pk,
        'item_count': snapshot.item_count,
        'storage_url': snapshot.storage_url,
        'snapshots_deleted': retention.deleted,
        'blob_errors': retention.blob_errors,
    }


@shared_task(bind=True, name='feedsync.reprocess', max_retries=2, acks_late=True)
def reprocess_task(self, shop_id, changed_fields=None, overrides_to_clear=None):
    """Re-derive feed attributes from stored payloads after a mapping or settings change."""
    shop = _get_shop(shop_id)
    if shop is None:
        return None

    try:
        result = ReprocessProcessor(shop).run(changed_fields=changed_fields, overrides_to_clear=overrides_to_clear)
    except Exception as exc:
        raise self.retry(exc=exc, countdown=_backoff(self))
    return result.as_dict()


@shared_task(name='feedsync.periodic_sync')
def periodic_sync_task():
    return scheduler.fan_out_periodic_sync()


@shared_task(name='feedsync.recover_stuck_syncs')
def recover_stuck_syncs_task():
    return scheduler.recover_stuck_syncs()
