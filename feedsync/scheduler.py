"""
Job submission. Every job is a payload `{shop_id, job_type, ...}` sent to
the Celery task registered for its type; tasks are addressed by name so
this module never imports them.
"""
import logging
from datetime import timedelta

from celery import current_app
from django.conf import settings
from django.utils import timezone

from .models import Shop

logger = logging.getLogger(__name__)

JOB_SYNC = 'sync'
JOB_FEED_GENERATION = 'feed-generation'
JOB_REPROCESS = 'reprocess'

JOB_TASKS = {
    JOB_SYNC: 'feedsync.sync',
    JOB_FEED_GENERATION: 'feedsync.feed_generation',
    JOB_REPROCESS: 'feedsync.reprocess',
}

# Lower value runs first on the Redis broker.
PRIORITY_MANUAL = 1
PRIORITY_WEBHOOK = 3
PRIORITY_CRON = 5


def job_payload(shop_id, job_type, **fields) -> dict:
    if job_type not in JOB_TASKS:
        raise ValueError(f"Unknown job type {job_type!r}.")
    payload = {'shop_id': shop_id, 'job_type': job_type}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return payload


def enqueue(payload: dict, countdown=0, priority=PRIORITY_MANUAL):
    kwargs = {k: v for k, v in payload.items() if k != 'job_type'}
    task_name = JOB_TASKS[payload['job_type']]
    logger.info("Enqueue %s for shop %s (delay=%ss, priority=%d).",
                payload['job_type'], payload['shop_id'], countdown, priority)
    return current_app.send_task(task_name, kwargs=kwargs, countdown=countdown, priority=priority)


def enqueue_sync(shop_id, mode='full', item_id=None, countdown=0, priority=PRIORITY_MANUAL):
    return enqueue(job_payload(shop_id, JOB_SYNC, mode=mode, item_id=item_id), countdown, priority)


def enqueue_feed_generation(shop_id, countdown=0, priority=PRIORITY_MANUAL):
    return enqueue(job_payload(shop_id, JOB_FEED_GENERATION), countdown, priority)


def enqueue_reprocess(shop_id, changed_fields=None, overrides_to_clear=None, priority=PRIORITY_MANUAL):
    return enqueue(
        job_payload(
            shop_id,
            JOB_REPROCESS,
            changed_fields=list(changed_fields) if changed_fields else None,
            overrides_to_clear=list(overrides_to_clear) if overrides_to_clear else None,
        ),
        priority=priority,
    )


def enqueue_shop_refresh(shop_id, mode='full', countdown=0, priority=PRIORITY_MANUAL):
    """
    Sync, then generate the feed. The feed job is only delayed, not chained:
    it reads whatever state the sync has left by then.
    """
    enqueue_sync(shop_id, mode=mode, countdown=countdown, priority=priority)
    enqueue_feed_generation(shop_id, countdown=countdown + settings.FEED_AFTER_SYNC_DELAY, priority=priority)


def shops_due_for_sync():
    return (
        Shop.objects.filter(sync_enabled=True)
        .exclude(consumer_key='')
        .exclude(consumer_secret='')
        .order_by('pk')
    )


def fan_out_periodic_sync() -> int:
    """Refresh every connected shop, spacing submissions SYNC_STAGGER_SECONDS apart."""
    count = 0
    for index, shop in enumerate(shops_due_for_sync()):
        enqueue_shop_refresh(
            shop.pk,
            mode='full',
            countdown=index * settings.SYNC_STAGGER_SECONDS,
            priority=PRIORITY_CRON,
        )
        count += 1
    logger.info("Periodic sync scheduled for %d shops.", count)
    return count


def recover_stuck_syncs(now=None) -> int:
    """Shops left SYNCING past STUCK_SYNC_TIMEOUT (worker died mid-job) are marked FAILED."""
    now = now or timezone.now()
    cutoff = now - timedelta(seconds=settings.STUCK_SYNC_TIMEOUT)
    stuck = Shop.objects.filter(sync_status=Shop.SyncStatus.SYNCING, updated_at__lt=cutoff)
    shop_ids = list(stuck.values_list('pk', flat=True))
    if not shop_ids:
        return 0
    Shop.objects.filter(pk__in=shop_ids).update(sync_status=Shop.SyncStatus.FAILED, updated_at=now)
    logger.warning("Reset %d stuck syncs to FAILED: %s.", len(shop_ids), shop_ids)
    return len(shop_ids)
