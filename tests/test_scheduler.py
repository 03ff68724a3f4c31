import datetime
from unittest.mock import patch

import pytest
from django.utils import timezone

from feedsync import scheduler
from feedsync.models import Shop


@pytest.fixture()
def app():
    with patch('feedsync.scheduler.current_app') as mocked:
        yield mocked


def sent(app):
    """(task name, kwargs, countdown, priority) of every submitted job."""
    return [
        (c.args[0], c.kwargs['kwargs'], c.kwargs['countdown'], c.kwargs['priority'])
        for c in app.send_task.call_args_list
    ]


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class TestJobPayload:
    def test_payload_shape(self):
        assert scheduler.job_payload(7, scheduler.JOB_SYNC, mode='incremental', item_id=None) == {
            'shop_id': 7, 'job_type': 'sync', 'mode': 'incremental',
        }

    def test_unknown_job_type(self):
        with pytest.raises(ValueError):
            scheduler.job_payload(7, 'export')

    def test_job_type_not_sent_to_task(self, app):
        scheduler.enqueue(scheduler.job_payload(7, scheduler.JOB_FEED_GENERATION), countdown=3)
        assert sent(app) == [('feedsync.feed_generation', {'shop_id': 7}, 3, scheduler.PRIORITY_MANUAL)]


# ---------------------------------------------------------------------------
# Enqueue helpers
# ---------------------------------------------------------------------------

class TestEnqueue:
    def test_single_item_sync(self, app):
        scheduler.enqueue_sync(7, mode='single_item', item_id='101', priority=scheduler.PRIORITY_WEBHOOK)
        assert sent(app) == [
            ('feedsync.sync', {'shop_id': 7, 'mode': 'single_item', 'item_id': '101'}, 0, 3),
        ]

    def test_shop_refresh_delays_feed(self, app):
        scheduler.enqueue_shop_refresh(7, countdown=10)
        assert sent(app) == [
            ('feedsync.sync', {'shop_id': 7, 'mode': 'full'}, 10, 1),
            ('feedsync.feed_generation', {'shop_id': 7}, 130, 1),
        ]

    def test_reprocess_payload(self, app):
        scheduler.enqueue_reprocess(7, changed_fields=('title',), overrides_to_clear=None)
        assert sent(app) == [('feedsync.reprocess', {'shop_id': 7, 'changed_fields': ['title']}, 0, 1)]


# ---------------------------------------------------------------------------
# Periodic fan-out
# ---------------------------------------------------------------------------

@pytest.mark.django_db
def test_fan_out_staggers_connected_shops(app):
    shops = [Shop.objects.create(name=f'S{i}', consumer_key='ck', consumer_secret='cs') for i in range(3)]
    Shop.objects.create(name='No credentials')
    Shop.objects.create(name='Disabled', consumer_key='ck', consumer_secret='cs', sync_enabled=False)

    count = scheduler.fan_out_periodic_sync()

    assert count == 3
    jobs = sent(app)
    syncs = [(kwargs['shop_id'], countdown, priority) for name, kwargs, countdown, priority in jobs
             if name == 'feedsync.sync']
    feeds = [(kwargs['shop_id'], countdown) for name, kwargs, countdown, _ in jobs
             if name == 'feedsync.feed_generation']
    assert syncs == [(shops[0].pk, 0, 5), (shops[1].pk, 5, 5), (shops[2].pk, 10, 5)]
    assert feeds == [(shops[0].pk, 120), (shops[1].pk, 125), (shops[2].pk, 130)]


@pytest.mark.django_db
def test_fan_out_without_shops(app):
    assert scheduler.fan_out_periodic_sync() == 0
    app.send_task.assert_not_called()


# ---------------------------------------------------------------------------
# Stuck sync recovery
# ---------------------------------------------------------------------------

@pytest.mark.django_db
def test_recover_stuck_syncs(settings):
    settings.STUCK_SYNC_TIMEOUT = 300
    now = timezone.now()
    stuck = Shop.objects.create(name='Stuck', sync_status=Shop.SyncStatus.SYNCING)
    running = Shop.objects.create(name='Running', sync_status=Shop.SyncStatus.SYNCING)
    idle = Shop.objects.create(name='Idle', sync_status=Shop.SyncStatus.COMPLETED)
    Shop.objects.filter(pk__in=[stuck.pk, idle.pk]).update(updated_at=now - datetime.timedelta(minutes=10))
    Shop.objects.filter(pk=running.pk).update(updated_at=now - datetime.timedelta(minutes=2))

    assert scheduler.recover_stuck_syncs(now=now) == 1

    stuck.refresh_from_db()
    running.refresh_from_db()
    idle.refresh_from_db()
    assert stuck.sync_status == Shop.SyncStatus.FAILED
    assert running.sync_status == Shop.SyncStatus.SYNCING
    assert idle.sync_status == Shop.SyncStatus.COMPLETED
