import gzip
import json
import logging
from typing import Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from .eligibility import container_ids, eligible_products
from .exceptions import ArtifactPipelineError, StorageError
from .feed_schema import ALL_ATTRIBUTES
from .models import FeedSnapshot, Shop
from .storage import BlobStorage, feed_key

logger = logging.getLogger(__name__)


def build_record(shop, product) -> dict:
    """
    Complete feed record for one product.

    Every schema attribute is present (None when unresolved). The search and
    checkout toggles come from the product itself and are written as the
    strings "true"/"false".
    """
    derived = product.derived_attributes or {}
    record = {}
    for attribute in ALL_ATTRIBUTES:
        if attribute == 'id':
            record[attribute] = derived.get('id') or f"{shop.pk}-{product.external_id}"
        elif attribute == 'enable_search':
            record[attribute] = 'true' if product.feed_enable_search else 'false'
        elif attribute == 'enable_checkout':
            record[attribute] = 'true' if product.feed_enable_checkout else 'false'
        else:
            record[attribute] = derived.get(attribute)

    unknown = set(derived) - set(ALL_ATTRIBUTES)
    if unknown:
        logger.debug("Shop %s product %s: dropping non-schema attributes %s.",
                     shop.pk, product.external_id, sorted(unknown))
    return record


def seller_metadata(shop) -> dict:
    return {
        'id': str(shop.pk),
        'name': shop.seller_name or shop.name,
        'url': shop.seller_url or shop.store_url,
        'privacy_policy': shop.seller_privacy_policy or None,
        'terms_of_service': shop.seller_tos or None,
    }


def serialize_records(records) -> bytes:
    """Newline-delimited JSON, one record per line."""
    lines = [json.dumps(record, ensure_ascii=False, sort_keys=False) for record in records]
    return ('\n'.join(lines) + '\n' if lines else '').encode('utf-8')


def feed_preview(shop, limit=20) -> list:
    containers = container_ids(shop)
    return [build_record(shop, p) for p in eligible_products(shop, containers)[:limit]]


def latest_snapshot(shop) -> Optional[FeedSnapshot]:
    """Newest snapshot regardless of age; callers read `generated_at` for staleness."""
    return FeedSnapshot.objects.filter(shop=shop).order_by('-generated_at').first()


class FeedGenerator:
    def __init__(self, shop, storage: Optional[BlobStorage] = None):
        self.shop = shop
        self.storage = storage or BlobStorage()

    def generate(self, final_attempt=False) -> Optional[FeedSnapshot]:
        """
        Build, compress and upload a feed, then record it as a new snapshot.

        Returns None when the shop must re-select products first. A failure to
        upload or to record the snapshot raises ArtifactPipelineError and leaves
        neither a snapshot row nor its blob behind; only the final attempt marks
        the feed FAILED.
        """
        shop = self.shop
        if shop.needs_reselection:
            logger.info("Shop %s needs product re-selection – skipping feed generation.", shop.pk)
            return None

        containers = container_ids(shop)
        records = [build_record(shop, p) for p in eligible_products(shop, containers)]
        generated_at = timezone.now()
        key = feed_key(shop.pk, generated_at)

        try:
            body = serialize_records(records)
            data = gzip.compress(body)
            url = self.storage.upload(key, data)
        except (StorageError, TypeError, ValueError, OSError) as exc:
            self._fail(exc, final_attempt)

        try:
            with transaction.atomic():
                snapshot = FeedSnapshot.objects.create(
                    shop=shop,
                    generated_at=generated_at,
                    item_count=len(records),
                    payload={
                        'seller': seller_metadata(shop),
                        'generated_at': generated_at.isoformat(),
                        'items': records,
                    },
                    storage_key=key,
                    storage_url=url,
                    size_bytes=len(data),
                )
        except DatabaseError as exc:
            # No row will point at the uploaded blob.
            self.storage.delete(key)
            self._fail(exc, final_attempt)

        shop.feed_status = Shop.FeedStatus.COMPLETED
        shop.last_feed_at = generated_at
        shop.save(update_fields=['feed_status', 'last_feed_at', 'updated_at'])

        logger.info(
            "Generated feed for shop %s: %d items, %d bytes, key=%s.",
            shop.pk, len(records), len(data), key,
        )
        return snapshot

    def _fail(self, exc, final_attempt):
        shop = self.shop
        logger.error("Feed generation failed for shop %s: %s", shop.pk, exc)
        if final_attempt:
            shop.feed_status = Shop.FeedStatus.FAILED
            shop.save(update_fields=['feed_status', 'updated_at'])
        raise ArtifactPipelineError(f"Feed artifact for shop {shop.pk} not stored: {exc}") from exc
