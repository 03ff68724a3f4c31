import logging
from dataclasses import dataclass
from enum import Enum

from django.utils import timezone

from .catalog_client import AdaptivePager, CatalogClient
from .concurrency import ConcurrencyController
from .exceptions import FeedSyncError, MissingCredentialsError
from .models import Product, Shop
from .transformer import AttributeResolver, compute_hash, enrich_categories, merge_parent_and_variation
from .validation import validate_entry

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    FULL = 'full'
    INCREMENTAL = 'incremental'
    SINGLE_ITEM = 'single_item'


@dataclass
class SyncResult:
    mode: SyncMode
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return {
            'mode': self.mode.value,
            'fetched': self.fetched,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': self.errors,
        }


class SyncProcessor:
    """
    Synchronise one shop's catalog into Product rows.

    Steps:
      1. Fetch products (all, or modified since the last sync) page by page.
      2. For each record compute a SHA-256 checksum of the raw payload.
      3. Compare with the stored checksum; unchanged records are skipped
         unless the shop's mappings or settings changed since the product
         was last written.
      4. Resolve feed attributes, validate, and upsert, keeping the
         merchant's selection, overrides and feed toggles.
    """

    def __init__(self, shop, client=None, controller=None, pager=None):
        self.shop = shop
        self.client = client
        self.controller = controller or ConcurrencyController()
        self.pager = pager or AdaptivePager(shop.pk, self.controller)

    def sync(self, mode=SyncMode.FULL, item_id=None, final_attempt=True) -> SyncResult:
        shop = self.shop
        mode = SyncMode(mode)

        if not shop.has_credentials():
            logger.info("Shop %s has no catalog credentials – nothing to sync.", shop.pk)
            shop.set_sync_status(Shop.SyncStatus.COMPLETED, synced_at=timezone.now())
            return SyncResult(mode=mode)

        if mode == SyncMode.SINGLE_ITEM:
            return self._mark_item_synced(item_id)

        if mode == SyncMode.INCREMENTAL and shop.last_sync_at is None:
            logger.info("Shop %s has never synced – running a full sync instead.", shop.pk)
            mode = SyncMode.FULL

        logger.info("Starting %s sync for shop %s.", mode.value, shop.pk)
        started_at = timezone.now()
        shop.set_sync_status(Shop.SyncStatus.SYNCING)
        try:
            result = self._run(mode)
        except MissingCredentialsError as exc:
            logger.warning("Shop %s credentials rejected, nothing synced: %s", shop.pk, exc)
            shop.set_sync_status(Shop.SyncStatus.COMPLETED)
            return SyncResult(mode=mode)
        except Exception:
            # Rows already upserted stay; a retry skips them by checksum.
            status = Shop.SyncStatus.FAILED if final_attempt else Shop.SyncStatus.PENDING
            logger.exception("Sync failed for shop %s (status -> %s).", shop.pk, status)
            shop.set_sync_status(status)
            raise
        finally:
            self.controller.reset(shop.pk)

        shop.set_sync_status(Shop.SyncStatus.COMPLETED, synced_at=started_at)
        logger.info(
            "Sync complete for shop %s. fetched=%d, created=%d, updated=%d, skipped=%d, errors=%d.",
            shop.pk, result.fetched, result.created, result.updated, result.skipped, result.errors,
        )
        return result

    def _mark_item_synced(self, item_id) -> SyncResult:
        result = SyncResult(mode=SyncMode.SINGLE_ITEM)
        updated = Product.objects.filter(shop=self.shop, external_id=str(item_id)).update(
            sync_state=Product.SyncState.SYNCED, updated_at=timezone.now(),
        )
        if updated:
            result.updated = updated
            logger.info("Shop %s product %s marked synced.", self.shop.pk, item_id)
        else:
            logger.warning("Shop %s has no product %s to mark synced.", self.shop.pk, item_id)
        return result

    def _run(self, mode) -> SyncResult:
        shop = self.shop
        client = self.client or CatalogClient.for_shop(shop)
        result = SyncResult(mode=mode)

        self._refresh_store_settings(client)
        categories = self._fetch_categories(client)

        filters = {}
        if mode == SyncMode.INCREMENTAL:
            filters['modified_after'] = shop.last_sync_at.isoformat()
        records = self.pager.collect(
            lambda page, per_page: client.list_products(page, per_page, filters),
        )
        logger.info("Fetched %d products for shop %s.", len(records), shop.pk)

        resolver = AttributeResolver(shop)
        for raw in records:
            raw = enrich_categories(raw, categories)
            result.fetched += 1
            if raw.get('type') != 'variable':
                self._process(raw, resolver, result)
                continue

            parent_id = raw.get('id')
            self._process(raw, resolver, result, product_type=Product.ProductType.VARIABLE)
            variations = self.pager.collect(
                lambda page, per_page: client.list_variations(parent_id, page, per_page),
            )
            logger.info("Processing %d variations of product %s.", len(variations), parent_id)
            for variation in variations:
                result.fetched += 1
                self._process(
                    merge_parent_and_variation(raw, variation),
                    resolver,
                    result,
                    product_type=Product.ProductType.VARIATION,
                    parent_external_id=str(parent_id),
                )
        return result

    def _refresh_store_settings(self, client):
        shop = self.shop
        try:
            store = client.get_store_settings()
        except FeedSyncError as exc:
            logger.warning("Could not refresh store settings for shop %s, keeping existing: %s", shop.pk, exc)
            return

        changed = []
        for field, value in (
            ('currency', store.get('currency')),
            ('dimension_unit', store.get('dimension_unit')),
            ('weight_unit', store.get('weight_unit')),
        ):
            if value and getattr(shop, field) != value:
                setattr(shop, field, value)
                changed.append(field)
        if changed:
            shop.settings_updated_at = timezone.now()
            shop.save(update_fields=changed + ['settings_updated_at', 'updated_at'])
            logger.info("Shop %s store settings changed (%s); products will be reprocessed.",
                        shop.pk, ', '.join(changed))

    def _fetch_categories(self, client) -> dict:
        categories = self.pager.collect(client.list_categories)
        return {
            c['id']: {'id': c['id'], 'name': c.get('name'), 'parent': c.get('parent')}
            for c in categories if isinstance(c, dict) and 'id' in c
        }

    def _needs_reprocessing(self, product) -> bool:
        shop = self.shop
        for changed_at in (shop.field_mappings_updated_at, shop.settings_updated_at):
            if changed_at and product.updated_at and changed_at > product.updated_at:
                return True
        return False

    def _process(self, raw, resolver, result, product_type=Product.ProductType.SIMPLE, parent_external_id=None):
        shop = self.shop
        external_id = str(raw.get('id'))
        checksum = compute_hash(raw)
        existing = Product.objects.filter(shop=shop, external_id=external_id).first()

        if existing is not None and existing.checksum == checksum and not self._needs_reprocessing(existing):
            logger.debug("Product %s unchanged – skipping.", external_id)
            result.skipped += 1
            return

        enable_search = existing.feed_enable_search if existing else shop.default_enable_search
        enable_checkout = existing.feed_enable_checkout if existing else shop.default_enable_checkout
        overrides = existing.overrides if existing else {}

        try:
            derived = resolver.resolve(raw, enable_search, enable_checkout, overrides)
            validation = validate_entry(derived, enable_checkout=enable_checkout)
            valid, diagnostics, state = validation.valid, validation.diagnostics(), Product.SyncState.SYNCED
        except Exception as exc:
            result.errors += 1
            logger.error("Failed to resolve product %s for shop %s: %s", external_id, shop.pk, exc)
            derived = existing.derived_attributes if existing else {}
            valid = False
            diagnostics = [{'field': None, 'error': str(exc), 'severity': 'error'}]
            state = Product.SyncState.ERROR
            # Blank checksum so the next sync resolves the item again.
            checksum = ''

        defaults = {
            'parent_external_id': parent_external_id,
            'product_type': product_type,
            'title': str(raw.get('name') or '')[:500],
            'raw_payload': raw,
            'checksum': checksum,
            'derived_attributes': derived,
            'valid': valid,
            'validation_errors': diagnostics,
            'sync_state': state,
        }
        _, created = Product.objects.update_or_create(
            shop=shop,
            external_id=external_id,
            defaults=defaults,
            create_defaults={
                **defaults,
                'feed_enable_search': enable_search,
                'feed_enable_checkout': enable_checkout,
            },
        )
        if created:
            result.created += 1
        else:
            result.updated += 1
        logger.info("Product %s %s (valid=%s).", external_id, 'created' if created else 'updated', valid)


def discover_products(shop, client=None, controller=None) -> dict:
    """
    Lightweight listing for the selection UI: store top-level products as
    `discovered` rows without resolving them. Existing rows are left alone.
    """
    client = client or CatalogClient.for_shop(shop)
    controller = controller or ConcurrencyController()
    pager = AdaptivePager(shop.pk, controller)
    try:
        records = pager.collect(client.list_products)
    finally:
        controller.reset(shop.pk)

    known = set(Product.objects.filter(shop=shop).values_list('external_id', flat=True))
    discovered = 0
    for raw in records:
        if raw.get('parent_id'):
            continue
        external_id = str(raw.get('id'))
        if external_id in known:
            continue
        Product.objects.create(
            shop=shop,
            external_id=external_id,
            title=str(raw.get('name') or '')[:500],
            product_type=(
                Product.ProductType.VARIABLE if raw.get('type') == 'variable' else Product.ProductType.SIMPLE
            ),
            sync_state=Product.SyncState.DISCOVERED,
            feed_enable_search=shop.default_enable_search,
            feed_enable_checkout=shop.default_enable_checkout,
        )
        known.add(external_id)
        discovered += 1

    logger.info("Discovered %d new products for shop %s (%d listed).", discovered, shop.pk, len(records))
    return {'discovered': discovered, 'total': len(records)}
