from unittest.mock import patch

import pytest

from feedsync.models import Product
from feedsync.reprocess import FULL, SELECTIVE, ReprocessProcessor, apply_field_mappings, reprocess_product
from feedsync.transformer import AttributeResolver, compute_hash
from feedsync.validation import validate_entry

from conftest import make_raw


@pytest.fixture()
def synced(shop):
    """Create `count` products the way a sync leaves them."""
    def _create(count=1, **fields):
        resolver = AttributeResolver(shop)
        products = []
        for i in range(count):
            raw = make_raw(1000 + i)
            derived = resolver.resolve(raw)
            validation = validate_entry(derived)
            values = {
                'shop': shop,
                'external_id': str(raw['id']),
                'title': raw['name'],
                'raw_payload': raw,
                'checksum': compute_hash(raw),
                'derived_attributes': derived,
                'valid': validation.valid,
                'validation_errors': validation.diagnostics(),
                'selected': True,
                'sync_state': Product.SyncState.SYNCED,
            }
            values.update(fields)
            products.append(Product.objects.create(**values))
        return products
    return _create


# ---------------------------------------------------------------------------
# Selective mode
# ---------------------------------------------------------------------------

class TestSelective:
    def test_only_changed_attribute_recomputed(self, shop, synced):
        products = synced(100)
        before = {p.pk: dict(p.derived_attributes) for p in products}
        shop.field_mappings = {'title': 'sku'}
        shop.save()

        result = ReprocessProcessor(shop).run(changed_fields=['title'])

        assert result.mode == SELECTIVE
        assert result.products == 100
        for product in Product.objects.filter(shop=shop):
            derived = product.derived_attributes
            assert derived['title'] == product.raw_payload['sku']
            expected = dict(before[product.pk], title=derived['title'])
            assert derived == expected

    def test_stale_values_of_other_attributes_survive(self, shop, synced):
        product, = synced(1)
        product.derived_attributes['price'] = '1.00 USD'
        product.save()

        ReprocessProcessor(shop).run(changed_fields=['title'])

        product.refresh_from_db()
        assert product.derived_attributes['price'] == '1.00 USD'

    def test_keeps_diagnostics_of_untouched_fields(self, shop, synced):
        product, = synced(1)
        product.valid = False
        product.validation_errors = [{'field': 'material', 'error': 'missing', 'severity': 'error'}]
        product.save()

        ReprocessProcessor(shop).run(changed_fields=['title'])

        product.refresh_from_db()
        assert product.valid is False
        assert product.validation_errors == [{'field': 'material', 'error': 'missing', 'severity': 'error'}]

    def test_fixing_the_only_error_makes_product_valid(self, shop, synced):
        product, = synced(1)
        product.derived_attributes['title'] = None
        product.valid = False
        product.validation_errors = [{'field': 'title', 'error': 'missing', 'severity': 'error'}]
        product.save()

        result = ReprocessProcessor(shop).run(changed_fields=['title'])

        product.refresh_from_db()
        assert product.valid is True
        assert product.validation_errors == []
        assert result.valid == 1

    def test_unknown_attributes_ignored(self, shop, synced):
        product, = synced(1)
        before = dict(product.derived_attributes)

        ReprocessProcessor(shop).run(changed_fields=['not_a_field'])

        product.refresh_from_db()
        assert product.derived_attributes == before


# ---------------------------------------------------------------------------
# Full mode
# ---------------------------------------------------------------------------

class TestFull:
    def test_rebuilds_every_attribute(self, shop, synced):
        product, = synced(1)
        product.derived_attributes['price'] = '1.00 USD'
        product.save()
        shop.currency = 'EUR'
        shop.save()

        result = ReprocessProcessor(shop).run()

        product.refresh_from_db()
        assert result.mode == FULL
        assert product.derived_attributes['price'] == '199.00 EUR'

    def test_products_without_payload_skipped(self, shop, synced, make_product):
        synced(2)
        make_product(external_id='no-payload', raw_payload=None)

        result = ReprocessProcessor(shop).run()

        assert result.products == 2
        assert result.skipped == 1

    def test_failure_marks_product_error_and_continues(self, shop, synced, monkeypatch):
        first, second = synced(2)
        original = AttributeResolver.resolve

        def flaky(self, raw, *args, **kwargs):
            if raw['id'] == 1000:
                raise ValueError('broken payload')
            return original(self, raw, *args, **kwargs)

        monkeypatch.setattr(AttributeResolver, 'resolve', flaky)
        result = ReprocessProcessor(shop).run()

        first.refresh_from_db()
        assert first.sync_state == Product.SyncState.ERROR
        assert first.valid is False
        assert (result.valid, result.invalid) == (1, 1)

    def test_reprocess_product_recovers_error_state(self, shop, synced):
        product, = synced(1, sync_state=Product.SyncState.ERROR, valid=False)
        assert reprocess_product(product) is True
        product.refresh_from_db()
        assert product.sync_state == Product.SyncState.SYNCED


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

class TestClearOverrides:
    def test_clears_only_named_overrides(self, shop, synced):
        product, = synced(1, overrides={'title': 'Mine', 'brand': 'Acme'})
        shop.field_mappings = {'title': 'sku'}
        shop.save()

        result = ReprocessProcessor(shop).run(changed_fields=['title'], overrides_to_clear=['title'])

        product.refresh_from_db()
        assert result.overrides_cleared == 1
        assert product.overrides == {'brand': 'Acme'}
        assert product.derived_attributes['title'] == product.raw_payload['sku']

    def test_override_kept_without_clearing(self, shop, synced):
        product, = synced(1, overrides={'title': 'Mine'})
        shop.field_mappings = {'title': 'sku'}
        shop.save()

        ReprocessProcessor(shop).run(changed_fields=['title'])

        product.refresh_from_db()
        assert product.derived_attributes['title'] == 'Mine'


# ---------------------------------------------------------------------------
# apply_field_mappings
# ---------------------------------------------------------------------------

class TestApplyFieldMappings:
    def test_saves_and_enqueues_changed_attributes(self, shop):
        shop.field_mappings = {'title': 'name', 'color': 'attributes.colour'}
        shop.save()

        with patch('feedsync.scheduler.current_app') as app:
            changed = apply_field_mappings(shop, {'title': 'name', 'brand': 'sku'})

        assert changed == ['brand', 'color']
        shop.refresh_from_db()
        assert shop.field_mappings == {'title': 'name', 'brand': 'sku'}
        assert shop.field_mappings_updated_at is not None
        app.send_task.assert_called_once()
        args, kwargs = app.send_task.call_args
        assert args == ('feedsync.reprocess',)
        assert kwargs['kwargs'] == {'shop_id': shop.pk, 'changed_fields': ['brand', 'color']}

    def test_clear_overrides_flag(self, shop):
        with patch('feedsync.scheduler.current_app') as app:
            apply_field_mappings(shop, {'brand': 'sku'}, clear_overrides=True)
        kwargs = app.send_task.call_args.kwargs['kwargs']
        assert kwargs['overrides_to_clear'] == ['brand']

    def test_no_change_enqueues_nothing(self, shop):
        shop.field_mappings = {'brand': 'sku'}
        shop.save()
        with patch('feedsync.scheduler.current_app') as app:
            assert apply_field_mappings(shop, {'brand': 'sku'}) == []
        app.send_task.assert_not_called()
