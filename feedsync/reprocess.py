import logging
from dataclasses import dataclass

from django.utils import timezone

from . import scheduler
from .feed_schema import FIELDS_BY_ATTRIBUTE
from .models import Product
from .transformer import AttributeResolver
from .validation import validate_entry

logger = logging.getLogger(__name__)

FULL = 'full'
SELECTIVE = 'selective'

_UPDATE_FIELDS = ['derived_attributes', 'valid', 'validation_errors', 'overrides', 'sync_state', 'updated_at']


@dataclass
class ReprocessResult:
    mode: str
    products: int = 0
    overrides_cleared: int = 0
    valid: int = 0
    invalid: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return {
            'mode': self.mode,
            'products': self.products,
            'overrides_cleared': self.overrides_cleared,
            'valid': self.valid,
            'invalid': self.invalid,
            'skipped': self.skipped,
        }


def _clear_overrides(product, attributes) -> int:
    cleared = 0
    for attribute in attributes or ():
        if attribute in (product.overrides or {}):
            del product.overrides[attribute]
            cleared += 1
    return cleared


def reprocess_product(product, resolver=None) -> bool:
    """Re-resolve and revalidate one product from its stored payload. Returns validity."""
    resolver = resolver or AttributeResolver(product.shop)
    derived = resolver.resolve(
        product.raw_payload,
        product.feed_enable_search,
        product.feed_enable_checkout,
        product.overrides,
    )
    validation = validate_entry(derived, enable_checkout=product.feed_enable_checkout)
    product.derived_attributes = derived
    product.valid = validation.valid
    product.validation_errors = validation.diagnostics()
    if product.sync_state == Product.SyncState.ERROR:
        product.sync_state = Product.SyncState.SYNCED
    product.save(update_fields=_UPDATE_FIELDS)
    return product.valid


class ReprocessProcessor:
    """
    Recompute feed attributes from stored raw payloads after a mapping or
    shop settings change. Never calls the catalog API.

    With `changed_fields` only those attributes are recomputed and
    revalidated; every other derived value is left exactly as stored.
    Without it every attribute of every product is rebuilt.
    """

    def __init__(self, shop):
        self.shop = shop

    def run(self, changed_fields=None, overrides_to_clear=None) -> ReprocessResult:
        shop = self.shop
        mode = SELECTIVE if changed_fields else FULL
        fields = [f for f in (changed_fields or []) if f in FIELDS_BY_ATTRIBUTE]
        unknown = set(changed_fields or []) - set(fields)
        if unknown:
            logger.warning("Shop %s: ignoring unknown attributes %s.", shop.pk, sorted(unknown))

        resolver = AttributeResolver(shop)
        result = ReprocessResult(mode=mode)
        logger.info("Reprocessing shop %s (%s, fields=%s, clearing=%s).",
                    shop.pk, mode, fields or 'all', overrides_to_clear or [])

        for product in Product.objects.filter(shop=shop).order_by('pk').iterator():
            if product.raw_payload is None:
                logger.warning("Cannot reprocess product %s without a stored payload.", product.external_id)
                result.skipped += 1
                continue

            result.overrides_cleared += _clear_overrides(product, overrides_to_clear)
            try:
                if mode == SELECTIVE:
                    valid = self._reprocess_fields(product, fields, resolver)
                else:
                    valid = reprocess_product(product, resolver)
            except Exception as exc:
                logger.error("Failed to reprocess product %s for shop %s: %s", product.external_id, shop.pk, exc)
                product.valid = False
                product.validation_errors = [{'field': None, 'error': str(exc), 'severity': 'error'}]
                product.sync_state = Product.SyncState.ERROR
                product.save(update_fields=_UPDATE_FIELDS)
                valid = False

            result.products += 1
            if valid:
                result.valid += 1
            else:
                result.invalid += 1

        logger.info(
            "Reprocess complete for shop %s. products=%d, valid=%d, invalid=%d, overrides_cleared=%d.",
            shop.pk, result.products, result.valid, result.invalid, result.overrides_cleared,
        )
        return result

    @staticmethod
    def _reprocess_fields(product, fields, resolver) -> bool:
        partial = resolver.resolve(
            product.raw_payload,
            product.feed_enable_search,
            product.feed_enable_checkout,
            product.overrides,
            only=fields,
        )
        derived = dict(product.derived_attributes or {})
        derived.update(partial)
        validation = validate_entry(derived, enable_checkout=product.feed_enable_checkout, only=fields)

        kept = [d for d in product.validation_errors or [] if d.get('field') not in fields]
        diagnostics = kept + validation.diagnostics()

        product.derived_attributes = derived
        product.validation_errors = diagnostics
        product.valid = not any(d.get('severity') == 'error' for d in diagnostics)
        product.save(update_fields=_UPDATE_FIELDS)
        return product.valid


def apply_field_mappings(shop, mappings: dict, clear_overrides=False) -> list:
    """
    Store new custom mappings and queue a reprocess of the attributes whose
    mapping changed. With `clear_overrides`, per-product overrides of those
    attributes are dropped so the new mapping applies everywhere.
    """
    old = shop.field_mappings or {}
    changed = sorted(a for a in set(old) | set(mappings) if old.get(a) != mappings.get(a))
    if not changed:
        return []

    shop.field_mappings = mappings
    shop.field_mappings_updated_at = timezone.now()
    shop.save(update_fields=['field_mappings', 'field_mappings_updated_at', 'updated_at'])
    scheduler.enqueue_reprocess(
        shop.pk,
        changed_fields=changed,
        overrides_to_clear=changed if clear_overrides else None,
    )
    return changed
