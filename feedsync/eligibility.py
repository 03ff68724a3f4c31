"""
Feed eligibility: the one place that decides whether a product may appear in a feed.

A product is eligible when it is valid, enabled for search, selected by the
merchant, synced, and not a container (a product other products name as
their parent). Catalog listing, feed preview and feed generation all call
`is_eligible`; none of them re-implements the rule.
"""
import logging
from dataclasses import dataclass

from .models import Product

logger = logging.getLogger(__name__)


def container_ids(shop) -> set:
    """External ids of every product that some other product names as parent."""
    parents = (
        Product.objects.filter(shop=shop, parent_external_id__isnull=False)
        .exclude(parent_external_id='')
        .values_list('parent_external_id', flat=True)
        .distinct()
    )
    return set(parents)


def is_eligible(product, containers) -> bool:
    return bool(
        product.valid
        and product.feed_enable_search
        and product.selected
        and product.sync_state == Product.SyncState.SYNCED
        and product.external_id not in containers
    )


def eligible_products(shop, containers=None) -> list:
    if containers is None:
        containers = container_ids(shop)
    products = Product.objects.filter(shop=shop).order_by('external_id')
    return [p for p in products if is_eligible(p, containers)]


@dataclass
class CatalogEntry:
    product: Product
    eligible: bool


def catalog_listing(shop) -> list:
    """Selected, synced, non-container products with their feed eligibility."""
    containers = container_ids(shop)
    products = (
        Product.objects.filter(shop=shop, selected=True, sync_state=Product.SyncState.SYNCED)
        .exclude(external_id__in=containers)
        .order_by('external_id')
    )
    return [CatalogEntry(product=p, eligible=is_eligible(p, containers)) for p in products]


def catalog_stats(shop) -> dict:
    """
    Counts shown next to the catalog.

    `needs_attention` are listed products held back only by failed validation.
    """
    containers = container_ids(shop)
    stats = {
        'total': 0,
        'selected': 0,
        'eligible': 0,
        'needs_attention': 0,
        'containers': 0,
    }
    for product in Product.objects.filter(shop=shop):
        stats['total'] += 1
        if product.external_id in containers:
            stats['containers'] += 1
            continue
        if product.selected:
            stats['selected'] += 1
        if is_eligible(product, containers):
            stats['eligible'] += 1
        elif product.selected and product.sync_state == Product.SyncState.SYNCED and not product.valid:
            stats['needs_attention'] += 1
    return stats
