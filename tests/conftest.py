import copy
from types import SimpleNamespace

import pytest

from feedsync.models import Product, Shop

STORE_URL = 'https://shop.example.com'
BLOB_URL = 'https://blobs.example.com/feeds'

CATEGORIES = [
    {'id': 10, 'name': 'Kitchen', 'parent': 0},
    {'id': 11, 'name': 'Coffee Makers', 'parent': 10},
]

BASE_RAW = {
    'id': 101,
    'type': 'simple',
    'name': 'Espresso Machine',
    'sku': 'ESP-101',
    'description': '<p>Compact <strong>espresso</strong> machine.</p>',
    'short_description': '',
    'permalink': 'https://shop.example.com/product/espresso-machine',
    'price': '199.00',
    'regular_price': '199.00',
    'sale_price': '',
    'stock_status': 'instock',
    'stock_quantity': 8,
    'weight': '4.2',
    'dimensions': {'length': '30', 'width': '20', 'height': '35'},
    'categories': [{'id': 11, 'name': 'Coffee Makers', 'slug': 'coffee-makers'}],
    'images': [
        {'id': 1, 'src': 'https://shop.example.com/img/esp-1.jpg'},
        {'id': 2, 'src': 'https://shop.example.com/img/esp-2.jpg'},
    ],
    'attributes': [
        {'id': 1, 'name': 'Material', 'options': ['Stainless steel']},
        {'id': 2, 'name': 'Color', 'options': ['Silver']},
    ],
    'meta_data': [],
    'parent_id': 0,
    'related_ids': [102, 103],
    'average_rating': '4.50',
    'rating_count': 12,
}


def make_raw(product_id=101, **fields):
    """A complete catalog record that resolves into a valid feed entry."""
    raw = copy.deepcopy(BASE_RAW)
    raw['id'] = product_id
    raw['sku'] = f'ESP-{product_id}'
    raw['permalink'] = f'https://shop.example.com/product/{product_id}'
    raw.update(fields)
    return raw


@pytest.fixture()
def raw_product():
    return make_raw


@pytest.fixture()
def store():
    """Shop stand-in for tests that do not touch the database."""
    return SimpleNamespace(
        pk=1,
        currency='USD',
        dimension_unit='cm',
        weight_unit='kg',
        seller_name='Coffee Corner',
        seller_url='https://shop.example.com',
        seller_privacy_policy='https://shop.example.com/privacy',
        seller_tos='https://shop.example.com/terms',
        return_policy='https://shop.example.com/returns',
        return_window=30,
        field_mappings={},
    )


@pytest.fixture()
def shop(db):
    return Shop.objects.create(
        name='Coffee Corner',
        store_url=STORE_URL,
        consumer_key='ck_test',
        consumer_secret='cs_test',
        currency='USD',
        dimension_unit='cm',
        weight_unit='kg',
        seller_name='Coffee Corner',
        seller_url='https://shop.example.com',
        seller_privacy_policy='https://shop.example.com/privacy',
        seller_tos='https://shop.example.com/terms',
        return_policy='https://shop.example.com/returns',
        return_window=30,
    )


@pytest.fixture()
def make_product(shop):
    counter = {'n': 0}

    def _make(**fields):
        counter['n'] += 1
        values = {
            'shop': shop,
            'external_id': str(1000 + counter['n']),
            'title': f"Product {counter['n']}",
            'selected': True,
            'sync_state': Product.SyncState.SYNCED,
            'valid': True,
            'feed_enable_search': True,
            'derived_attributes': {'title': f"Product {counter['n']}", 'price': '10.00 USD'},
        }
        values.update(fields)
        return Product.objects.create(**values)

    return _make


@pytest.fixture(autouse=True)
def override_settings(settings):
    settings.BLOB_STORAGE_BASE_URL = BLOB_URL
    settings.BLOB_STORAGE_API_KEY = 'blob-secret-token'
    settings.FEED_RETENTION_DAYS = 7
    settings.SYNC_STAGGER_SECONDS = 5
    settings.FEED_AFTER_SYNC_DELAY = 120
