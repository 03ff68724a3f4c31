"""
Fixed output schema of the discovery feed.

Every feed record carries every attribute below, in this order. Each field
knows where its value comes from by default: a raw payload path (with an
optional fallback path), a shop-level field, or nothing at all (merchant
must map it). A transform, when named, post-processes the extracted value.
"""
from dataclasses import dataclass
from typing import Optional

REQUIRED = 'required'
RECOMMENDED = 'recommended'
OPTIONAL = 'optional'
CONDITIONAL = 'conditional'


@dataclass(frozen=True)
class FieldSpec:
    attribute: str
    requirement: str
    path: Optional[str] = None
    fallback: Optional[str] = None
    transform: Optional[str] = None
    shop_field: Optional[str] = None
    locked: bool = False
    max_length: Optional[int] = None


FEED_FIELDS = (
    # Flags
    FieldSpec('enable_search', REQUIRED, locked=True),
    FieldSpec('enable_checkout', REQUIRED, locked=True),

    # Basic product data
    FieldSpec('id', REQUIRED, path='sku', fallback='id', transform='item_id', locked=True, max_length=100),
    FieldSpec('gtin', RECOMMENDED, path='global_unique_id'),
    FieldSpec('mpn', CONDITIONAL, path='sku', max_length=70),
    FieldSpec('title', REQUIRED, path='name', transform='strip_html', max_length=150),
    FieldSpec('description', REQUIRED, path='description', fallback='short_description',
              transform='strip_html', max_length=5000),
    FieldSpec('link', REQUIRED, path='permalink', locked=True),

    # Item information
    FieldSpec('condition', CONDITIONAL, transform='default_new'),
    FieldSpec('product_category', REQUIRED, path='categories', transform='category_path'),
    FieldSpec('brand', CONDITIONAL, path='attributes.brand', fallback='brands[0].name', max_length=70),
    FieldSpec('material', REQUIRED, path='attributes.material', max_length=100),
    FieldSpec('dimensions', OPTIONAL, path='dimensions', transform='dimensions'),
    FieldSpec('length', OPTIONAL, path='dimensions.length', transform='with_dimension_unit'),
    FieldSpec('width', OPTIONAL, path='dimensions.width', transform='with_dimension_unit'),
    FieldSpec('height', OPTIONAL, path='dimensions.height', transform='with_dimension_unit'),
    FieldSpec('weight', REQUIRED, path='weight', transform='with_weight_unit'),
    FieldSpec('age_group', OPTIONAL, path='attributes.age_group'),

    # Media
    FieldSpec('image_link', REQUIRED, path='images[0].src'),
    FieldSpec('additional_image_link', OPTIONAL, path='images', transform='additional_images'),
    FieldSpec('video_link', OPTIONAL, path='meta_data.video_link'),
    FieldSpec('model_3d_link', OPTIONAL, path='meta_data.model_3d_link'),

    # Price and promotions
    FieldSpec('price', REQUIRED, path='regular_price', fallback='price', transform='price'),
    FieldSpec('sale_price', OPTIONAL, path='sale_price', transform='price'),
    FieldSpec('sale_price_effective_date', OPTIONAL, transform='sale_date_range'),

    # Availability and inventory
    FieldSpec('availability', REQUIRED, path='stock_status', transform='availability'),
    FieldSpec('availability_date', CONDITIONAL, path='meta_data.availability_date'),
    FieldSpec('inventory_quantity', REQUIRED, path='stock_quantity', transform='inventory'),

    # Variants
    FieldSpec('item_group_id', CONDITIONAL, path='parent_id', transform='item_group_id', max_length=70),
    FieldSpec('item_group_title', OPTIONAL, path='parent_name'),
    FieldSpec('color', RECOMMENDED, path='attributes.color', max_length=40),
    FieldSpec('size', RECOMMENDED, path='attributes.size', max_length=20),
    FieldSpec('gender', RECOMMENDED, path='attributes.gender'),
    FieldSpec('offer_id', RECOMMENDED, path='sku', fallback='id', transform='item_id'),

    # Fulfillment
    FieldSpec('shipping', CONDITIONAL, path='meta_data.shipping'),
    FieldSpec('delivery_estimate', OPTIONAL, path='meta_data.delivery_estimate'),

    # Merchant info
    FieldSpec('seller_name', REQUIRED, shop_field='seller_name', locked=True, max_length=70),
    FieldSpec('seller_url', REQUIRED, shop_field='seller_url', locked=True),
    FieldSpec('seller_privacy_policy', CONDITIONAL, shop_field='seller_privacy_policy', locked=True),
    FieldSpec('seller_tos', CONDITIONAL, shop_field='seller_tos', locked=True),

    # Returns
    FieldSpec('return_policy', REQUIRED, shop_field='return_policy'),
    FieldSpec('return_window', REQUIRED, shop_field='return_window'),

    # Performance signals
    FieldSpec('popularity_score', RECOMMENDED),
    FieldSpec('product_review_count', RECOMMENDED, path='rating_count'),
    FieldSpec('product_review_rating', RECOMMENDED, path='average_rating', transform='rating'),

    # Compliance
    FieldSpec('warning', RECOMMENDED, path='meta_data.warning'),
    FieldSpec('age_restriction', RECOMMENDED, path='meta_data.age_restriction'),

    # Related products
    FieldSpec('related_product_id', RECOMMENDED, path='related_ids', transform='join_ids'),
    FieldSpec('relationship_type', RECOMMENDED),
)

FIELDS_BY_ATTRIBUTE = {spec.attribute: spec for spec in FEED_FIELDS}
ALL_ATTRIBUTES = tuple(spec.attribute for spec in FEED_FIELDS)
LOCKED_ATTRIBUTES = frozenset(spec.attribute for spec in FEED_FIELDS if spec.locked)
TOGGLE_ATTRIBUTES = ('enable_search', 'enable_checkout')

# Shop settings a custom mapping may read through a `shop.<name>` source.
SHOP_FIELDS = frozenset((
    'seller_name',
    'seller_url',
    'seller_privacy_policy',
    'seller_tos',
    'return_policy',
    'return_window',
    'currency',
))
