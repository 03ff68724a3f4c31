import hashlib
import html
import json
import logging
import re
from datetime import datetime
from typing import Optional

from .exceptions import ResolutionError
from .feed_schema import FEED_FIELDS, FIELDS_BY_ATTRIBUTE, LOCKED_ATTRIBUTES, SHOP_FIELDS, TOGGLE_ATTRIBUTES

logger = logging.getLogger(__name__)

STOCK_STATUS_MAP = {
    'instock': 'in_stock',
    'outofstock': 'out_of_stock',
    'onbackorder': 'preorder',
}

# Keys a variation carries itself; everything else is inherited from its parent.
VARIATION_OWN_KEYS = (
    'id', 'sku', 'global_unique_id', 'permalink', 'price', 'regular_price', 'sale_price',
    'date_on_sale_from', 'date_on_sale_to', 'stock_quantity', 'stock_status',
    'date_modified', 'date_modified_gmt', 'meta_data',
)

_PATH_TOKEN = re.compile(r'[^.\[\]]+')
_TAG = re.compile(r'<[^>]+>')
_WHITESPACE = re.compile(r'\s+')


def compute_hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash of the raw payload for delta sync."""
    serialized = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


def _is_empty(value) -> bool:
    return value is None or value == '' or value == [] or value == {}


def extract_value(raw: dict, path: str):
    """
    Read a value from a raw catalog record.

    Supports dot paths ("dimensions.length"), indexes ("images[0].src"),
    meta entries by key ("meta_data.<key>") and product attributes by name
    ("attributes.<name>").
    """
    if path.startswith('meta_data.'):
        key = path[len('meta_data.'):]
        for entry in raw.get('meta_data') or []:
            if isinstance(entry, dict) and entry.get('key') == key:
                return entry.get('value')
        return None

    if path.startswith('attributes.'):
        name = path[len('attributes.'):].lower()
        for attribute in raw.get('attributes') or []:
            if not isinstance(attribute, dict):
                continue
            if (attribute.get('name') or '').lower() != name and (attribute.get('slug') or '').lower() != name:
                continue
            if attribute.get('option'):
                return attribute['option']
            options = attribute.get('options') or []
            return ', '.join(str(o) for o in options) if options else None
        return None

    current = raw
    for token in _PATH_TOKEN.findall(path):
        if isinstance(current, list):
            if not token.isdigit() or int(token) >= len(current):
                return None
            current = current[int(token)]
        elif isinstance(current, dict):
            current = current.get(token)
        else:
            return None
        if current is None:
            return None
    return current


# ---------------------------------------------------------------------------
# Transforms: (value, raw, shop) -> value
# ---------------------------------------------------------------------------

def _item_id(value, raw, shop):
    return str(value) if not _is_empty(value) else None


def _strip_html(value, raw, shop):
    if _is_empty(value):
        return None
    text = _WHITESPACE.sub(' ', html.unescape(_TAG.sub(' ', str(value)))).strip()
    return text or None


def _default_new(value, raw, shop):
    return value or 'new'


def _category_path(categories, raw, shop):
    if not categories:
        return None
    first = categories[0]
    path = first.get('path') or [first.get('name')]
    path = [html.unescape(p) for p in path if p]
    return ' > '.join(path) if path else None


def _with_unit(value, unit):
    if _is_empty(value):
        return None
    return f"{value} {unit}" if unit else str(value)


def _dimensions(dims, raw, shop):
    if not isinstance(dims, dict):
        return None
    parts = [dims.get('length'), dims.get('width'), dims.get('height')]
    if any(_is_empty(p) for p in parts):
        return None
    return _with_unit('x'.join(str(p) for p in parts), shop.dimension_unit)


def _with_dimension_unit(value, raw, shop):
    return _with_unit(value, shop.dimension_unit)


def _with_weight_unit(value, raw, shop):
    return _with_unit(value, shop.weight_unit)


def _additional_images(images, raw, shop):
    links = [img.get('src') for img in (images or [])[1:] if isinstance(img, dict) and img.get('src')]
    return links or None


def _price(value, raw, shop):
    if _is_empty(value):
        return None
    amount = float(value)
    return f"{amount:.2f} {shop.currency}" if shop.currency else f"{amount:.2f}"


def _sale_date_range(value, raw, shop):
    start, end = raw.get('date_on_sale_from'), raw.get('date_on_sale_to')
    if _is_empty(raw.get('sale_price')) or not start or not end:
        return None
    start_day = datetime.fromisoformat(str(start)).date().isoformat()
    end_day = datetime.fromisoformat(str(end)).date().isoformat()
    return f"{start_day} / {end_day}"


def _availability(value, raw, shop):
    return STOCK_STATUS_MAP.get(value, 'in_stock')


def _inventory(value, raw, shop):
    """Convert a stock value to int; missing or non-numeric values count as 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric stock value %r – treating as 0.", value)
        return 0


def _item_group_id(value, raw, shop):
    return str(value) if value else None


def _rating(value, raw, shop):
    if _is_empty(value):
        return None
    rating = float(value)
    return rating if rating > 0 else None


def _join_ids(value, raw, shop):
    if not value:
        return None
    return ','.join(str(v) for v in value)


TRANSFORMS = {
    'item_id': _item_id,
    'strip_html': _strip_html,
    'default_new': _default_new,
    'category_path': _category_path,
    'dimensions': _dimensions,
    'with_dimension_unit': _with_dimension_unit,
    'with_weight_unit': _with_weight_unit,
    'additional_images': _additional_images,
    'price': _price,
    'sale_date_range': _sale_date_range,
    'availability': _availability,
    'inventory': _inventory,
    'item_group_id': _item_group_id,
    'rating': _rating,
    'join_ids': _join_ids,
}


class AttributeResolver:
    """
    Derives the feed attributes of one product from its raw payload.

    Precedence per attribute: per-product override, then the shop's custom
    mapping (never for locked attributes), then the default mapping with its
    fallback path and transform. Unresolved attributes come out as None.
    """

    def __init__(self, shop, mappings: Optional[dict] = None):
        self.shop = shop
        source = mappings if mappings is not None else (shop.field_mappings or {})
        self.mappings = {}
        for attribute, path in source.items():
            if attribute not in FIELDS_BY_ATTRIBUTE or attribute in LOCKED_ATTRIBUTES or not path:
                continue
            if path.startswith('shop.') and path[len('shop.'):] not in SHOP_FIELDS:
                logger.warning("Ignoring mapping %s -> %s: not a shop setting.", attribute, path)
                continue
            self.mappings[attribute] = path

    def resolve(self, raw, enable_search=True, enable_checkout=False, overrides=None, only=None) -> dict:
        if not isinstance(raw, dict):
            raise ResolutionError(f"Raw payload must be an object, got {type(raw).__name__}.")

        overrides = overrides or {}
        specs = FEED_FIELDS if only is None else [FIELDS_BY_ATTRIBUTE[a] for a in only if a in FIELDS_BY_ATTRIBUTE]
        resolved = {}
        for spec in specs:
            if spec.attribute in TOGGLE_ATTRIBUTES:
                flag = enable_search if spec.attribute == 'enable_search' else enable_checkout
                resolved[spec.attribute] = 'true' if flag else 'false'
            elif spec.attribute in overrides and spec.attribute not in LOCKED_ATTRIBUTES:
                resolved[spec.attribute] = overrides[spec.attribute]
            else:
                resolved[spec.attribute] = self._fill(spec, raw)
        return resolved

    def _fill(self, spec, raw):
        custom = self.mappings.get(spec.attribute)
        if custom:
            if custom.startswith('shop.'):
                return getattr(self.shop, custom[len('shop.'):], None) or None
            value = extract_value(raw, custom)
            return None if _is_empty(value) else value

        if spec.shop_field:
            value = getattr(self.shop, spec.shop_field, None)
            return None if _is_empty(value) else value

        value = extract_value(raw, spec.path) if spec.path else None
        if _is_empty(value) and spec.fallback:
            value = extract_value(raw, spec.fallback)

        if spec.transform:
            try:
                value = TRANSFORMS[spec.transform](value, raw, self.shop)
            except Exception as exc:
                logger.error(
                    "Transform %s failed for attribute %s (product %s): %s",
                    spec.transform, spec.attribute, raw.get('id'), exc,
                )
                value = None

        return None if _is_empty(value) else value


def merge_parent_and_variation(parent: dict, variation: dict) -> dict:
    """Build the raw payload of a variation: own commercial data, inherited content."""
    merged = {k: v for k, v in parent.items() if k not in ('variations', 'images')}
    for key in VARIATION_OWN_KEYS:
        if key in variation:
            merged[key] = variation[key]

    for key in ('weight', 'dimensions', 'description'):
        value = variation.get(key)
        if isinstance(value, dict):
            if any(not _is_empty(v) for v in value.values()):
                merged[key] = value
        elif not _is_empty(value):
            merged[key] = value

    images = list(parent.get('images') or [])
    if isinstance(variation.get('image'), dict) and variation['image'].get('src'):
        images = [variation['image']] + [img for img in images if img.get('src') != variation['image']['src']]
    merged['images'] = images

    variation_attrs = {(a.get('name') or '').lower(): a for a in variation.get('attributes') or []}
    attributes = []
    for attribute in parent.get('attributes') or []:
        name = (attribute.get('name') or '').lower()
        attributes.append(variation_attrs.pop(name, attribute))
    attributes.extend(variation_attrs.values())
    merged['attributes'] = attributes

    merged['type'] = 'variation'
    merged['parent_id'] = parent.get('id')
    merged['parent_name'] = parent.get('name')
    return merged


def enrich_categories(raw: dict, category_map: dict) -> dict:
    """Attach the full ancestor path to each category of the record."""
    categories = []
    for category in raw.get('categories') or []:
        path = []
        seen = set()
        current = category_map.get(category.get('id'))
        while current is not None and current['id'] not in seen:
            seen.add(current['id'])
            path.insert(0, current['name'])
            current = category_map.get(current.get('parent')) if current.get('parent') else None
        categories.append({**category, 'path': path or [category.get('name')]})
    return {**raw, 'categories': categories}
