import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from urllib.parse import urlparse

from .feed_schema import FEED_FIELDS, FIELDS_BY_ATTRIBUTE, REQUIRED

AVAILABILITY_VALUES = {'in_stock', 'out_of_stock', 'preorder'}
CONDITION_VALUES = {'new', 'refurbished', 'used'}
BOOLEAN_VALUES = {'true', 'false'}

URL_FIELDS = {
    'link', 'image_link', 'video_link', 'model_3d_link', 'seller_url',
    'seller_privacy_policy', 'seller_tos', 'return_policy',
}
PRICE_FIELDS = {'price', 'sale_price'}
NON_NEGATIVE_FIELDS = {'inventory_quantity', 'return_window', 'product_review_count', 'age_restriction'}
RATING_FIELDS = {'popularity_score', 'product_review_rating'}
DATE_FIELDS = {'availability_date', 'delivery_estimate'}
# Conditional rules that make an entry invalid; the rest only warn.
BLOCKING_CONDITIONALS = {'enable_checkout', 'seller_privacy_policy', 'seller_tos', 'availability_date'}

_PRICE = re.compile(r'^\d+(\.\d{1,2})? [A-Z]{3}$')
_DATE_RANGE = re.compile(r'^(\d{4}-\d{2}-\d{2}) / (\d{4}-\d{2}-\d{2})$')


@dataclass
class ValidationResult:
    valid: bool
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def diagnostics(self) -> list:
        return self.errors + self.warnings


def _missing(value) -> bool:
    return value is None or value == '' or value == []


def _check_value(attribute, value) -> Optional[str]:
    """Return an error message for a present value, or None if it is acceptable."""
    spec = FIELDS_BY_ATTRIBUTE[attribute]

    if attribute in ('enable_search', 'enable_checkout'):
        if value not in BOOLEAN_VALUES:
            return f'{attribute} must be "true" or "false"'
    elif attribute in URL_FIELDS:
        parsed = urlparse(str(value))
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return f'{attribute} must be a valid http(s) URL'
    elif attribute in PRICE_FIELDS:
        if not _PRICE.match(str(value)):
            return f'{attribute} must look like "79.99 USD"'
    elif attribute == 'availability':
        if value not in AVAILABILITY_VALUES:
            return f'availability must be one of {", ".join(sorted(AVAILABILITY_VALUES))}'
    elif attribute == 'condition':
        if value not in CONDITION_VALUES:
            return f'condition must be one of {", ".join(sorted(CONDITION_VALUES))}'
    elif attribute == 'product_category':
        if not isinstance(value, str) or not value.strip():
            return 'product_category must be a category path'
    elif attribute in ('length', 'width', 'height', 'weight', 'dimensions'):
        if not isinstance(value, str) or ' ' not in value.strip():
            return f'{attribute} must include a unit (e.g. "10 cm")'
    elif attribute in NON_NEGATIVE_FIELDS:
        try:
            if float(value) < 0:
                return f'{attribute} must not be negative'
        except (TypeError, ValueError):
            return f'{attribute} must be a number'
    elif attribute in RATING_FIELDS:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f'{attribute} must be a number'
        if not 0 <= number <= 5:
            return f'{attribute} must be between 0 and 5 (current: {number})'
    elif attribute in DATE_FIELDS:
        try:
            date.fromisoformat(str(value)[:10])
        except ValueError:
            return f'{attribute} must be an ISO date (YYYY-MM-DD)'
    elif attribute == 'sale_price_effective_date':
        match = _DATE_RANGE.match(str(value))
        if not match or match.group(1) > match.group(2):
            return 'sale_price_effective_date must be "YYYY-MM-DD / YYYY-MM-DD" with start before end'
    elif attribute == 'additional_image_link':
        if not isinstance(value, list):
            return 'additional_image_link must be a list'

    if spec.max_length and isinstance(value, str) and len(value) > spec.max_length:
        return f'{attribute} exceeds {spec.max_length} characters ({len(value)})'
    return None


def _conditional_errors(entry: dict, enable_checkout: bool) -> list:
    """Cross-field rules. Each item is (field, message)."""
    problems = []
    if _missing(entry.get('gtin')) and _missing(entry.get('mpn')):
        problems.append(('mpn', 'mpn is required when gtin is not provided'))

    availability = entry.get('availability')
    if availability == 'preorder' and _missing(entry.get('availability_date')):
        problems.append(('availability_date', 'availability_date is required for preorder items'))
    if availability != 'preorder' and not _missing(entry.get('availability_date')):
        problems.append(('availability_date', 'availability_date must be empty unless availability is preorder'))

    if not _missing(entry.get('sale_price')) and _missing(entry.get('sale_price_effective_date')):
        problems.append(('sale_price_effective_date', 'sale_price_effective_date is required with sale_price'))

    if entry.get('enable_checkout') == 'true' and entry.get('enable_search') != 'true':
        problems.append(('enable_checkout', 'enable_checkout requires enable_search to be "true"'))

    if enable_checkout:
        for attribute in ('seller_privacy_policy', 'seller_tos'):
            if _missing(entry.get(attribute)):
                problems.append((attribute, f'{attribute} is required when checkout is enabled'))
    return problems


def validate_entry(entry: dict, enable_checkout=False, only=None) -> ValidationResult:
    """
    Check a resolved feed entry against the field rules.

    Missing required fields and broken checkout prerequisites are errors and
    make the entry invalid; everything else is reported as a warning. With
    `only`, diagnostics are limited to those attributes.
    """
    errors = []
    warnings = []
    scope = set(only) if only is not None else None

    for spec in FEED_FIELDS:
        attribute = spec.attribute
        if scope is not None and attribute not in scope:
            continue
        value = entry.get(attribute)
        if _missing(value):
            if spec.requirement == REQUIRED:
                errors.append({'field': attribute, 'error': f'Required field "{attribute}" is missing',
                               'severity': 'error'})
            continue
        message = _check_value(attribute, value)
        if message is None:
            continue
        if spec.requirement == REQUIRED:
            errors.append({'field': attribute, 'error': message, 'severity': 'error'})
        else:
            warnings.append({'field': attribute, 'error': message, 'severity': 'warning'})

    for attribute, message in _conditional_errors(entry, enable_checkout):
        if scope is not None and attribute not in scope:
            continue
        is_error = attribute in BLOCKING_CONDITIONALS
        bucket = errors if is_error else warnings
        bucket.append({'field': attribute, 'error': message, 'severity': 'error' if is_error else 'warning'})

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
