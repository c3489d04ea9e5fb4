"""
Freshful Normalizer

Freshful exports carry CSS-selector field names from the scraper
(image_image__nanvf_description, span, ...), with the older plain names
(name, price, ...) still accepted.

The category comes from the export filename:

    "lapte-smantana-si-branza-proaspata-gama-variata----freshful-ro-2024....json"
    -> "lapte smantana si branza proaspata"

Products that still end up in "Other" go to the shop's default bucket
(StoreSettings.other_override_path).
"""

import logging
import os
import re
from typing import Any, Dict, Optional

from .base import (
    ExtractedFields,
    NormalizationOptions,
    Normalizer,
    NormalizerSchema,
    first_value,
    text_value,
)

logger = logging.getLogger(__name__)


# Canonical field -> raw keys, scraper names first
FIELD_MAP = {
    'name': ('image_image__nanvf_description', 'name'),
    'brand': ('productdefaultcard_brand__ix27n', 'brand'),
    'price': ('span', 'price'),
    'unit_price': ('productprice_perunit__4wcmu', 'unitPrice'),
    'url': ('productdefaultcard_root__5axhf_url', 'url'),
    'image': ('image_image__nanvf_image', 'image'),
    'promo_label': ('button_content__uztcc', 'promoLabel'),
    'original_price': ('originalPrice',),
    'size': ('size', 'weight'),
    'gtin': ('gtin', 'ean'),
    'shop_product_id': ('id', 'sku'),
}

FILENAME_CATEGORY = re.compile(r'^([^-]+(?:-[^-]+)*)-gama-variata')


def category_from_filename(source_file: Optional[str]) -> Optional[str]:
    """
    Example:
        >>> category_from_filename("data/branzeturi-gama-variata----freshful-ro.json")
        'branzeturi'
        >>> category_from_filename("export.json") is None
        True
    """
    if not source_file:
        return None
    match = FILENAME_CATEGORY.match(os.path.basename(source_file).lower())
    if not match:
        return None
    return match.group(1).replace('-', ' ').strip() or None


class FreshfulNormalizer(Normalizer):
    """Freshful.ro catalog exports."""

    VERSION = "1.0.0"

    @property
    def store_id(self) -> str:
        return 'freshful'

    def get_schema(self) -> NormalizerSchema:
        return NormalizerSchema(
            required_fields=['image_image__nanvf_description', 'span'],
            optional_fields=[
                'productdefaultcard_brand__ix27n', 'image_image__nanvf_image',
                'productdefaultcard_root__5axhf_url', 'productprice_perunit__4wcmu',
                'button_content__uztcc', 'category', 'gtin', 'ean',
                'inStock', 'stock', 'size', 'weight', 'originalPrice', 'organic',
                # Legacy field names
                'brand', 'image', 'url', 'unitPrice', 'promoLabel',
            ],
            description='Freshful product data scraped from website with CSS selector field names; '
                        'the legacy name/price keys stand in for the required fields',
            alternatives={
                'image_image__nanvf_description': ['name'],
                'span': ['price'],
            },
        )

    def can_handle(self, raw: Any) -> bool:
        if not super().can_handle(raw):
            return False
        price = first_value(raw, FIELD_MAP['price'])
        return isinstance(price, (str, int, float)) and not isinstance(price, bool)

    def extract(self, raw: Dict[str, Any], options: NormalizationOptions) -> ExtractedFields:
        values = {key: first_value(raw, keys) for key, keys in FIELD_MAP.items()}
        return ExtractedFields(
            description=text_value(raw.get('description')),
            category=text_value(raw.get('category')),
            organic=bool(raw.get('organic')),
            promotional=bool(raw.get('promotional')),
            raw=raw,
            **{key: (str(v) if v is not None and key not in ('price', 'original_price') else v)
               for key, v in values.items()},
        )

    def category_signal(self, fields: ExtractedFields, options: NormalizationOptions) -> Optional[str]:
        return category_from_filename(options.source_file) or fields.category
