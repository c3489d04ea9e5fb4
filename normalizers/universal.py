"""
Universal Normalizer

Handles the retailers whose exports share no stable schema: Auchan,
Carrefour, Kaufland, MEGA Image and Lidl. Each gets an explicit field
profile; generic key names are tried after the profile.

Category hint, first available wins:
1. MEGA product URL (mega-image.ro/<Category>/...)
2. Export filename, cleaned of timestamps and store tokens
3. The raw "category" field
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

from normalization.exceptions import UnknownStoreError

from .base import (
    ExtractedFields,
    NormalizationOptions,
    Normalizer,
    NormalizerSchema,
    first_value,
    text_value,
)

logger = logging.getLogger(__name__)


# === Field Profiles ===
# Scraper exports use auto-generated CSS-derived keys; split prices come
# as (integer part, fraction part).

FIELD_PROFILES: Dict[str, Dict[str, Any]] = {
    'mega': {
        'name': ('column_12', 'column_6'),
        'brand': ('span',),
        'price': (),
        'split_price': ('sc_dqia0p_9', 'sc_dqia0p_10'),
        'unit_price': ('sc_dqia0p_3',),
        'url': ('sc_y4jrw3_8_url',),
        'image': ('sc_y4jrw3_2_image',),
        'id': ('sc_wxp2va_0',),
        'url_category': re.compile(r'mega-image\.ro/([^/?#]+)', re.IGNORECASE),
    },
    'auchan': {
        'name': ('description_2',),
        'brand': (),
        'price': (),
        'split_price': ('price', 'price_1'),
        'unit_price': ('undefined',),
        'url': ('description_1',),
        'image': ('description',),
        'id': (),
    },
    'carrefour': {
        'name': ('a',),
        'brand': (),
        'price': (),
        'split_price': ('span', 'span_1'),
        'unit_price': (),
        'url': ('productitem_image_url',),
        'image': ('carrefour_lazy_image',),
        'id': (),
    },
    'lidl': {
        'name': ('odsc_tile__link',),
        'brand': ('product_grid_box__brand',),
        'price': ('price',),
        'split_price': None,
        'unit_price': (),
        'url': ('odsc_tile__link_url',),
        'image': ('odsc_image_gallery__image_image',),
        'id': (),
    },
    'kaufland': {
        'name': (),
        'brand': (),
        'price': (),
        'split_price': None,
        'unit_price': (),
        'url': (),
        'image': (),
        'id': (),
    },
}

GENERIC_FIELDS = {
    'name': ('name', 'title', 'productName'),
    'brand': ('brand', 'manufacturer'),
    'price': ('price', 'cost', 'value'),
    'original_price': ('originalPrice', 'original_price', 'oldPrice', 'old_price'),
    'unit_price': ('unitPrice', 'unit_price'),
    'url': ('url', 'link', 'productUrl'),
    'image': ('image', 'imageUrl', 'photo'),
    'id': ('id', 'sku', 'productId'),
    'size': ('size', 'weight', 'quantity'),
    'gtin': ('gtin', 'ean'),
    'promo_label': ('promoLabel', 'promo', 'badge'),
}

# A "brand" that is really a price ("12,99 Lei")
PRICE_LIKE = re.compile(r'^\d+[.,]?\d*\s*(lei|ron|€|\$)?$', re.IGNORECASE)

FILENAME_TIMESTAMP = re.compile(r'\d{4}-\d{2}-\d{2}t\d{2}-\d{2}-\d{2}-\d{3}z')
FILENAME_NOISE = [
    r'\bgama variata\b',
    r'\btoate produsele\b',
    r'\bmega image\b',
    r'\bauchan ro\b',
    r'\bcarrefour romania\b',
    r'\bkaufland ro\b',
    r'\blidl ro\b',
    r'\bprospetime si calitate pentru familia ta\b',
]


def category_from_filename(source_file: Optional[str]) -> Optional[str]:
    """
    Category words from an export filename.

    Example:
        >>> category_from_filename("lactate-si-oua---auchan-ro---2024-05-01t10-00-00-000z.json")
        'lactate si oua'
    """
    if not source_file:
        return None

    name = os.path.basename(source_file).lower()
    name = re.sub(r'\.json$', '', name)
    name = FILENAME_TIMESTAMP.sub('', name)
    name = re.sub(r'---.*$', '', name)
    name = re.sub(r'-+', ' ', name).strip()

    for pattern in FILENAME_NOISE:
        name = re.sub(pattern, '', name)
    name = re.sub(r'\s+', ' ', name).strip()

    if not name or name == 'unknown':
        return None
    return name


def _http(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip().startswith('http'):
        return value.strip()
    return None


class UniversalNormalizer(Normalizer):
    """
    Profile-driven normalizer for one of the non-Freshful retailers.

    Example:
        normalizer = UniversalNormalizer('mega', engine)
        result = normalizer.normalize(raw, NormalizationOptions(source_file=path))
    """

    VERSION = "1.1.0"

    def __init__(self, store_id: str, engine, config=None):
        if store_id not in FIELD_PROFILES:
            raise UnknownStoreError(store_id, known=sorted(FIELD_PROFILES))
        self._store_id = store_id
        self.profile = FIELD_PROFILES[store_id]
        super().__init__(engine, config)

    @property
    def store_id(self) -> str:
        return self._store_id

    def get_schema(self) -> NormalizerSchema:
        optional: List[str] = []
        for key in ('brand', 'price', 'unit_price', 'url', 'image', 'id'):
            optional.extend(self.profile[key])
        optional.extend(self.profile['split_price'] or ())
        optional.extend(['category', 'description'])

        return NormalizerSchema(
            required_fields=[],
            optional_fields=list(dict.fromkeys(optional)),
            description=f"{self.store_id} export; any record with a recognizable product name",
        )

    def can_handle(self, raw: Any) -> bool:
        return isinstance(raw, dict) and self._extract_name(raw) is not None

    # === Extraction ===

    def extract(self, raw: Dict[str, Any], options: NormalizationOptions) -> ExtractedFields:
        url = self._extract_url(raw)
        return ExtractedFields(
            name=self._extract_name(raw),
            brand=self._extract_brand(raw),
            price=self._extract_price(raw),
            original_price=first_value(raw, GENERIC_FIELDS['original_price']),
            unit_price=text_value(first_value(raw, self.profile['unit_price'] + GENERIC_FIELDS['unit_price'])),
            size=text_value(first_value(raw, GENERIC_FIELDS['size'])),
            url=url,
            image=self._extract_image(raw),
            promo_label=text_value(first_value(raw, GENERIC_FIELDS['promo_label'])),
            shop_product_id=text_value(first_value(raw, self.profile['id'] + GENERIC_FIELDS['id'])),
            gtin=text_value(first_value(raw, GENERIC_FIELDS['gtin'])),
            description=text_value(raw.get('description')) if not _http(raw.get('description')) else None,
            category=text_value(raw.get('category')),
            organic=bool(raw.get('organic')),
            promotional=bool(raw.get('promotional')),
            raw=raw,
        )

    def _extract_name(self, raw: Dict[str, Any]) -> Optional[str]:
        for key in self.profile['name'] + GENERIC_FIELDS['name']:
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

        # Any short text field that is not a link
        for key, value in raw.items():
            if not isinstance(value, str):
                continue
            lowered = key.lower()
            if 'url' in lowered or 'image' in lowered:
                continue
            text = value.strip()
            if 3 < len(text) < 200 and not text.startswith('http') and 'cdn.' not in text \
                    and not PRICE_LIKE.match(text):
                logger.debug(f"[{self.store_id}] Name taken from fallback field '{key}'")
                return text
        return None

    def _extract_brand(self, raw: Dict[str, Any]) -> Optional[str]:
        for key in self.profile['brand'] + GENERIC_FIELDS['brand']:
            value = raw.get(key)
            if isinstance(value, str) and value.strip() and not PRICE_LIKE.match(value.strip()):
                return value.strip()
        return None

    def _split_price(self, raw: Dict[str, Any]) -> Optional[str]:
        fields = self.profile['split_price']
        if not fields:
            return None
        whole, fraction = (text_value(raw.get(f)) for f in fields)
        if not whole or not fraction:
            return None
        whole = re.sub(r'[^\d]', '', whole)
        fraction = re.sub(r'[^\d]', '', fraction)
        if not whole or not fraction:
            return None
        return f"{whole}.{fraction}"

    def _extract_price(self, raw: Dict[str, Any]) -> Any:
        """Split price first where the profile has one, then single price fields."""
        combined = self._split_price(raw)
        if combined:
            return combined
        return first_value(raw, self.profile['price'] + GENERIC_FIELDS['price'])

    def _extract_url(self, raw: Dict[str, Any]) -> Optional[str]:
        for key in self.profile['url'] + GENERIC_FIELDS['url']:
            value = _http(raw.get(key))
            if value:
                return value
        return None

    def _extract_image(self, raw: Dict[str, Any]) -> Optional[str]:
        for key in self.profile['image'] + GENERIC_FIELDS['image']:
            value = _http(raw.get(key))
            if value:
                return value
        return None

    # === Category ===

    def url_category(self, fields: ExtractedFields) -> Optional[str]:
        """
        Example:
            "https://www.mega-image.ro/Apa-si-sucuri/Apa/..." -> "apa si sucuri"
        """
        pattern = self.profile.get('url_category')
        if pattern is None or not fields.url:
            return None
        match = pattern.search(fields.url)
        if not match:
            return None
        segment = match.group(1).replace('-', ' ').lower().strip()
        # Product pages (/p/...) carry no category
        return segment if len(segment) > 2 else None

    def category_signal(self, fields: ExtractedFields, options: NormalizationOptions) -> Optional[str]:
        return (
            self.url_category(fields)
            or category_from_filename(options.source_file)
            or fields.category
        )


def detect_store(source_file: Optional[str], default: Optional[str] = None) -> Optional[str]:
    """
    Store id named in an export filename.

    Example:
        >>> detect_store("lactate---auchan-ro---2024.json")
        'auchan'
    """
    name = os.path.basename(source_file or '').lower()
    for store_id in ('auchan', 'mega', 'carrefour', 'kaufland', 'freshful', 'lidl'):
        if store_id in name:
            return store_id
    return default
