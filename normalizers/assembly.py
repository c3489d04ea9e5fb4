"""
Product Assembly

Helpers every normalizer composes to turn ExtractedFields plus a category
mapping into a CanonicalProduct dictionary. Each builder returns plain
dicts matching normalization.schema so the result can be validated in one
step.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from category_mapping.engine import make_result
from category_mapping.models import CategoryMappingResult, utc_now
from normalization.attributes import (
    extract_allergens,
    extract_country,
    extract_dietary,
    extract_promo_flags,
    parse_discount,
    parse_stock_status,
)
from normalization.ids import clean_gtin, generate_canonical_id, is_valid_gtin
from normalization.price_parser import (
    ParsedPrice,
    ParsedSize,
    calculate_unit_price,
    parse_price,
    parse_size,
    parse_unit_price,
    validate_price,
)
from normalization.schema import OTHER_SLUG, MappingStatus
from normalization.text_utils import clean_brand, clean_title

logger = logging.getLogger(__name__)


# Confidence of the per-shop "Other" override
OVERRIDE_CONFIDENCE = 0.5


def _http_url(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.strip().startswith(('http://', 'https://')):
        return value.strip()
    return None


def build_source(shop: str, shop_product_id: str, options, line_number: Optional[int] = None) -> Dict[str, Any]:
    return {
        'shop': shop,
        'shop_product_id': shop_product_id,
        'source_file': options.source_file or 'unknown',
        'fetched_at': options.fetched_at or utc_now(),
        'line_number': line_number,
    }


def build_pack(fields) -> Tuple[Dict[str, Any], ParsedSize]:
    """
    Pack size from the size field, else from the product name.

    A product with no readable size is one piece.
    """
    size = parse_size(fields.size) if fields.size else ParsedSize()
    if size.confidence == 0 and fields.name:
        size = parse_size(fields.name)

    if size.confidence > 0 and size.size > 0:
        pack = {'size': size.size, 'unit': size.unit}
    else:
        pack = {'size': 1, 'unit': 'pcs'}
    return pack, size


def build_pricing(fields, size: ParsedSize) -> Tuple[Dict[str, Any], ParsedPrice, List[str]]:
    """
    Price, unit price, original price and discount.

    The displayed unit price wins over a computed one; a unit price is
    only kept when it is positive.

    Returns:
        (pricing dict, parsed price, warnings)
    """
    price = parse_price(fields.price)
    warnings = list(validate_price(price).warnings)

    unit_price = parse_unit_price(fields.unit_price) if fields.unit_price else None
    if unit_price is None and price.value > 0 and size.confidence > 0:
        unit_price = calculate_unit_price(price.value, size)

    pricing: Dict[str, Any] = {
        'price': price.value,
        'currency': 'RON',
        'unit_price': None,
        'original_price': None,
        'discount': None,
    }

    if unit_price is not None and unit_price.value > 0:
        pricing['unit_price'] = {'value': unit_price.value, 'unit': unit_price.unit}

    if fields.original_price is not None:
        original = parse_price(fields.original_price)
        if original.value > 0:
            pricing['original_price'] = original.value
            if original.value < price.value:
                warnings.append(f"Original price {original.value} is below price {price.value}")

    discount = parse_discount(fields.promo_label)
    if discount is not None and discount[1] > 0:
        pricing['discount'] = {'type': discount[0], 'value': discount[1], 'label': fields.promo_label}

    return pricing, price, warnings


def build_stock(fields) -> Dict[str, Any]:
    in_stock, status = parse_stock_status(fields.raw)
    return {'in_stock': in_stock, 'status': status}


def build_attributes(fields) -> Dict[str, Any]:
    texts = (fields.name, fields.description, fields.brand)
    return {
        'country': extract_country(*texts),
        'dietary': extract_dietary(fields.name, fields.description, organic=fields.organic),
        'allergens': extract_allergens(fields.name, fields.description),
        'promo_flags': extract_promo_flags(fields.name, promo_label=fields.promo_label,
                                           promotional=fields.promotional),
    }


def build_audit(version: str, mapping: CategoryMappingResult, confidences: Dict[str, float],
                notes: Optional[List[str]] = None, enabled: bool = True) -> Dict[str, Any]:
    """Traceability block; notes are dropped when the audit trail is off."""
    audit = {
        'normalizer_version': version,
        'category_rule_id': mapping.rule_id,
        'mapping_confidence': mapping.confidence,
        'parse_confidence': confidences,
        'notes': [],
    }
    if enabled:
        audit['notes'] = [f"Mapped category: {' > '.join(mapping.category_path)}"]
        audit['notes'] += [f"{name.capitalize()} confidence: {value}" for name, value in confidences.items()]
        audit['notes'] += list(mapping.notes) + list(notes or [])
    return audit


def apply_shop_override(result: CategoryMappingResult,
                        override_path: Optional[List[str]]) -> CategoryMappingResult:
    """
    Move a product that resolved to "Other" into the shop's default bucket.

    Example:
        >>> apply_shop_override(unmapped_result(), ["Mama & copilul"]).mapping_status
        <MappingStatus.MANUAL_OVERRIDE: 'manual-override'>
    """
    if not override_path or result.category_slug != OTHER_SLUG:
        return result

    return make_result(
        override_path,
        MappingStatus.MANUAL_OVERRIDE,
        OVERRIDE_CONFIDENCE,
        tier='override',
        notes=result.notes + [f"Shop override to {' > '.join(override_path)}"],
    )


def assemble_product(shop: str, version: str, fields, mapping: CategoryMappingResult,
                     options, line_number: Optional[int] = None) -> Tuple[Dict[str, Any], List[str]]:
    """
    Build the CanonicalProduct dictionary for one record.

    Returns:
        (product dict, warnings)
    """
    warnings: List[str] = []

    pack, size = build_pack(fields)
    pricing, price, price_warnings = build_pricing(fields, size)
    warnings.extend(price_warnings)

    gtin = clean_gtin(fields.gtin)
    if fields.gtin and gtin is None:
        warnings.append(f"Ignoring malformed GTIN '{fields.gtin}'")
    elif gtin and not is_valid_gtin(gtin):
        warnings.append(f"GTIN {gtin} has an invalid check digit")

    canonical_id = generate_canonical_id(
        shop,
        gtin=gtin,
        shop_product_id=fields.shop_product_id,
        url=fields.url,
        name=fields.name,
        brand=fields.brand,
        size_text=size.original_text or fields.size,
    )
    shop_product_id = str(fields.shop_product_id).strip() if fields.shop_product_id else canonical_id.split(':', 1)[1]

    product_url = _http_url(fields.url)
    image_url = _http_url(fields.image)
    if fields.url and product_url is None:
        warnings.append(f"Dropping non-http product URL '{fields.url}'")

    if mapping.mapping_status == MappingStatus.UNMAPPED:
        warnings.append("Category could not be mapped")

    confidences = {
        'price': price.confidence,
        'size': size.confidence,
        'category': mapping.confidence,
    }

    product = {
        'canonical_id': canonical_id,
        'source': build_source(shop, shop_product_id, options, line_number),
        'title': clean_title(fields.name),
        'brand': clean_brand(fields.brand),
        'description': fields.description,
        'category_path': list(mapping.category_path),
        'category_slug': mapping.category_slug,
        'mapping_status': mapping.mapping_status.value,
        'pricing': pricing,
        'pack': pack,
        'stock': build_stock(fields),
        'gtin': gtin,
        'attributes': build_attributes(fields),
        'urls': {'product': product_url, 'image': image_url} if (product_url or image_url) else None,
        'audit': build_audit(version, mapping, confidences, enabled=options.enable_audit_trail),
    }
    return product, warnings
