"""
Product -> Meta catalog item mapping.

Meta identifies items by ``retailer_id``; we use the local product id, which
makes upserts idempotent. Prices travel as integer cents.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from primepickz.config import Config
from primepickz.models import Product

MetaCatalogProduct = Dict[str, Any]

MAX_NAME_LENGTH = 150
MAX_DESCRIPTION_LENGTH = 5000
MAX_ADDITIONAL_IMAGES = 10
DEFAULT_CURRENCY = "USD"

AVAILABILITY_IN_STOCK = "in stock"
AVAILABILITY_OUT_OF_STOCK = "out of stock"
AVAILABILITY_PREORDER = "preorder"

# Fields whose difference means the remote copy is stale
COMPARED_FIELDS = ("name", "description", "price", "availability", "image_url", "url")


def _to_https(url: str) -> str:
    if url and not url.startswith("https://"):
        return url.replace("http://", "https://", 1)
    return url


def _to_cents(amount: Any) -> int:
    if amount is None:
        return 0
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def transform_to_meta_product(product: Product, site_url: Optional[str] = None) -> MetaCatalogProduct:
    base_url = (site_url or Config.SITE_URL).rstrip("/")
    retailer_id = str(product.productID)

    additional_images: List[str] = []
    for image in (product.additional_images or [])[:MAX_ADDITIONAL_IMAGES]:
        if isinstance(image, str) and image != product.image_url:
            additional_images.append(_to_https(image))

    price_cents = _to_cents(product.price)
    availability = AVAILABILITY_IN_STOCK if product.is_available else AVAILABILITY_OUT_OF_STOCK

    meta_product: MetaCatalogProduct = {
        "retailer_id": retailer_id,
        "name": (product.name or "Product")[:MAX_NAME_LENGTH],
        "description": (product.description or "")[:MAX_DESCRIPTION_LENGTH],
        "price": price_cents,
        "currency": DEFAULT_CURRENCY,
        "availability": availability,
        "image_url": _to_https(product.image_url),
        "url": f"{base_url}/product/{retailer_id}",
        "condition": "new",
    }

    if additional_images:
        meta_product["additional_image_urls"] = additional_images

    if product.category:
        meta_product["category"] = product.category
        meta_product["custom_label_0"] = product.category

    if product.badge:
        meta_product["custom_label_1"] = product.badge

    if product.original_price is not None and Decimal(str(product.original_price)) > Decimal(str(product.price or 0)):
        meta_product["sale_price"] = price_cents

    return meta_product


def validate_for_meta(product: Product) -> Tuple[bool, List[str]]:
    """Check the fields Meta rejects an item without."""
    errors: List[str] = []

    if not product.productID:
        errors.append("Missing product ID (retailer_id)")

    if not product.name or not product.name.strip():
        errors.append("Missing product name")

    if not product.description or not product.description.strip():
        errors.append("Missing product description")

    if product.price is None or Decimal(str(product.price)) <= 0:
        errors.append("Invalid or missing price")

    if not product.image_url:
        errors.append("Missing image URL")
    elif not product.image_url.startswith("http"):
        errors.append("Image URL must be a valid HTTP/HTTPS URL")

    return len(errors) == 0, errors


def _parse_remote_price(value: Any) -> Any:
    """Graph API reads return prices as display strings ("$1,299.00", "12.50 USD")."""
    if not isinstance(value, str):
        return value
    cleaned = "".join(ch for ch in value if ch.isdigit() or ch == ".")
    if not cleaned:
        return value
    return _to_cents(cleaned)


def normalize_remote_product(item: MetaCatalogProduct) -> MetaCatalogProduct:
    """Bring a catalog item read back from Meta into the shape we upload."""
    normalized = dict(item)
    if "price" in normalized:
        normalized["price"] = _parse_remote_price(normalized["price"])
    return normalized


def has_product_changed(current: MetaCatalogProduct, previous: Optional[MetaCatalogProduct]) -> bool:
    if not previous:
        return True
    return any(current.get(field) != previous.get(field) for field in COMPARED_FIELDS)


def _format_cents(value: Any) -> str:
    return f"${(value or 0) / 100:.2f}"


def get_change_summary(current: MetaCatalogProduct, previous: Optional[MetaCatalogProduct]) -> List[str]:
    if not previous:
        return ["New product"]

    changes: List[str] = []
    if current.get("name") != previous.get("name"):
        changes.append(f'Name: "{previous.get("name")}" → "{current.get("name")}"')
    if current.get("price") != previous.get("price"):
        changes.append(f"Price: {_format_cents(previous.get('price'))} → {_format_cents(current.get('price'))}")
    if current.get("availability") != previous.get("availability"):
        changes.append(f"Availability: {previous.get('availability')} → {current.get('availability')}")
    if current.get("image_url") != previous.get("image_url"):
        changes.append("Image updated")
    if current.get("description") != previous.get("description"):
        changes.append("Description updated")

    return changes or ["No changes detected"]
