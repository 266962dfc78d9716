"""CSV feed of the catalog for manual upload in Commerce Manager."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from primepickz.config import Config
from primepickz.models import Product
from primepickz.observability import increment_counter
from primepickz.services.meta_catalog_transformer import transform_to_meta_product

logger = logging.getLogger(__name__)

CSV_HEADERS = (
    "retailer_id",
    "name",
    "description",
    "price",
    "currency",
    "availability",
    "image_url",
    "url",
    "condition",
    "category",
)


def _quote(value: Any) -> str:
    return '"' + str(value or "").replace('"', '""') + '"'


def _csv_row(item: Dict[str, Any]) -> str:
    return ",".join([
        str(item["retailer_id"]),
        _quote(item.get("name")),
        _quote(item.get("description")),
        f"{(item.get('price') or 0) / 100:.2f}",
        item.get("currency") or "USD",
        item.get("availability") or "",
        item.get("image_url") or "",
        item.get("url") or "",
        item.get("condition") or "new",
        item.get("category") or "",
    ])


def render_catalog_csv(items: Iterable[Dict[str, Any]]) -> str:
    lines = [",".join(CSV_HEADERS)]
    lines.extend(_csv_row(item) for item in items)
    return "\n".join(lines)


def export_catalog_csv(db_session: Session, config: type[Config] = Config) -> Tuple[str, str]:
    products = db_session.query(Product).order_by(desc(Product.created_at)).all()
    items = [transform_to_meta_product(product, site_url=config.SITE_URL) for product in products]

    filename = f"primepickz-catalog-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.csv"
    increment_counter("catalog_csv_exports_total")
    logger.info("Catalog CSV exported", extra={"products": len(items), "csv_filename": filename})
    return filename, render_catalog_csv(items)
