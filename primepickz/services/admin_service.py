from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session

from primepickz.models import (
    AuditLog,
    CartItem,
    MetaCatalogSync,
    MetaSyncDeadLetter,
    Order,
    Product,
    SyncOperation,
    SyncStatus,
    WishlistItem,
)
from primepickz.observability import increment_counter, record_event
from primepickz.services.catalog_service import clean_text
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor, SyncResult
from primepickz.services.order_service import OrderService

REQUIRED_PRODUCT_FIELDS = ("name", "description", "price", "category", "imageUrl")

# request key -> (column, converter)
_PRODUCT_FIELD_MAP = {
    "name": ("name", clean_text),
    "description": ("description", clean_text),
    "price": ("price", Decimal),
    "originalPrice": ("original_price", Decimal),
    "discount": ("discount", int),
    "category": ("category", clean_text),
    "imageUrl": ("image_url", str),
    "additionalImages": ("additional_images", list),
    "inStock": ("in_stock", bool),
    "stockCount": ("stock_count", int),
    "tags": ("tags", list),
    "badge": ("badge", clean_text),
    "freeShipping": ("free_shipping", bool),
}


def _product_values(data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, (column, convert) in _PRODUCT_FIELD_MAP.items():
        if key not in data:
            continue
        raw = data[key]
        if raw is None:
            values[column] = None
            continue
        try:
            values[column] = convert(str(raw)) if convert is Decimal else convert(raw)
        except (InvalidOperation, TypeError, ValueError):
            raise ValueError(f"Invalid value for {key}") from None
    return values


class AdminService:
    """Back-office product and order management."""

    def __init__(
        self,
        db_session: Session,
        sync_processor: Optional[CatalogSyncProcessor] = None,
        actor: str = "admin",
    ) -> None:
        self.db = db_session
        self._sync_processor = sync_processor
        self.actor = actor
        self.logger = logging.getLogger(__name__)

    @property
    def sync_processor(self) -> CatalogSyncProcessor:
        if self._sync_processor is None:
            self._sync_processor = CatalogSyncProcessor(self.db)
        return self._sync_processor

    def _audit(self, action: str, entity_id: Optional[str], details: Optional[Dict[str, Any]] = None) -> None:
        self.db.add(AuditLog(
            event_type="admin",
            entity_type="product",
            entity_id=entity_id,
            actor=self.actor,
            action=action,
            details=details,
        ))
        self.db.commit()

    def get_stats(self) -> Dict[str, Any]:
        sync_counts = dict(
            self.db.query(MetaCatalogSync.sync_status, func.count(MetaCatalogSync.syncID))
            .group_by(MetaCatalogSync.sync_status)
            .all()
        )
        revenue = self.db.query(func.sum(Order.total_amount)).scalar()
        return {
            "totalProducts": self.db.query(func.count(Product.productID)).scalar() or 0,
            "totalOrders": self.db.query(func.count(Order.orderID)).scalar() or 0,
            "totalRevenue": float(revenue or 0),
            "pendingSyncs": sync_counts.get(SyncStatus.PENDING, 0),
            "failedSyncs": sync_counts.get(SyncStatus.FAILED, 0),
            "deadLetterCount": (
                self.db.query(func.count(MetaSyncDeadLetter.deadLetterID))
                .filter(MetaSyncDeadLetter.resolved.is_(False))
                .scalar()
                or 0
            ),
            "recentSyncLogs": self.sync_processor.get_recent_sync_logs(limit=10),
        }

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        sync_status: Optional[str] = None,
    ) -> List[Product]:
        """Products newest first, optionally filtered.

        ``sync_status`` matches the Meta sync record; products that were never
        queued count as pending. Raises ValueError for an unknown status.
        """
        query = self.db.query(Product)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        if category:
            query = query.filter(Product.category == category)
        if sync_status:
            try:
                status = SyncStatus(sync_status.strip().lower())
            except ValueError:
                raise ValueError(f"Invalid syncStatus: {sync_status}") from None
            query = query.outerjoin(MetaCatalogSync, MetaCatalogSync.productID == Product.productID)
            if status == SyncStatus.PENDING:
                query = query.filter(or_(MetaCatalogSync.sync_status == status, MetaCatalogSync.syncID.is_(None)))
            else:
                query = query.filter(MetaCatalogSync.sync_status == status)
        return query.order_by(desc(Product.created_at)).all()

    def create_product(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        if any(data.get(field) in (None, "") for field in REQUIRED_PRODUCT_FIELDS):
            return False, "Missing required fields", None
        try:
            values = _product_values(data)
        except ValueError as exc:
            return False, str(exc), None

        product = Product(**values)
        self.db.add(product)
        self.db.commit()

        self.sync_processor.mark_pending(product.productID)
        self._audit("create_product", product.productID, {"name": product.name})
        increment_counter("admin_products_created_total")
        record_event("product_created", {"product_id": product.productID})
        self.logger.info("Product created", extra={"product_id": product.productID})
        return True, "Product created", product

    def update_product(self, product_id: str, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        product = self.db.get(Product, product_id)
        if product is None:
            return False, "Product not found", None
        try:
            values = _product_values(data)
        except ValueError as exc:
            return False, str(exc), None

        for column, value in values.items():
            setattr(product, column, value)
        self.db.commit()

        self.sync_processor.mark_pending(product_id)
        self._audit("update_product", product_id, {"fields": sorted(values)})
        self.logger.info("Product updated", extra={"product_id": product_id})
        return True, "Product updated", product

    def delete_product(self, product_id: str) -> Tuple[bool, str, Optional[SyncResult]]:
        product = self.db.get(Product, product_id)
        if product is None:
            return False, "Product not found", None

        self.db.delete(product)
        self.db.commit()
        self._audit("delete_product", product_id)

        sync_result = self.sync_processor.sync_product(product_id, SyncOperation.DELETE)
        if not sync_result.success:
            self.logger.warning(
                "Catalog delete failed after product removal",
                extra={"product_id": product_id, "error": sync_result.error},
            )
        return True, "Product deleted", sync_result

    def clear_products(self) -> int:
        self.db.query(CartItem).delete(synchronize_session=False)
        self.db.query(WishlistItem).delete(synchronize_session=False)
        removed = self.db.query(Product).delete(synchronize_session=False)
        self.db.commit()
        self._audit("clear_products", None, {"removed": removed})
        self.logger.warning("All products cleared", extra={"removed": removed})
        return removed

    def list_orders(self) -> List[Order]:
        return OrderService(self.db).list_all_orders()
