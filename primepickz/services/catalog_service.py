from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

import bleach
from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session

from primepickz.models import Category, Deal, Product, PurchaseNotification, Review
from primepickz.observability import increment_counter, record_event

MAX_UNFILTERED_REVIEWS = 50


def clean_text(value: Any) -> Optional[str]:
    """Strip markup from user supplied text."""
    if value is None:
        return None
    return bleach.clean(str(value), tags=[], strip=True).strip()


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or "category"


class CatalogService:
    """Read side of the storefront plus reviews and merchandising records."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def list_products(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Product]:
        query = self.db.query(Product)
        if category:
            query = query.filter(Product.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        return query.order_by(desc(Product.created_at)).all()

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.db.get(Product, product_id)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def list_categories(self) -> List[Category]:
        return self.db.query(Category).order_by(Category.name).all()

    def create_category(
        self,
        name: str,
        image_url: str,
        slug: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Category]]:
        name = clean_text(name)
        if not name or not image_url:
            return False, "Name and image URL are required", None

        slug = slugify(slug or name)
        if self.db.query(Category).filter_by(slug=slug).first():
            return False, f"Category slug '{slug}' already exists", None

        category = Category(name=name, slug=slug, image_url=image_url, description=clean_text(description))
        self.db.add(category)
        self.db.commit()
        return True, "Category created", category

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------
    def list_deals(self) -> List[Deal]:
        deals = (
            self.db.query(Deal)
            .filter(Deal.is_active.is_(True))
            .order_by(Deal.ends_at)
            .all()
        )
        return [deal for deal in deals if deal.product is not None]

    def create_deal(self, product_id: str, title: str, ends_at: datetime) -> Tuple[bool, str, Optional[Deal]]:
        if self.db.get(Product, product_id) is None:
            return False, "Product not found", None
        deal = Deal(productID=product_id, title=clean_text(title), ends_at=ends_at, is_active=True)
        self.db.add(deal)
        self.db.commit()
        return True, "Deal created", deal

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------
    def list_reviews(self, product_id: Optional[str] = None) -> List[Review]:
        query = self.db.query(Review)
        if product_id:
            return query.filter_by(productID=product_id).order_by(desc(Review.created_at)).all()
        return query.order_by(desc(Review.created_at)).limit(MAX_UNFILTERED_REVIEWS).all()

    def create_review(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Review]]:
        product_id = data.get("productId")
        rating = data.get("rating")
        comment = clean_text(data.get("comment"))
        customer_name = clean_text(data.get("customerName"))

        if not product_id or rating is None or not comment or not customer_name:
            return False, "Missing required fields", None

        if isinstance(rating, bool):
            return False, "Rating must be between 1 and 5", None
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            return False, "Rating must be between 1 and 5", None
        if str(data.get("rating")).strip() != str(rating) or not 1 <= rating <= 5:
            return False, "Rating must be between 1 and 5", None

        product = self.db.get(Product, product_id)
        if product is None:
            return False, "Product not found", None

        review = Review(
            productID=product_id,
            customer_name=customer_name,
            customer_location=clean_text(data.get("customerLocation")),
            rating=rating,
            title=clean_text(data.get("title")),
            comment=comment,
            image_url=data.get("imageUrl"),
            date=datetime.now(timezone.utc).strftime("%Y-%m-%d"),
            verified=False,
        )
        self.db.add(review)
        self.db.flush()
        self._refresh_product_rating(product)
        self.db.commit()

        increment_counter("reviews_created_total")
        record_event("review_created", {"product_id": product_id, "rating": rating})
        return True, "Review created", review

    def _refresh_product_rating(self, product: Product) -> None:
        average, count = (
            self.db.query(func.avg(Review.rating), func.count(Review.reviewID))
            .filter(Review.productID == product.productID)
            .one()
        )
        product.review_count = count or 0
        product.rating = (
            Decimal(str(average or 0)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        )

    # ------------------------------------------------------------------
    # Social proof
    # ------------------------------------------------------------------
    def list_purchase_notifications(self) -> List[PurchaseNotification]:
        return self.db.query(PurchaseNotification).order_by(desc(PurchaseNotification.notificationID)).all()
