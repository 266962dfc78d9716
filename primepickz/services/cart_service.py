from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from primepickz.config import Config
from primepickz.models import CartItem, Product, WishlistItem
from primepickz.observability import increment_counter


class CartService:
    """Session carts for guests and wishlists for signed-in users."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------
    def get_cart(self, session_id: Optional[str] = None) -> List[CartItem]:
        session_id = session_id or self.config.DEFAULT_CART_SESSION
        items = (
            self.db.query(CartItem)
            .filter_by(session_id=session_id)
            .order_by(CartItem.cartItemID)
            .all()
        )
        return [item for item in items if item.product is not None]

    def add_to_cart(
        self,
        session_id: Optional[str],
        product_id: str,
        quantity: int = 1,
    ) -> Tuple[bool, str, Optional[CartItem]]:
        session_id = session_id or self.config.DEFAULT_CART_SESSION
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            return False, "Quantity must be a positive integer", None
        if quantity < 1:
            return False, "Quantity must be a positive integer", None
        if not product_id or self.db.get(Product, product_id) is None:
            return False, "Product not found", None

        item = self.db.query(CartItem).filter_by(session_id=session_id, productID=product_id).first()
        if item:
            item.quantity += quantity
        else:
            item = CartItem(session_id=session_id, productID=product_id, quantity=quantity)
            self.db.add(item)
        self.db.commit()

        increment_counter("cart_items_added_total")
        self.logger.info("Cart updated", extra={"session_id": session_id, "product_id": product_id})
        return True, "Added to cart", item

    def update_quantity(self, item_id: int, quantity) -> Tuple[bool, str, Optional[CartItem]]:
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            return False, "Invalid quantity", None
        if quantity < 1:
            return False, "Invalid quantity", None

        item = self.db.get(CartItem, item_id)
        if item is None:
            return False, "Cart item not found", None

        item.quantity = quantity
        self.db.commit()
        return True, "Quantity updated", item

    def remove_item(self, item_id: int) -> Tuple[bool, str]:
        item = self.db.get(CartItem, item_id)
        if item is None:
            return False, "Cart item not found"
        self.db.delete(item)
        self.db.commit()
        return True, "Item removed"

    def clear_cart(self, session_id: str) -> int:
        removed = self.db.query(CartItem).filter_by(session_id=session_id).delete(synchronize_session=False)
        self.db.commit()
        return removed

    # ------------------------------------------------------------------
    # Wishlist
    # ------------------------------------------------------------------
    def get_wishlist(self, user_id: int) -> List[WishlistItem]:
        items = (
            self.db.query(WishlistItem)
            .filter_by(userID=user_id)
            .order_by(desc(WishlistItem.created_at), desc(WishlistItem.wishlistItemID))
            .all()
        )
        return [item for item in items if item.product is not None]

    def add_to_wishlist(self, user_id: int, product_id: str) -> Tuple[bool, str, Optional[WishlistItem]]:
        if not product_id or self.db.get(Product, product_id) is None:
            return False, "Product not found", None

        existing = self.db.query(WishlistItem).filter_by(userID=user_id, productID=product_id).first()
        if existing:
            return True, "Already in wishlist", existing

        item = WishlistItem(userID=user_id, productID=product_id)
        self.db.add(item)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent insert of the same pair
            self.db.rollback()
            existing = self.db.query(WishlistItem).filter_by(userID=user_id, productID=product_id).first()
            return True, "Already in wishlist", existing
        return True, "Added to wishlist", item

    def remove_from_wishlist(self, user_id: int, product_id: str) -> bool:
        item = self.db.query(WishlistItem).filter_by(userID=user_id, productID=product_id).first()
        if item is None:
            return False
        self.db.delete(item)
        self.db.commit()
        return True

    def is_in_wishlist(self, user_id: int, product_id: str) -> bool:
        return self.db.query(WishlistItem).filter_by(userID=user_id, productID=product_id).first() is not None
