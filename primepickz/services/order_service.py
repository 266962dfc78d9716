from __future__ import annotations

import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session, selectinload

from primepickz.config import Config
from primepickz.models import Address, Order, OrderItem, OrderStatus, PaymentStatus, Product
from primepickz.observability import increment_counter, record_event
from primepickz.services.catalog_service import clean_text

ORDER_NUMBER_PREFIX = "PP"
_BASE36 = string.digits + string.ascii_uppercase
ADDRESS_FIELDS = (
    "full_name",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "pincode",
    "country",
)
REQUIRED_ADDRESS_FIELDS = ("full_name", "address_line1", "city", "state", "pincode")
ADDRESS_NOT_FOUND = "Address not found or unauthorized"

# camelCase request keys accepted for address payloads
_ADDRESS_ALIASES = {
    "fullName": "full_name",
    "addressLine1": "address_line1",
    "addressLine2": "address_line2",
    "postalCode": "pincode",
    "zip": "pincode",
}


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{ORDER_NUMBER_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def _normalize_address_data(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in (data or {}).items():
        field = _ADDRESS_ALIASES.get(key, key)
        if field in ADDRESS_FIELDS:
            normalized[field] = clean_text(value)
    if "isDefault" in (data or {}) or "is_default" in (data or {}):
        normalized["is_default"] = bool(data.get("isDefault", data.get("is_default")))
    return normalized


class OrderService:
    """Addresses, order placement and order lookups."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------
    def list_addresses(self, user_id: int) -> List[Address]:
        return (
            self.db.query(Address)
            .filter_by(userID=user_id)
            .order_by(desc(Address.is_default), desc(Address.created_at))
            .all()
        )

    def create_address(self, user_id: Optional[int], data: Dict[str, Any],
                       owner_key: Optional[str] = None) -> Tuple[bool, str, Optional[Address]]:
        fields = _normalize_address_data(data)
        missing = [name for name in REQUIRED_ADDRESS_FIELDS if not fields.get(name)]
        if missing:
            return False, f"Missing required address fields: {', '.join(missing)}", None

        is_default = fields.pop("is_default", False)
        address = Address(
            userID=user_id,
            owner_key=owner_key or str(user_id),
            is_default=False,
            **fields,
        )
        self.db.add(address)
        self.db.flush()
        if is_default and user_id is not None:
            self._apply_default(user_id, address)
        self.db.commit()
        return True, "Address saved", address

    def _get_owned_address(self, user_id: int, address_id: int) -> Optional[Address]:
        address = self.db.get(Address, address_id)
        if address is None or not address.belongs_to(user_id):
            return None
        return address

    def update_address(self, user_id: int, address_id: int,
                       data: Dict[str, Any]) -> Tuple[bool, str, Optional[Address]]:
        address = self._get_owned_address(user_id, address_id)
        if address is None:
            return False, ADDRESS_NOT_FOUND, None

        fields = _normalize_address_data(data)
        is_default = fields.pop("is_default", None)
        for name, value in fields.items():
            if name in REQUIRED_ADDRESS_FIELDS and not value:
                return False, f"{name} cannot be empty", None
            setattr(address, name, value)
        if is_default:
            self._apply_default(user_id, address)
        elif is_default is False:
            address.is_default = False
        self.db.commit()
        return True, "Address updated", address

    def delete_address(self, user_id: int, address_id: int) -> Tuple[bool, str]:
        address = self._get_owned_address(user_id, address_id)
        if address is None:
            return False, ADDRESS_NOT_FOUND
        # Past orders keep their items and totals but lose the address link
        (
            self.db.query(Order)
            .filter(Order.addressID == address.addressID)
            .update({Order.addressID: None}, synchronize_session="fetch")
        )
        self.db.delete(address)
        self.db.commit()
        return True, "Address deleted"

    def set_default_address(self, user_id: int, address_id: int) -> Tuple[bool, str, Optional[Address]]:
        address = self._get_owned_address(user_id, address_id)
        if address is None:
            return False, ADDRESS_NOT_FOUND, None
        self._apply_default(user_id, address)
        self.db.commit()
        return True, "Default address updated", address

    def _apply_default(self, user_id: int, address: Address) -> None:
        (
            self.db.query(Address)
            .filter(Address.userID == user_id, Address.addressID != address.addressID)
            .update({Address.is_default: False}, synchronize_session=False)
        )
        address.is_default = True

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def _price_items(self, items: Iterable[Any]) -> Tuple[bool, str, List[OrderItem], Decimal]:
        order_items: List[OrderItem] = []
        total = Decimal("0")
        for entry in items or []:
            if not isinstance(entry, dict):
                return False, "Invalid item", [], total
            product_id = entry.get("productId") or entry.get("product_id")
            try:
                quantity = int(entry.get("quantity", 1))
            except (TypeError, ValueError):
                return False, "Invalid quantity", [], total
            if quantity < 1:
                return False, "Invalid quantity", [], total

            product = self.db.get(Product, product_id) if isinstance(product_id, str) and product_id else None
            if product is None:
                return False, f"Product {product_id} not found", [], total

            unit_price = Decimal(str(product.price))
            total += unit_price * quantity
            order_items.append(OrderItem(
                productID=product.productID,
                product_name=product.name,
                product_image_url=product.image_url,
                quantity=quantity,
                price=unit_price,
            ))

        if not order_items:
            return False, "Order must contain at least one item", [], total
        return True, "", order_items, total

    def _build_order(
        self,
        user_id: Optional[int],
        email: Optional[str],
        address: Address,
        order_items: List[OrderItem],
        total: Decimal,
    ) -> Order:
        order = Order(
            userID=user_id,
            email=(email or "").strip().lower() or None,
            order_number=generate_order_number(),
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            total_amount=total,
            addressID=address.addressID,
            items=order_items,
        )
        self.db.add(order)
        self.db.commit()

        increment_counter("orders_created_total")
        record_event("order_created", {"order_id": order.orderID, "order_number": order.order_number})
        self.logger.info("Order created", extra={"order_id": order.orderID, "total": str(total)})
        return order

    def create_order(
        self,
        user_id: int,
        email: Optional[str],
        shipping_address_id: int,
        items: Iterable[Any],
    ) -> Tuple[bool, str, Optional[Order]]:
        address = self._get_owned_address(user_id, shipping_address_id) if shipping_address_id else None
        if address is None:
            return False, ADDRESS_NOT_FOUND, None
        success, message, order_items, total = self._price_items(items)
        if not success:
            return False, message, None
        return True, "Order created", self._build_order(user_id, email, address, order_items, total)

    def place_checkout_order(
        self,
        items: Iterable[Any],
        customer_email: Optional[str],
        shipping_address: Optional[Dict[str, Any]],
        session_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        """Create the pending order a payment provider session is opened for.

        Items are priced before any address row is written, so a rejected
        checkout leaves nothing behind.
        """
        if not customer_email or "@" not in customer_email:
            return False, "A valid email is required", None
        if shipping_address is not None and not isinstance(shipping_address, dict):
            return False, "Invalid shipping address", None

        success, message, order_items, total = self._price_items(items)
        if not success:
            return False, message, None

        address_id = (shipping_address or {}).get("id")
        if address_id and user_id is not None:
            address = self._get_owned_address(user_id, address_id)
            if address is None:
                return False, ADDRESS_NOT_FOUND, None
        else:
            owner_key = str(user_id) if user_id is not None else (session_id or self.config.DEFAULT_CART_SESSION)
            success, message, address = self.create_address(user_id, shipping_address or {}, owner_key=owner_key)
            if not success:
                return False, message, None

        return True, "Order created", self._build_order(user_id, customer_email, address, order_items, total)

    def _order_query(self):
        return self.db.query(Order).options(selectinload(Order.items), selectinload(Order.shipping_address))

    def get_user_orders(self, user_id: int) -> List[Order]:
        return self._order_query().filter(Order.userID == user_id).order_by(desc(Order.created_at)).all()

    def get_order(self, order_id: int) -> Optional[Order]:
        return self._order_query().filter(Order.orderID == order_id).first()

    def get_order_by_number(self, order_number: str) -> Optional[Order]:
        return self._order_query().filter(Order.order_number == order_number).first()

    def get_orders_by_email(self, email: str) -> List[Order]:
        return (
            self._order_query()
            .filter(func.lower(Order.email) == (email or "").strip().lower())
            .order_by(desc(Order.created_at), desc(Order.orderID))
            .all()
        )

    def update_order_status(
        self,
        order_id: int,
        status: OrderStatus | str,
        payment_status: PaymentStatus | str | None = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        try:
            status_enum = status if isinstance(status, OrderStatus) else OrderStatus(status)
            payment_enum = None
            if payment_status is not None:
                payment_enum = (
                    payment_status if isinstance(payment_status, PaymentStatus) else PaymentStatus(payment_status)
                )
        except ValueError as exc:
            return False, str(exc), None

        order = self.db.get(Order, order_id)
        if order is None:
            return False, "Order not found", None

        order.status = status_enum
        if payment_enum is not None:
            order.payment_status = payment_enum
        self.db.commit()
        record_event("order_status_changed", {"order_id": order_id, "status": status_enum.value})
        return True, "Order updated", order

    def list_all_orders(self) -> List[Order]:
        return self._order_query().order_by(desc(Order.created_at), desc(Order.orderID)).all()
