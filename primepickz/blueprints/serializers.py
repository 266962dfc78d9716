"""JSON shapes shared by the API blueprints (camelCase, storefront contract)."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from primepickz.models import (
    Address,
    CartItem,
    Category,
    Deal,
    MetaCatalogSync,
    MetaSyncDeadLetter,
    MetaSyncLog,
    Order,
    OrderItem,
    Product,
    PurchaseNotification,
    Review,
    User,
    WishlistItem,
)


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _money(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else float(value)


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.productID,
        "name": product.name,
        "description": product.description,
        "price": _money(product.price),
        "originalPrice": _money(product.original_price),
        "discount": product.discount or 0,
        "category": product.category,
        "imageUrl": product.image_url,
        "additionalImages": product.additional_images or [],
        "rating": _money(product.rating) or 0,
        "reviewCount": product.review_count or 0,
        "inStock": bool(product.in_stock),
        "stockCount": product.stock_count,
        "tags": product.tags or [],
        "badge": product.badge,
        "freeShipping": bool(product.free_shipping),
        "createdAt": serialize_dt(product.created_at),
        "updatedAt": serialize_dt(product.updated_at),
    }


def serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "id": category.categoryID,
        "name": category.name,
        "slug": category.slug,
        "imageUrl": category.image_url,
        "description": category.description,
    }


def serialize_deal(deal: Deal) -> Dict[str, Any]:
    return {
        "id": deal.dealID,
        "productId": deal.productID,
        "title": deal.title,
        "endsAt": serialize_dt(deal.ends_at),
        "viewCount": deal.view_count or 0,
        "product": serialize_product(deal.product),
    }


def serialize_review(review: Review) -> Dict[str, Any]:
    return {
        "id": review.reviewID,
        "productId": review.productID,
        "customerName": review.customer_name,
        "customerLocation": review.customer_location,
        "rating": review.rating,
        "title": review.title,
        "comment": review.comment,
        "imageUrl": review.image_url,
        "date": review.date,
        "verified": bool(review.verified),
    }


def serialize_notification(notification: PurchaseNotification) -> Dict[str, Any]:
    return {
        "id": notification.notificationID,
        "customerName": notification.customer_name,
        "location": notification.location,
        "productName": notification.product_name,
        "timestamp": notification.timestamp,
    }


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.cartItemID,
        "productId": item.productID,
        "quantity": item.quantity,
        "sessionId": item.session_id,
        "product": serialize_product(item.product),
    }


def serialize_wishlist_item(item: WishlistItem) -> Dict[str, Any]:
    return {
        "id": item.wishlistItemID,
        "productId": item.productID,
        "createdAt": serialize_dt(item.created_at),
        "product": serialize_product(item.product),
    }


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.userID,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": enum_value(user.role),
        "emailVerified": bool(user.email_verified),
    }


def serialize_address(address: Optional[Address]) -> Optional[Dict[str, Any]]:
    if address is None:
        return None
    return {
        "id": address.addressID,
        "fullName": address.full_name,
        "phone": address.phone,
        "addressLine1": address.address_line1,
        "addressLine2": address.address_line2,
        "city": address.city,
        "state": address.state,
        "pincode": address.pincode,
        "country": address.country,
        "isDefault": bool(address.is_default),
    }


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.orderItemID,
        "productId": item.productID,
        "productName": item.product_name,
        "productImageUrl": item.product_image_url,
        "quantity": item.quantity,
        "price": _money(item.price),
        "lineTotal": item.line_total,
    }


def serialize_order(order: Order, compact: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": order.orderID,
        "orderNumber": order.order_number,
        "status": enum_value(order.status),
        "paymentStatus": enum_value(order.payment_status),
        "totalAmount": _money(order.total_amount),
        "createdAt": serialize_dt(order.created_at),
    }
    if compact:
        payload["items"] = [
            {"name": item.product_name, "quantity": item.quantity, "price": _money(item.price)}
            for item in order.items
        ]
        return payload

    payload.update({
        "userId": order.userID,
        "email": order.email,
        "paymentMethod": order.payment_method,
        "updatedAt": serialize_dt(order.updated_at),
        "items": [serialize_order_item(item) for item in order.items],
        "shippingAddress": serialize_address(order.shipping_address),
    })
    return payload


# ---------------------------
# Catalog sync
# ---------------------------


def serialize_sync_record(record: MetaCatalogSync) -> Dict[str, Any]:
    return {
        "productId": record.productID,
        "retailerId": record.retailer_id,
        "metaProductId": record.meta_product_id,
        "status": enum_value(record.sync_status),
        "lastSyncedAt": serialize_dt(record.last_synced_at),
        "lastError": record.last_error,
        "retryCount": record.retry_count,
    }


def serialize_sync_log(log: MetaSyncLog) -> Dict[str, Any]:
    return {
        "id": log.logID,
        "productId": log.productID,
        "retailerId": log.retailer_id,
        "operation": enum_value(log.operation),
        "status": enum_value(log.status),
        "errorMessage": log.error_message,
        "errorCode": log.error_code,
        "durationMs": log.duration_ms,
        "createdAt": serialize_dt(log.created_at),
    }


def serialize_dead_letter(item: MetaSyncDeadLetter) -> Dict[str, Any]:
    return {
        "id": item.deadLetterID,
        "productId": item.productID,
        "retailerId": item.retailer_id,
        "operation": enum_value(item.operation),
        "errorMessage": item.error_message,
        "errorCode": item.error_code,
        "retryCount": item.retry_count,
        "maxRetries": item.max_retries,
        "lastAttemptAt": serialize_dt(item.last_attempt_at),
        "createdAt": serialize_dt(item.created_at),
    }
