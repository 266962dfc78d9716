from __future__ import annotations

from flask import Blueprint, jsonify, request

from primepickz.database import get_db
from primepickz.services.auth_service import AuthService, extract_bearer_token
from primepickz.services.cart_service import CartService
from primepickz.services.order_service import OrderService
from primepickz.services.payment_webhook_service import PaymentWebhookService
from primepickz.blueprints.serializers import serialize_order

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")


def _get_webhook_service() -> PaymentWebhookService:
    return PaymentWebhookService(get_db())


@payments_bp.route("/checkout", methods=["POST"])
def checkout():
    payload = request.get_json(silent=True) or {}
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return jsonify({"error": "Cart is empty"}), 400
    shipping_address = payload.get("shippingAddress") or {}
    if not isinstance(shipping_address, dict):
        return jsonify({"error": "Invalid shipping address"}), 400

    # Signed-in shoppers get the order attached to their account
    user = None
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token:
        user = AuthService(get_db()).get_user_from_token(token)

    success, message, order = OrderService(get_db()).place_checkout_order(
        items,
        payload.get("customerEmail"),
        shipping_address,
        session_id=payload.get("sessionId"),
        user_id=user.userID if user else None,
    )
    if not success:
        return jsonify({"error": message}), 400
    if payload.get("sessionId"):
        CartService(get_db()).clear_cart(payload["sessionId"])
    return jsonify({
        "success": True,
        "orderId": order.orderID,
        "orderNumber": order.order_number,
        "totalAmount": float(order.total_amount),
    }), 201


@payments_bp.route("/webhook", methods=["POST"])
def webhook():
    success, message, result = _get_webhook_service().handle(
        request.get_data(),
        request.headers.get("stripe-signature"),
    )
    if not success:
        return jsonify({"error": message}), 400
    return jsonify(result)


@payments_bp.route("/orders/<order_number>", methods=["GET"])
def order_confirmation(order_number: str):
    order = OrderService(get_db()).get_order_by_number(order_number)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"success": True, "order": serialize_order(order)})
