from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from primepickz.database import get_db
from primepickz.services.auth_service import AuthService
from primepickz.services.cart_service import CartService
from primepickz.services.order_service import ADDRESS_NOT_FOUND, OrderService
from primepickz.blueprints.guards import require_user
from primepickz.blueprints.serializers import (
    serialize_address,
    serialize_order,
    serialize_user,
    serialize_wishlist_item,
)

account_bp = Blueprint("account", __name__, url_prefix="/api")


def _get_auth_service() -> AuthService:
    return AuthService(get_db())


def _get_order_service() -> OrderService:
    return OrderService(get_db())


def _get_cart_service() -> CartService:
    return CartService(get_db())


# ---------------------------
# Auth
# ---------------------------


@account_bp.route("/auth/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    success, message, user = _get_auth_service().register(
        payload.get("email"),
        payload.get("password"),
        first_name=payload.get("firstName"),
        last_name=payload.get("lastName"),
    )
    if not success:
        status_code = 409 if "already exists" in message else 400
        return jsonify({"error": message}), status_code
    return jsonify({"success": True, "user": serialize_user(user)}), 201


@account_bp.route("/auth/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    success, message, result = _get_auth_service().login(
        payload.get("email"),
        payload.get("password"),
        remember_me=bool(payload.get("rememberMe")),
    )
    if not success:
        status_code = 429 if message.startswith("Too many") else 401
        return jsonify({"error": message}), status_code
    return jsonify({"success": True, "token": result["token"], "user": serialize_user(result["user"])})


@account_bp.route("/auth/me", methods=["GET"])
@require_user
def me():
    return jsonify({"user": serialize_user(g.current_user)})


# ---------------------------
# Wishlist
# ---------------------------


@account_bp.route("/wishlist", methods=["GET"])
@require_user
def get_wishlist():
    items = _get_cart_service().get_wishlist(g.current_user_id)
    return jsonify({"items": [serialize_wishlist_item(item) for item in items]})


@account_bp.route("/wishlist", methods=["POST"])
@require_user
def add_to_wishlist():
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("productId")
    if not product_id:
        return jsonify({"error": "productId is required"}), 400
    success, message, item = _get_cart_service().add_to_wishlist(g.current_user_id, product_id)
    if not success:
        return jsonify({"error": message}), 404
    return jsonify({"success": True, "message": message, "item": serialize_wishlist_item(item)})


@account_bp.route("/wishlist/<product_id>", methods=["DELETE"])
@require_user
def remove_from_wishlist(product_id: str):
    removed = _get_cart_service().remove_from_wishlist(g.current_user_id, product_id)
    if not removed:
        return jsonify({"error": "Item not in wishlist"}), 404
    return jsonify({"success": True})


@account_bp.route("/wishlist/<product_id>", methods=["GET"])
@require_user
def check_wishlist(product_id: str):
    return jsonify({"inWishlist": _get_cart_service().is_in_wishlist(g.current_user_id, product_id)})


# ---------------------------
# Addresses
# ---------------------------


def _address_response(success: bool, message: str, address, created: bool = False):
    if not success:
        status_code = 404 if message == ADDRESS_NOT_FOUND else 400
        return jsonify({"error": message}), status_code
    return jsonify({"success": True, "address": serialize_address(address)}), 201 if created else 200


@account_bp.route("/addresses", methods=["GET"])
@require_user
def list_addresses():
    addresses = _get_order_service().list_addresses(g.current_user_id)
    return jsonify({"addresses": [serialize_address(a) for a in addresses]})


@account_bp.route("/addresses", methods=["POST"])
@require_user
def create_address():
    payload = request.get_json(silent=True) or {}
    success, message, address = _get_order_service().create_address(g.current_user_id, payload)
    return _address_response(success, message, address, created=True)


@account_bp.route("/addresses/<int:address_id>", methods=["PUT"])
@require_user
def update_address(address_id: int):
    payload = request.get_json(silent=True) or {}
    success, message, address = _get_order_service().update_address(g.current_user_id, address_id, payload)
    return _address_response(success, message, address)


@account_bp.route("/addresses/<int:address_id>", methods=["DELETE"])
@require_user
def delete_address(address_id: int):
    success, message = _get_order_service().delete_address(g.current_user_id, address_id)
    if not success:
        return jsonify({"error": message}), 404
    return jsonify({"success": True})


@account_bp.route("/addresses/<int:address_id>/default", methods=["POST"])
@require_user
def set_default_address(address_id: int):
    success, message, address = _get_order_service().set_default_address(g.current_user_id, address_id)
    return _address_response(success, message, address)


# ---------------------------
# Orders
# ---------------------------


@account_bp.route("/orders", methods=["POST"])
@require_user
def create_order():
    payload = request.get_json(silent=True) or {}
    items = payload.get("items")
    address_id = payload.get("shippingAddressId")
    if not isinstance(items, list) or not items or not address_id:
        return jsonify({"error": "items and shippingAddressId are required"}), 400

    success, message, order = _get_order_service().create_order(
        g.current_user_id,
        payload.get("email") or g.current_user.email,
        address_id,
        items,
    )
    if not success:
        status_code = 404 if message == ADDRESS_NOT_FOUND else 400
        return jsonify({"error": message}), status_code
    return jsonify({"success": True, "order": serialize_order(order)}), 201


@account_bp.route("/orders", methods=["GET"])
def orders_by_email():
    email = request.args.get("email")
    if not email:
        return jsonify({"error": "email is required"}), 400
    orders = _get_order_service().get_orders_by_email(email)
    return jsonify({"orders": [serialize_order(o, compact=True) for o in orders]})


@account_bp.route("/orders/mine", methods=["GET"])
@require_user
def my_orders():
    orders = _get_order_service().get_user_orders(g.current_user_id)
    return jsonify({"orders": [serialize_order(o) for o in orders]})


@account_bp.route("/orders/<int:order_id>", methods=["GET"])
@require_user
def get_order(order_id: int):
    order = _get_order_service().get_order(order_id)
    if order is None or order.userID != g.current_user_id:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": serialize_order(order)})
