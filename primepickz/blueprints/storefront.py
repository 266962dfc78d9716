from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from primepickz.database import get_db
from primepickz.services.cart_service import CartService
from primepickz.services.catalog_service import CatalogService
from primepickz.blueprints.serializers import (
    serialize_cart_item,
    serialize_category,
    serialize_deal,
    serialize_notification,
    serialize_product,
    serialize_review,
)

storefront_bp = Blueprint("storefront", __name__, url_prefix="/api")


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


def _get_cart_service() -> CartService:
    return CartService(get_db())


@storefront_bp.route("/products", methods=["GET"])
def list_products():
    products = _get_catalog_service().list_products(
        category=request.args.get("category"),
        search=request.args.get("search"),
    )
    return jsonify([serialize_product(p) for p in products])


@storefront_bp.route("/products/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product = _get_catalog_service().get_product(product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify(serialize_product(product))


@storefront_bp.route("/categories", methods=["GET"])
def list_categories():
    return jsonify([serialize_category(c) for c in _get_catalog_service().list_categories()])


@storefront_bp.route("/deals", methods=["GET"])
def list_deals():
    return jsonify([serialize_deal(d) for d in _get_catalog_service().list_deals()])


@storefront_bp.route("/reviews", methods=["GET"])
def list_reviews():
    reviews = _get_catalog_service().list_reviews(product_id=request.args.get("productId"))
    return jsonify([serialize_review(r) for r in reviews])


@storefront_bp.route("/reviews", methods=["POST"])
def create_review():
    payload = request.get_json(silent=True) or {}
    success, message, review = _get_catalog_service().create_review(payload)
    if not success:
        status_code = 404 if message == "Product not found" else 400
        return jsonify({"error": message}), status_code
    return jsonify(serialize_review(review)), 201


@storefront_bp.route("/notifications", methods=["GET"])
def list_notifications():
    notifications = _get_catalog_service().list_purchase_notifications()
    return jsonify([serialize_notification(n) for n in notifications])


# ---------------------------
# Cart
# ---------------------------


@storefront_bp.route("/cart", methods=["GET"])
def get_cart():
    items = _get_cart_service().get_cart(request.args.get("sessionId"))
    return jsonify([serialize_cart_item(item) for item in items])


@storefront_bp.route("/cart", methods=["POST"])
def add_to_cart():
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    success, message, item = _get_cart_service().add_to_cart(
        payload.get("sessionId"),
        payload.get("productId"),
        payload.get("quantity", 1),
    )
    if not success:
        status_code = 404 if message == "Product not found" else 400
        return jsonify({"error": message}), status_code
    return jsonify(serialize_cart_item(item)), 201


@storefront_bp.route("/cart/<int:item_id>", methods=["PATCH"])
def update_cart_item(item_id: int):
    payload = request.get_json(silent=True) or {}
    success, message, item = _get_cart_service().update_quantity(item_id, payload.get("quantity"))
    if not success:
        status_code = 404 if message == "Cart item not found" else 400
        return jsonify({"error": message}), status_code
    return jsonify(serialize_cart_item(item))


@storefront_bp.route("/cart/<int:item_id>", methods=["DELETE"])
def remove_cart_item(item_id: int):
    success, message = _get_cart_service().remove_item(item_id)
    if not success:
        return jsonify({"error": message}), 404
    return jsonify({"success": True, "message": message})
