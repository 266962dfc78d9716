from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Blueprint, g, jsonify, request

from primepickz.database import get_db
from primepickz.services.admin_service import AdminService
from primepickz.services.auth_service import AuthService
from primepickz.services.catalog_service import CatalogService
from primepickz.services.order_service import OrderService
from primepickz.blueprints.guards import require_admin
from primepickz.blueprints.serializers import (
    serialize_category,
    serialize_deal,
    serialize_order,
    serialize_product,
    serialize_sync_log,
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _get_admin_service() -> AdminService:
    return AdminService(get_db(), actor=getattr(g, "admin_username", None) or "admin")


@admin_bp.route("/login", methods=["POST"])
def admin_login():
    payload = request.get_json(silent=True) or {}
    success, message, token = AuthService(get_db()).admin_login(payload.get("username"), payload.get("password"))
    if not success:
        status_code = 429 if message.startswith("Too many") else 401
        return jsonify({"error": message}), status_code
    return jsonify({"success": True, "token": token})


@admin_bp.route("/stats", methods=["GET"])
@require_admin
def stats():
    data = _get_admin_service().get_stats()
    data["recentSyncLogs"] = [serialize_sync_log(log) for log in data["recentSyncLogs"]]
    return jsonify(data)


@admin_bp.route("/products", methods=["GET"])
@require_admin
def list_products():
    try:
        products = _get_admin_service().list_products(
            search=request.args.get("search"),
            category=request.args.get("category"),
            sync_status=request.args.get("syncStatus"),
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify([serialize_product(p) for p in products])


@admin_bp.route("/products", methods=["POST"])
@require_admin
def create_product():
    payload = request.get_json(silent=True) or {}
    success, message, product = _get_admin_service().create_product(payload)
    if not success:
        return jsonify({"error": message}), 400
    return jsonify(serialize_product(product)), 201


@admin_bp.route("/products/<product_id>", methods=["PUT"])
@require_admin
def update_product(product_id: str):
    payload = request.get_json(silent=True) or {}
    success, message, product = _get_admin_service().update_product(product_id, payload)
    if not success:
        status_code = 404 if message == "Product not found" else 400
        return jsonify({"error": message}), status_code
    return jsonify(serialize_product(product))


@admin_bp.route("/products/<product_id>", methods=["DELETE"])
@require_admin
def delete_product(product_id: str):
    success, message, sync_result = _get_admin_service().delete_product(product_id)
    if not success:
        return jsonify({"error": message}), 404
    response: Dict[str, Any] = {"success": True, "message": message}
    if sync_result is not None:
        response["catalogSync"] = sync_result.to_dict()
    return jsonify(response)


@admin_bp.route("/clear-products", methods=["POST"])
@require_admin
def clear_products():
    removed = _get_admin_service().clear_products()
    return jsonify({"success": True, "removed": removed})


@admin_bp.route("/orders", methods=["GET"])
@require_admin
def list_orders():
    return jsonify([serialize_order(o) for o in _get_admin_service().list_orders()])


@admin_bp.route("/orders/<int:order_id>", methods=["PATCH"])
@require_admin
def update_order(order_id: int):
    payload = request.get_json(silent=True) or {}
    status: Optional[str] = payload.get("status")
    if not status:
        return jsonify({"error": "status is required"}), 400
    success, message, order = OrderService(get_db()).update_order_status(
        order_id, status, payment_status=payload.get("paymentStatus")
    )
    if not success:
        status_code = 404 if message == "Order not found" else 400
        return jsonify({"error": message}), status_code
    return jsonify(serialize_order(order))


@admin_bp.route("/categories", methods=["POST"])
@require_admin
def create_category():
    payload = request.get_json(silent=True) or {}
    success, message, category = CatalogService(get_db()).create_category(
        payload.get("name"),
        payload.get("imageUrl"),
        slug=payload.get("slug"),
        description=payload.get("description"),
    )
    if not success:
        return jsonify({"error": message}), 400
    return jsonify(serialize_category(category)), 201


@admin_bp.route("/deals", methods=["POST"])
@require_admin
def create_deal():
    payload = request.get_json(silent=True) or {}
    if not payload.get("productId") or not payload.get("title") or not payload.get("endsAt"):
        return jsonify({"error": "productId, title and endsAt are required"}), 400
    try:
        ends_at = datetime.fromisoformat(str(payload["endsAt"]).replace("Z", "+00:00"))
    except ValueError:
        return jsonify({"error": "endsAt must be an ISO 8601 timestamp"}), 400
    if ends_at.tzinfo is None:
        ends_at = ends_at.replace(tzinfo=timezone.utc)

    success, message, deal = CatalogService(get_db()).create_deal(payload["productId"], payload["title"], ends_at)
    if not success:
        return jsonify({"error": message}), 404
    return jsonify(serialize_deal(deal)), 201
