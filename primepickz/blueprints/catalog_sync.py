from __future__ import annotations

from flask import Blueprint, Response, g, jsonify, request

from primepickz.database import get_db
from primepickz.services.catalog_export_service import export_catalog_csv
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor, parse_operation
from primepickz.models import SyncOperation
from primepickz.blueprints.guards import require_admin
from primepickz.blueprints.serializers import serialize_dead_letter, serialize_sync_log, serialize_sync_record

catalog_sync_bp = Blueprint("catalog_sync", __name__, url_prefix="/api/catalog-sync")


def _get_sync_processor() -> CatalogSyncProcessor:
    return CatalogSyncProcessor(get_db())


def _int_arg(name: str, default: int) -> int:
    try:
        return max(1, int(request.args.get(name, default)))
    except (TypeError, ValueError):
        return default


def _result_response(result):
    return jsonify(result.to_dict()), 200 if result.success else 500


@catalog_sync_bp.route("/status", methods=["GET"])
@require_admin
def sync_status():
    status = _get_sync_processor().get_sync_status(limit=_int_arg("limit", 100))
    status["items"] = [serialize_sync_record(record) for record in status["items"]]
    return jsonify(status)


@catalog_sync_bp.route("/sync", methods=["POST"])
@require_admin
def sync_product():
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("productId")
    if not product_id:
        return jsonify({"error": "productId is required"}), 400
    try:
        operation = parse_operation(payload.get("operation") or SyncOperation.UPDATE.value)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    return _result_response(_get_sync_processor().sync_product(product_id, operation))


@catalog_sync_bp.route("/sync-all", methods=["POST"])
@require_admin
def sync_all():
    payload = request.get_json(silent=True) or {}
    try:
        batch_size = max(1, int(payload.get("batchSize", 50)))
    except (TypeError, ValueError):
        return jsonify({"error": "batchSize must be an integer"}), 400
    return jsonify(_get_sync_processor().sync_all_products(batch_size=batch_size))


@catalog_sync_bp.route("/dead-letter", methods=["GET"])
@require_admin
def dead_letter():
    items = _get_sync_processor().get_dead_letter_items(limit=_int_arg("limit", 50))
    return jsonify({"items": [serialize_dead_letter(item) for item in items], "total": len(items)})


@catalog_sync_bp.route("/retry", methods=["POST"])
@require_admin
def retry():
    payload = request.get_json(silent=True) or {}
    processor = _get_sync_processor()

    if payload.get("id") is not None:
        try:
            dead_letter_id = int(payload["id"])
        except (TypeError, ValueError):
            return jsonify({"error": "id must be an integer"}), 400
        result = processor.retry_dead_letter_item(dead_letter_id, resolved_by=g.get("admin_username"))
        if result is None:
            return jsonify({"error": "Dead letter item not found"}), 404
        return _result_response(result)

    if payload.get("productId"):
        return _result_response(processor.sync_product(payload["productId"], SyncOperation.UPDATE))

    return jsonify({"error": "id or productId is required"}), 400


@catalog_sync_bp.route("/logs", methods=["GET"])
@require_admin
def logs():
    processor = _get_sync_processor()
    limit = _int_arg("limit", 20)
    product_id = request.args.get("productId")
    if product_id:
        entries = processor.get_product_sync_logs(product_id, limit=limit)
    else:
        entries = processor.get_recent_sync_logs(limit=limit)
    return jsonify({"logs": [serialize_sync_log(entry) for entry in entries]})


@catalog_sync_bp.route("/verify", methods=["GET"])
@require_admin
def verify():
    client = _get_sync_processor().client
    valid, missing = client.validate_config()
    if not valid:
        return jsonify({"connected": False, "error": f"Missing configuration: {', '.join(missing)}"}), 400

    response = client.verify_catalog_access()
    if not response.success:
        return jsonify({"connected": False, "error": response.error_message or "Meta API error"}), 400
    return jsonify({"connected": True, "catalog": response.data})


@catalog_sync_bp.route("/export-csv", methods=["GET"])
@require_admin
def export_csv():
    filename, body = export_catalog_csv(get_db())
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
