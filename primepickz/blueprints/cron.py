from __future__ import annotations

import hmac
import logging

from flask import Blueprint, jsonify, request

from primepickz.config import Config
from primepickz.database import get_db
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor
from primepickz.services.reconciliation_service import ReconciliationService

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")
logger = logging.getLogger(__name__)


def _get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService(get_db())


def _get_sync_processor() -> CatalogSyncProcessor:
    return CatalogSyncProcessor(get_db())


def _authorized() -> bool:
    if not Config.CRON_SECRET:
        return True
    expected = f"Bearer {Config.CRON_SECRET}"
    return hmac.compare_digest(request.headers.get("Authorization", ""), expected)


@cron_bp.route("/reconciliation", methods=["GET", "POST"])
def reconciliation():
    if not _authorized():
        logger.warning("Rejected cron call with bad secret")
        return jsonify({"error": "Unauthorized"}), 401

    results = _get_reconciliation_service().run()
    return jsonify(results), 200 if results.get("success") else 500


@cron_bp.route("/process-pending", methods=["GET", "POST"])
def process_pending():
    if not _authorized():
        return jsonify({"error": "Unauthorized"}), 401
    try:
        limit = max(1, int(request.args.get("limit", 50)))
    except (TypeError, ValueError):
        limit = 50
    return jsonify(_get_sync_processor().process_pending(limit=limit))
