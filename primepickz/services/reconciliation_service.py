"""
Nightly reconciliation of the local catalog against Meta.

Products missing from Meta or carrying stale data are re-synced; items Meta
holds that no longer exist locally are deleted. The run is logged as a
RECONCILE entry and reported by email.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from primepickz.config import Config
from primepickz.models import MetaSyncLog, Product, SyncLogStatus, SyncOperation
from primepickz.observability import increment_counter, record_event, set_gauge, timed
from primepickz.services.alerting_service import (
    ALERT_RECONCILIATION_MISMATCH,
    AlertingService,
    DailySyncSummary,
    SyncAlert,
    get_alerting_service,
)
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor
from primepickz.services.meta_catalog_client import MetaCatalogClient, get_meta_catalog_client
from primepickz.services.meta_catalog_transformer import (
    has_product_changed,
    normalize_remote_product,
    transform_to_meta_product,
)

MISMATCH_ALERT_FLOOR = 5
MISMATCH_ALERT_RATIO = 0.05


def _empty_results() -> Dict[str, Any]:
    return {
        "success": False,
        "totalProducts": 0,
        "totalInMeta": 0,
        "missingInMeta": 0,
        "orphanedInMeta": 0,
        "staleInMeta": 0,
        "fixed": 0,
        "errors": 0,
        "durationMs": 0,
    }


class ReconciliationService:
    def __init__(
        self,
        db_session: Session,
        client: Optional[MetaCatalogClient] = None,
        processor: Optional[CatalogSyncProcessor] = None,
        alert_sender: Optional[AlertingService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.config = config
        self.client = client or get_meta_catalog_client()
        self.alerting = alert_sender or get_alerting_service()
        self.processor = processor or CatalogSyncProcessor(
            db_session, client=self.client, alert_sender=self.alerting, config=config
        )
        self.logger = logging.getLogger(__name__)

    def run(self) -> Dict[str, Any]:
        if not self.config.SYNC_ENABLED:
            self.logger.info("Sync disabled, skipping reconciliation")
            return {"success": True, "skipped": True, "reason": "Sync disabled"}

        results = _empty_results()
        config_valid, missing = self.client.validate_config()
        if not config_valid:
            self.logger.error("Reconciliation aborted, Meta API not configured", extra={"missing": missing})
            results["error"] = "Missing Meta API configuration"
            results["missing"] = missing
            return results

        with timed("catalog_reconciliation_ms") as timing:
            outcome = self._reconcile(results)
        results["durationMs"] = int(timing["duration_ms"])
        if outcome is not None:
            return outcome

        self.processor.log_operation(
            None,
            None,
            SyncOperation.RECONCILE,
            SyncLogStatus.PARTIAL if results["errors"] > 0 else SyncLogStatus.SUCCESS,
            request_payload=results,
            error_message=f"{results['errors']} errors during reconciliation" if results["errors"] else None,
            duration_ms=results["durationMs"],
        )

        self._send_daily_summary(results)
        self._check_mismatch(results)

        increment_counter("catalog_reconciliation_total", labels={"status": "partial" if results["errors"] else "success"})
        set_gauge("catalog_missing_in_meta", results["missingInMeta"])
        set_gauge("catalog_orphaned_in_meta", results["orphanedInMeta"])
        record_event("catalog_reconciliation_completed", dict(results))
        self.logger.info("Reconciliation complete", extra={"results": results})
        return results

    def _reconcile(self, results: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        products = self.db.query(Product).all()
        results["totalProducts"] = len(products)

        listing = self.client.list_all_products()
        if not listing.success:
            self.logger.error("Failed to list Meta catalog", extra={"error": listing.error})
            increment_counter("catalog_reconciliation_total", labels={"status": "failed"})
            results["error"] = "Failed to fetch Meta catalog"
            results["details"] = listing.error
            return results

        meta_products = (listing.data or {}).get("products") or []
        results["totalInMeta"] = len(meta_products)
        meta_by_retailer = {
            item["retailer_id"]: normalize_remote_product(item)
            for item in meta_products
            if item.get("retailer_id")
        }
        local_ids = {product.productID for product in products}

        missing: List[str] = []
        stale: List[str] = []
        for product in products:
            remote = meta_by_retailer.get(product.productID)
            if remote is None:
                missing.append(product.productID)
            elif has_product_changed(transform_to_meta_product(product, site_url=self.config.SITE_URL), remote):
                stale.append(product.productID)
        orphaned = [retailer_id for retailer_id in meta_by_retailer if retailer_id not in local_ids]

        results["missingInMeta"] = len(missing)
        results["staleInMeta"] = len(stale)
        results["orphanedInMeta"] = len(orphaned)
        self.logger.info(
            "Reconciliation diff computed",
            extra={"missing": len(missing), "stale": len(stale), "orphaned": len(orphaned)},
        )

        to_sync = list(dict.fromkeys(missing + stale))
        batch_size = max(1, int(self.config.RECONCILIATION_BATCH_SIZE))
        for start in range(0, len(to_sync), batch_size):
            for product_id in to_sync[start:start + batch_size]:
                result = self.processor.sync_product(product_id, SyncOperation.UPDATE)
                if result.success:
                    results["fixed"] += 1
                else:
                    results["errors"] += 1

        for retailer_id in orphaned:
            try:
                response = self.client.delete_product(retailer_id)
            except Exception:
                self.logger.exception("Failed to delete orphaned product", extra={"retailer_id": retailer_id})
                results["errors"] += 1
                continue
            if response.success:
                results["fixed"] += 1
            else:
                results["errors"] += 1

        results["success"] = True
        return None

    def _send_daily_summary(self, results: Dict[str, Any]) -> None:
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        rows = (
            self.db.query(MetaSyncLog.status, func.count(MetaSyncLog.logID))
            .filter(MetaSyncLog.created_at >= since, MetaSyncLog.operation != SyncOperation.RECONCILE)
            .group_by(MetaSyncLog.status)
            .all()
        )
        counts = {SyncLogStatus(status): count for status, count in rows}
        self.alerting.send_daily_sync_summary(DailySyncSummary(
            total_products=results["totalProducts"],
            synced_today=counts.get(SyncLogStatus.SUCCESS, 0),
            failed_today=counts.get(SyncLogStatus.FAILED, 0),
            dead_letter_count=self.processor.count_dead_letter_items(),
            reconciliation_results={
                "missingInMeta": results["missingInMeta"],
                "orphanedInMeta": results["orphanedInMeta"],
                "fixed": results["fixed"],
            },
        ))

    def _check_mismatch(self, results: Dict[str, Any]) -> None:
        mismatches = results["missingInMeta"] + results["orphanedInMeta"]
        threshold = max(MISMATCH_ALERT_FLOOR, results["totalProducts"] * MISMATCH_ALERT_RATIO)
        if mismatches > threshold:
            self.alerting.send_sync_alert(SyncAlert(
                type=ALERT_RECONCILIATION_MISMATCH,
                details={
                    "missingInMeta": results["missingInMeta"],
                    "orphanedInMeta": results["orphanedInMeta"],
                    "staleInMeta": results["staleInMeta"],
                },
            ))
