"""
Catalog sync processor: mirrors local products into the Meta catalog.

Every attempt is written to ``MetaSyncLog``; per-product state lives in
``MetaCatalogSync``. A product that keeps failing is parked in
``MetaSyncDeadLetter`` once its failure count reaches ``SYNC_MAX_RETRIES``
and an alert goes out. Dead-letter items are retried manually; any later
successful sync or delete of the product resolves them.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from primepickz.config import Config
from primepickz.models import (
    MetaCatalogSync,
    MetaSyncDeadLetter,
    MetaSyncLog,
    Product,
    SyncLogStatus,
    SyncOperation,
    SyncStatus,
)
from primepickz.observability import increment_counter, observe_latency, record_event
from primepickz.services.alerting_service import (
    ALERT_AUTH_ERROR,
    ALERT_RATE_LIMIT,
    ALERT_SYNC_FAILURE,
    AlertingService,
    SyncAlert,
    get_alerting_service,
)
from primepickz.services.meta_catalog_client import (
    AUTH_ERROR_CODES,
    RATE_LIMIT_ERROR_CODES,
    MetaCatalogClient,
    get_meta_catalog_client,
)
from primepickz.services.meta_catalog_transformer import transform_to_meta_product, validate_for_meta

ERROR_CONFIG = "CONFIG_ERROR"
ERROR_NOT_FOUND = "NOT_FOUND"
ERROR_VALIDATION = "VALIDATION_ERROR"
ERROR_EXCEPTION = "EXCEPTION"
ERROR_UNKNOWN = "UNKNOWN"

AUTO_RESOLVED_BY = "sync"

SYNCABLE_OPERATIONS = (SyncOperation.CREATE, SyncOperation.UPDATE, SyncOperation.DELETE)


def parse_operation(value: Any) -> SyncOperation:
    """Coerce user input to a per-product operation, rejecting RECONCILE."""
    try:
        operation = value if isinstance(value, SyncOperation) else SyncOperation(str(value).upper())
    except ValueError:
        raise ValueError(f"Invalid operation: {value}") from None
    if operation not in SYNCABLE_OPERATIONS:
        raise ValueError(f"Invalid operation: {value}")
    return operation


def _dump(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    return json.dumps(payload, default=str)


@dataclass
class SyncResult:
    success: bool
    product_id: str
    retailer_id: str
    operation: SyncOperation | str
    meta_product_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "productId": self.product_id,
            "retailerId": self.retailer_id,
            "operation": getattr(self.operation, "value", str(self.operation)),
            "durationMs": self.duration_ms,
        }
        if self.meta_product_id:
            payload["metaProductId"] = self.meta_product_id
        if self.error:
            payload["error"] = self.error
        if self.error_code:
            payload["errorCode"] = self.error_code
        return payload


class CatalogSyncProcessor:
    """Runs product syncs against the Meta catalog and tracks their state."""

    def __init__(
        self,
        db_session: Session,
        client: Optional[MetaCatalogClient] = None,
        alert_sender: Optional[AlertingService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.client = client or get_meta_catalog_client()
        self.alerting = alert_sender or get_alerting_service()
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Single product sync
    # ------------------------------------------------------------------
    def sync_product(self, product_id: str, operation: SyncOperation | str = SyncOperation.UPDATE) -> SyncResult:
        started = time.perf_counter()
        try:
            operation = parse_operation(operation)
        except ValueError as exc:
            self.logger.warning("Rejected sync request", extra={"product_id": product_id, "error": str(exc)})
            return SyncResult(False, product_id, product_id, operation, error=str(exc), error_code=ERROR_VALIDATION,
                              duration_ms=self._elapsed(started))

        if not self.config.SYNC_ENABLED:
            self.logger.info("Sync disabled, skipping", extra={"product_id": product_id, "operation": operation.value})
            return SyncResult(True, product_id, product_id, operation, duration_ms=self._elapsed(started))

        config_valid, missing = self.client.validate_config()
        if not config_valid:
            error = f"Missing Meta API configuration: {', '.join(missing)}"
            self.logger.error(error)
            return self._fail(started, product_id, product_id, operation, error, ERROR_CONFIG)

        try:
            if operation == SyncOperation.DELETE:
                return self._handle_delete(product_id, started)

            product = self.db.get(Product, product_id)
            if product is None:
                return self._fail(started, product_id, product_id, operation,
                                  "Product not found in database", ERROR_NOT_FOUND)

            is_valid, errors = validate_for_meta(product)
            if not is_valid:
                return self._fail(started, product_id, product_id, operation,
                                  f"Validation failed: {', '.join(errors)}", ERROR_VALIDATION)

            meta_product = transform_to_meta_product(product, site_url=self.config.SITE_URL)
            retailer_id = meta_product["retailer_id"]
            response = self.client.upsert_product(meta_product)

            if not response.success:
                error = response.error_message or "Unknown Meta API error"
                error_code = str(response.error_code) if response.error_code is not None else ERROR_UNKNOWN
                record = self._update_sync_status(product_id, retailer_id, SyncStatus.FAILED, error=error)
                result = self._fail(
                    started, product_id, retailer_id, operation, error, error_code,
                    request_payload=meta_product, response_payload=response.to_dict(),
                )
                self._handle_sync_failure(record, operation, meta_product, error, error_code)
                self._alert_on_api_error(response.error_code, error, product_id, retailer_id)
                return result

            meta_product_id = (response.data or {}).get("id")
            self._update_sync_status(product_id, retailer_id, SyncStatus.SYNCED, meta_product_id=meta_product_id)
            result = SyncResult(True, product_id, retailer_id, operation,
                                meta_product_id=meta_product_id, duration_ms=self._elapsed(started))
            self.log_operation(product_id, retailer_id, operation, SyncLogStatus.SUCCESS,
                                request_payload=meta_product, response_payload=response.data,
                                duration_ms=result.duration_ms)
            self.logger.info("Product synced to Meta",
                             extra={"product_id": product_id, "meta_product_id": meta_product_id})
            return self._finish(result)
        except Exception as exc:
            self.db.rollback()
            self.logger.exception("Unexpected error syncing product", extra={"product_id": product_id})
            return self._fail(started, product_id, product_id, operation, str(exc) or "Unknown error",
                              ERROR_EXCEPTION)

    def _handle_delete(self, product_id: str, started: float) -> SyncResult:
        record = self._get_sync_record(product_id)
        retailer_id = record.retailer_id if record else product_id

        try:
            response = self.client.delete_product(retailer_id)
        except Exception as exc:
            self.logger.exception("Unexpected error deleting product", extra={"product_id": product_id})
            return self._fail(started, product_id, retailer_id, SyncOperation.DELETE, str(exc) or "Unknown error",
                              ERROR_EXCEPTION)

        if not response.success:
            error_code = str(response.error_code) if response.error_code is not None else None
            return self._fail(started, product_id, retailer_id, SyncOperation.DELETE,
                              response.error_message or "Failed to delete from Meta", error_code,
                              response_payload=response.to_dict())

        if record is not None:
            record.mark_deleted()
        self._resolve_dead_letters(product_id)
        self.db.commit()

        result = SyncResult(True, product_id, retailer_id, SyncOperation.DELETE, duration_ms=self._elapsed(started))
        self.log_operation(product_id, retailer_id, SyncOperation.DELETE, SyncLogStatus.SUCCESS,
                            duration_ms=result.duration_ms)
        self.logger.info("Product deleted from Meta", extra={"product_id": product_id})
        return self._finish(result)

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _finish(self, result: SyncResult) -> SyncResult:
        status = "success" if result.success else "failed"
        increment_counter("catalog_sync_total", labels={"operation": result.operation.value, "status": status})
        observe_latency("catalog_sync_latency_ms", result.duration_ms, labels={"operation": result.operation.value})
        return result

    def _fail(
        self,
        started: float,
        product_id: str,
        retailer_id: str,
        operation: SyncOperation,
        error: str,
        error_code: Optional[str],
        request_payload: Any = None,
        response_payload: Any = None,
    ) -> SyncResult:
        result = SyncResult(False, product_id, retailer_id, operation, error=error, error_code=error_code,
                            duration_ms=self._elapsed(started))
        self.log_operation(product_id, retailer_id, operation, SyncLogStatus.FAILED,
                            request_payload=request_payload, response_payload=response_payload,
                            error_message=error, error_code=error_code, duration_ms=result.duration_ms)
        self.logger.warning("Catalog sync failed",
                            extra={"product_id": product_id, "error": error, "error_code": error_code})
        return self._finish(result)

    def _resolve_dead_letters(self, product_id: str, resolved_by: str = AUTO_RESOLVED_BY) -> None:
        open_items = self.db.query(MetaSyncDeadLetter).filter_by(productID=product_id, resolved=False).all()
        for item in open_items:
            item.mark_resolved(resolved_by)
        if open_items:
            self.logger.info("Dead letter items resolved by a later sync",
                             extra={"product_id": product_id, "count": len(open_items)})

    def _get_sync_record(self, product_id: str) -> Optional[MetaCatalogSync]:
        return self.db.query(MetaCatalogSync).filter_by(productID=product_id).first()

    def _update_sync_status(
        self,
        product_id: str,
        retailer_id: str,
        status: SyncStatus,
        error: Optional[str] = None,
        meta_product_id: Optional[str] = None,
    ) -> MetaCatalogSync:
        record = self._get_sync_record(product_id)
        if record is None:
            record = MetaCatalogSync(productID=product_id, retailer_id=retailer_id, retry_count=0)
            self.db.add(record)

        if status == SyncStatus.SYNCED:
            record.mark_synced(meta_product_id)
            record.is_deleted = False
            self._resolve_dead_letters(product_id)
        elif status == SyncStatus.FAILED:
            record.mark_failed(error or "Unknown error")
        elif status == SyncStatus.PENDING:
            record.mark_pending()
        else:
            record.mark_deleted()

        self.db.commit()
        return record

    def log_operation(
        self,
        product_id: Optional[str],
        retailer_id: Optional[str],
        operation: SyncOperation,
        status: SyncLogStatus,
        request_payload: Any = None,
        response_payload: Any = None,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        try:
            self.db.add(MetaSyncLog(
                productID=product_id,
                retailer_id=retailer_id,
                operation=operation,
                status=status,
                request_payload=_dump(request_payload),
                response_payload=_dump(response_payload),
                error_message=error_message,
                error_code=error_code,
                duration_ms=duration_ms,
            ))
            self.db.commit()
        except SQLAlchemyError:
            # A lost audit row must not turn a sync outcome into an error
            self.db.rollback()
            self.logger.exception("Failed to write sync log", extra={"product_id": product_id})

    def _handle_sync_failure(
        self,
        record: MetaCatalogSync,
        operation: SyncOperation,
        payload: Any,
        error: str,
        error_code: str,
    ) -> None:
        if record.retry_count < self.config.SYNC_MAX_RETRIES:
            return

        dead_letter = (
            self.db.query(MetaSyncDeadLetter)
            .filter_by(productID=record.productID, resolved=False)
            .first()
        )
        if dead_letter is None:
            dead_letter = MetaSyncDeadLetter(
                productID=record.productID,
                max_retries=self.config.SYNC_MAX_RETRIES,
            )
            self.db.add(dead_letter)

        dead_letter.retailer_id = record.retailer_id
        dead_letter.operation = operation
        dead_letter.payload = _dump(payload)
        dead_letter.error_message = error
        dead_letter.error_code = error_code
        dead_letter.retry_count = record.retry_count
        dead_letter.last_attempt_at = record.updated_at
        self.db.commit()

        increment_counter("catalog_dead_letter_total")
        record_event("catalog_sync_dead_lettered", {
            "product_id": record.productID,
            "retry_count": record.retry_count,
            "error_code": error_code,
        })
        self.logger.warning(
            "Product moved to dead letter queue",
            extra={"product_id": record.productID, "retry_count": record.retry_count},
        )
        self.alerting.send_sync_alert(SyncAlert(
            type=ALERT_SYNC_FAILURE,
            product_id=record.productID,
            retailer_id=record.retailer_id,
            error=error,
            retry_count=record.retry_count,
        ))

    def _alert_on_api_error(self, code: Optional[int], error: str, product_id: str, retailer_id: str) -> None:
        if code in AUTH_ERROR_CODES:
            self.alerting.send_sync_alert(SyncAlert(type=ALERT_AUTH_ERROR, product_id=product_id,
                                                    retailer_id=retailer_id, error=error))
        elif code in RATE_LIMIT_ERROR_CODES:
            self.alerting.send_sync_alert(SyncAlert(type=ALERT_RATE_LIMIT, product_id=product_id,
                                                    retailer_id=retailer_id, error=error))

    def mark_pending(self, product_id: str) -> MetaCatalogSync:
        """Flag a product for the next sync pass after a local change."""
        return self._update_sync_status(product_id, product_id, SyncStatus.PENDING)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_sync_status(self, limit: int = 100) -> Dict[str, Any]:
        items = (
            self.db.query(MetaCatalogSync)
            .filter(MetaCatalogSync.is_deleted.is_(False))
            .order_by(desc(MetaCatalogSync.updated_at), desc(MetaCatalogSync.syncID))
            .limit(limit)
            .all()
        )
        rows = (
            self.db.query(MetaCatalogSync.sync_status, func.count(MetaCatalogSync.syncID))
            .filter(MetaCatalogSync.is_deleted.is_(False))
            .group_by(MetaCatalogSync.sync_status)
            .all()
        )
        counts = {SyncStatus(status).value: count for status, count in rows}
        return {
            "total": sum(counts.values()),
            "synced": counts.get(SyncStatus.SYNCED.value, 0),
            "failed": counts.get(SyncStatus.FAILED.value, 0),
            "pending": counts.get(SyncStatus.PENDING.value, 0),
            "items": items,
        }

    def get_dead_letter_items(self, limit: int = 50) -> List[MetaSyncDeadLetter]:
        return (
            self.db.query(MetaSyncDeadLetter)
            .filter(MetaSyncDeadLetter.resolved.is_(False))
            .order_by(desc(MetaSyncDeadLetter.created_at), desc(MetaSyncDeadLetter.deadLetterID))
            .limit(limit)
            .all()
        )

    def count_dead_letter_items(self) -> int:
        return (
            self.db.query(func.count(MetaSyncDeadLetter.deadLetterID))
            .filter(MetaSyncDeadLetter.resolved.is_(False))
            .scalar()
            or 0
        )

    def get_product_sync_logs(self, product_id: str, limit: int = 20) -> List[MetaSyncLog]:
        return (
            self.db.query(MetaSyncLog)
            .filter_by(productID=product_id)
            .order_by(desc(MetaSyncLog.created_at), desc(MetaSyncLog.logID))
            .limit(limit)
            .all()
        )

    def get_recent_sync_logs(self, limit: int = 20) -> List[MetaSyncLog]:
        return (
            self.db.query(MetaSyncLog)
            .order_by(desc(MetaSyncLog.created_at), desc(MetaSyncLog.logID))
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Dead letter and bulk operations
    # ------------------------------------------------------------------
    def retry_dead_letter_item(self, dead_letter_id: int, resolved_by: Optional[str] = None) -> Optional[SyncResult]:
        item = self.db.get(MetaSyncDeadLetter, dead_letter_id)
        if item is None:
            return None

        record = self._get_sync_record(item.productID)
        if record is not None:
            record.retry_count = 0
            record.sync_status = SyncStatus.PENDING
            self.db.commit()

        result = self.sync_product(item.productID, item.operation)

        if result.success:
            item.mark_resolved(resolved_by)
            self.db.commit()
            self.logger.info("Dead letter item resolved", extra={"dead_letter_id": dead_letter_id})
        else:
            item.last_attempt_at = record.updated_at if record is not None else item.last_attempt_at
            item.error_message = result.error
            item.error_code = result.error_code
            self.db.commit()
        return result

    def sync_all_products(self, batch_size: Optional[int] = None) -> Dict[str, Any]:
        """Push every product with UPDATE; used for initial loads and full refreshes."""
        batch_size = max(1, int(batch_size or self.config.SYNC_ALL_BATCH_SIZE))
        product_ids = [
            product_id
            for (product_id,) in self.db.query(Product.productID)
            .order_by(desc(Product.created_at))
            .all()
        ]
        results: Dict[str, Any] = {"total": len(product_ids), "success": 0, "failed": 0, "errors": []}

        for start in range(0, len(product_ids), batch_size):
            for product_id in product_ids[start:start + batch_size]:
                result = self.sync_product(product_id, SyncOperation.UPDATE)
                if result.success:
                    results["success"] += 1
                else:
                    results["failed"] += 1
                    results["errors"].append({"productId": product_id, "error": result.error or "Unknown error"})

        self.logger.info("Bulk catalog sync finished", extra={k: results[k] for k in ("total", "success", "failed")})
        return results

    def process_pending(self, limit: int = 50) -> Dict[str, int]:
        """Sync products flagged pending by local edits."""
        pending = (
            self.db.query(MetaCatalogSync.productID)
            .filter(MetaCatalogSync.sync_status == SyncStatus.PENDING, MetaCatalogSync.is_deleted.is_(False))
            .order_by(MetaCatalogSync.updated_at)
            .limit(limit)
            .all()
        )
        summary = {"processed": 0, "success": 0, "failed": 0}
        for (product_id,) in pending:
            result = self.sync_product(product_id, SyncOperation.UPDATE)
            summary["processed"] += 1
            summary["success" if result.success else "failed"] += 1
        return summary
