"""
Email alerts for the catalog sync pipeline, delivered through Resend.

Alerting never raises into the sync path: an unconfigured sender or a
delivery error is logged and reported as ``False``.
"""
from __future__ import annotations

import html
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import resend

from primepickz.config import Config
from primepickz.observability import increment_counter

ALERT_SYNC_FAILURE = "sync_failure"
ALERT_AUTH_ERROR = "auth_error"
ALERT_RECONCILIATION_MISMATCH = "reconciliation_mismatch"
ALERT_RATE_LIMIT = "rate_limit"

ALERT_TYPES = frozenset({ALERT_SYNC_FAILURE, ALERT_AUTH_ERROR, ALERT_RECONCILIATION_MISMATCH, ALERT_RATE_LIMIT})


@dataclass
class SyncAlert:
    type: str
    product_id: Optional[str] = None
    retailer_id: Optional[str] = None
    error: Optional[str] = None
    retry_count: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in ALERT_TYPES:
            raise ValueError(f"Unknown alert type: {self.type}")


@dataclass
class DailySyncSummary:
    total_products: int
    synced_today: int
    failed_today: int
    dead_letter_count: int
    reconciliation_results: Optional[Dict[str, int]] = None


def _esc(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def alert_subject(alert: SyncAlert) -> str:
    subjects = {
        ALERT_SYNC_FAILURE: f"[PrimePickz] Catalog Sync Failed - Product {alert.product_id}",
        ALERT_AUTH_ERROR: "[PrimePickz] Meta API Authentication Error",
        ALERT_RECONCILIATION_MISMATCH: "[PrimePickz] Catalog Reconciliation Mismatch Detected",
        ALERT_RATE_LIMIT: "[PrimePickz] Meta API Rate Limit Warning",
    }
    return subjects.get(alert.type, "[PrimePickz] Catalog Sync Alert")


def alert_html(alert: SyncAlert) -> str:
    if alert.type == ALERT_SYNC_FAILURE:
        body = (
            "<h2>Product Sync Failed</h2>"
            f"<p><strong>Product ID:</strong> {_esc(alert.product_id)}</p>"
            f"<p><strong>Retailer ID:</strong> {_esc(alert.retailer_id)}</p>"
            f"<p><strong>Retry Count:</strong> {_esc(alert.retry_count)} "
            "(max reached, added to Dead Letter Queue)</p>"
            f"<p><strong>Error:</strong></p><pre>{_esc(alert.error)}</pre>"
        )
    elif alert.type == ALERT_AUTH_ERROR:
        body = (
            "<h2>Meta API Authentication Error</h2>"
            "<p>The Meta Graph API access token may be expired or invalid.</p>"
            f"<p><strong>Error:</strong></p><pre>{_esc(alert.error)}</pre>"
            "<p>Generate a new system user token in Business Settings and update META_ACCESS_TOKEN.</p>"
        )
    elif alert.type == ALERT_RECONCILIATION_MISMATCH:
        body = (
            "<h2>Catalog Reconciliation Mismatch</h2>"
            "<p>The nightly reconciliation detected significant differences with the Meta catalog.</p>"
            f"<p><strong>Missing in Meta:</strong> {_esc(alert.details.get('missingInMeta', 0))} products</p>"
            f"<p><strong>Orphaned in Meta:</strong> {_esc(alert.details.get('orphanedInMeta', 0))} products</p>"
            f"<p><strong>Stale in Meta:</strong> {_esc(alert.details.get('staleInMeta', 0))} products</p>"
        )
    else:
        body = (
            "<h2>Meta API Rate Limit Warning</h2>"
            "<p>The Meta Graph API rate limit is being approached. Sync operations may be delayed.</p>"
            f"<pre>{_esc(alert.error or alert.details)}</pre>"
        )
    timestamp = datetime.now(timezone.utc).isoformat()
    return f"<html><body>{body}<p>Timestamp: {timestamp}<br>PrimePickz Catalog Sync</p></body></html>"


def summary_html(summary: DailySyncSummary) -> str:
    rows = [
        ("Total Products", summary.total_products),
        ("Synced Today", summary.synced_today),
        ("Failed Today", summary.failed_today),
        ("In Dead Letter Queue", summary.dead_letter_count),
    ]
    stats = "".join(f"<li>{label}: {_esc(value)}</li>" for label, value in rows)
    reconciliation = ""
    if summary.reconciliation_results:
        results = summary.reconciliation_results
        reconciliation = (
            "<h3>Reconciliation Results</h3><ul>"
            f"<li>Missing in Meta: {_esc(results.get('missingInMeta', 0))}</li>"
            f"<li>Orphaned in Meta: {_esc(results.get('orphanedInMeta', 0))}</li>"
            f"<li>Fixed automatically: {_esc(results.get('fixed', 0))}</li></ul>"
        )
    return (
        "<html><body><h2>Daily Catalog Sync Summary</h2>"
        f"<ul>{stats}</ul>{reconciliation}"
        f"<p>Generated: {datetime.now(timezone.utc).isoformat()}</p></body></html>"
    )


class AlertingService:
    def __init__(self, config: type[Config] = Config) -> None:
        self.config = config
        self.logger = logging.getLogger(__name__)

    @property
    def is_configured(self) -> bool:
        return bool(self.config.RESEND_API_KEY)

    def _send(self, subject: str, body_html: str, kind: str) -> bool:
        if not self.is_configured:
            self.logger.info("Resend not configured, skipping email", extra={"alert_type": kind})
            return False

        resend.api_key = self.config.RESEND_API_KEY
        try:
            resend.Emails.send({
                "from": self.config.FROM_EMAIL,
                "to": [self.config.ALERT_EMAIL],
                "subject": subject,
                "html": body_html,
            })
        except Exception as exc:
            self.logger.error("Failed to send alert email", extra={"alert_type": kind, "error": str(exc)})
            increment_counter("alerts_failed_total", labels={"type": kind})
            return False

        increment_counter("alerts_sent_total", labels={"type": kind})
        self.logger.info("Alert email sent", extra={"alert_type": kind})
        return True

    def send_sync_alert(self, alert: SyncAlert) -> bool:
        return self._send(alert_subject(alert), alert_html(alert), alert.type)

    def send_daily_sync_summary(self, summary: DailySyncSummary) -> bool:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self._send(
            f"[PrimePickz] Daily Catalog Sync Summary - {today}",
            summary_html(summary),
            "daily_summary",
        )


_alerting_service: Optional[AlertingService] = None
_alerting_lock = threading.Lock()


def get_alerting_service() -> AlertingService:
    global _alerting_service
    if _alerting_service is None:
        with _alerting_lock:
            if _alerting_service is None:
                _alerting_service = AlertingService()
    return _alerting_service
