import pytest

from primepickz.config import Config
from primepickz.services import alerting_service
from primepickz.services.alerting_service import (
    AlertingService,
    DailySyncSummary,
    SyncAlert,
    alert_html,
    alert_subject,
)


class _ConfiguredConfig(Config):
    RESEND_API_KEY = "re_test"
    ALERT_EMAIL = "ops@example.com"
    FROM_EMAIL = "Sync <noreply@example.com>"


class _UnconfiguredConfig(Config):
    RESEND_API_KEY = ""


@pytest.fixture
def sent(monkeypatch):
    calls = []
    monkeypatch.setattr(alerting_service.resend.Emails, "send", lambda params: calls.append(params) or {"id": "x"})
    return calls


def test_unknown_alert_type_is_rejected():
    with pytest.raises(ValueError):
        SyncAlert(type="disk_full")


def test_subjects_per_type():
    assert alert_subject(SyncAlert(type="sync_failure", product_id="p1")).endswith("Product p1")
    assert "Authentication" in alert_subject(SyncAlert(type="auth_error"))
    assert "Reconciliation" in alert_subject(SyncAlert(type="reconciliation_mismatch"))
    assert "Rate Limit" in alert_subject(SyncAlert(type="rate_limit"))


def test_alert_body_escapes_error_text():
    body = alert_html(SyncAlert(type="sync_failure", product_id="p1", error="<script>x</script>", retry_count=5))
    assert "<script>" not in body
    assert "&lt;script&gt;" in body


def test_not_configured_skips_sending(sent):
    service = AlertingService(config=_UnconfiguredConfig)
    assert service.send_sync_alert(SyncAlert(type="auth_error", error="expired")) is False
    assert sent == []


def test_sync_alert_is_sent_through_resend(sent):
    service = AlertingService(config=_ConfiguredConfig)

    assert service.send_sync_alert(SyncAlert(type="sync_failure", product_id="p1", error="bad", retry_count=5)) is True

    assert sent[0]["to"] == ["ops@example.com"]
    assert sent[0]["from"] == "Sync <noreply@example.com>"
    assert "p1" in sent[0]["subject"]


def test_send_errors_return_false(monkeypatch):
    def _fail(params):
        raise RuntimeError("resend down")

    monkeypatch.setattr(alerting_service.resend.Emails, "send", _fail)
    service = AlertingService(config=_ConfiguredConfig)

    assert service.send_daily_sync_summary(DailySyncSummary(10, 8, 2, 1)) is False


def test_daily_summary_includes_counts(sent):
    service = AlertingService(config=_ConfiguredConfig)
    summary = DailySyncSummary(
        total_products=10,
        synced_today=8,
        failed_today=2,
        dead_letter_count=1,
        reconciliation_results={"missingInMeta": 3, "orphanedInMeta": 1, "fixed": 4},
    )

    assert service.send_daily_sync_summary(summary) is True
    assert "Daily Catalog Sync Summary" in sent[0]["subject"]
    assert "In Dead Letter Queue: 1" in sent[0]["html"]
    assert "Fixed automatically: 4" in sent[0]["html"]
