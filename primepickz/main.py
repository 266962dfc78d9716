# primepickz/main.py
import json
import logging
import time

import click
from flask import Flask, request, jsonify, g
from sqlalchemy.exc import SQLAlchemyError

from primepickz.config import Config
from primepickz.database import close_db, init_db, session_scope
from primepickz.blueprints.storefront import storefront_bp
from primepickz.blueprints.account import account_bp
from primepickz.blueprints.payments import payments_bp
from primepickz.blueprints.admin import admin_bp
from primepickz.blueprints.catalog_sync import catalog_sync_bp
from primepickz.blueprints.cron import cron_bp
from primepickz.blueprints.guards import require_admin
from primepickz.observability import (
    configure_logging,
    increment_counter,
    observe_latency,
    get_metrics_snapshot,
    check_database_health,
    check_catalog_sync_health,
)
from primepickz.observability.logging_config import ensure_request_id
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor
from primepickz.services.reconciliation_service import ReconciliationService

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(storefront_bp)
app.register_blueprint(account_bp)
app.register_blueprint(payments_bp)
app.register_blueprint(admin_bp)
app.register_blueprint(catalog_sync_bp)
app.register_blueprint(cron_bp)

logger = logging.getLogger(__name__)


# Initialize database tables
def init_database():
    """Initialize database tables"""
    try:
        init_db()
        logger.info("Database tables initialized successfully")
    except SQLAlchemyError:
        logger.exception("Error initializing database")


# Initialize database on startup
init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    response.headers.setdefault(Config.REQUEST_ID_HEADER, getattr(g, "request_id", ""))
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status,
            "catalogSync": check_catalog_sync_health(),
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
@require_admin
def admin_metrics():
    return jsonify(get_metrics_snapshot())


# ---------------------------------------------
# Scheduled jobs (flask --app primepickz.main <command>)
# ---------------------------------------------
@app.cli.command("reconcile-catalog")
def reconcile_catalog_command():
    """Run the nightly catalog reconciliation once."""
    with session_scope() as db:
        results = ReconciliationService(db).run()
    click.echo(json.dumps(results, indent=2, default=str))
    if not results.get("success"):
        raise SystemExit(1)


@app.cli.command("sync-catalog")
@click.option("--batch-size", default=Config.SYNC_ALL_BATCH_SIZE, show_default=True, type=int)
def sync_catalog_command(batch_size):
    """Push every product to the Meta catalog."""
    with session_scope() as db:
        results = CatalogSyncProcessor(db).sync_all_products(batch_size=batch_size)
    click.echo(json.dumps(results, indent=2, default=str))
