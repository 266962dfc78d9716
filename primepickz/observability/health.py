from __future__ import annotations

from typing import Dict, Any

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from primepickz.config import Config
from primepickz.database import engine


def check_database_health() -> Dict[str, str]:
    """Attempt a lightweight DB query to ensure connectivity."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except OperationalError as exc:
        return {"status": "DOWN", "detail": str(exc)}


def check_catalog_sync_health(config: type[Config] = Config) -> Dict[str, Any]:
    """Report whether the catalog sync pipeline can run. No network calls."""
    missing = [
        name
        for name, value in (
            ("META_ACCESS_TOKEN", config.META_ACCESS_TOKEN),
            ("META_CATALOG_ID", config.META_CATALOG_ID),
            ("META_BUSINESS_ID", config.META_BUSINESS_ID),
        )
        if not value
    ]
    if not config.SYNC_ENABLED:
        return {"status": "DISABLED"}
    if missing:
        return {"status": "MISCONFIGURED", "missing": missing}
    return {"status": "UP"}
