from .alerting_service import AlertingService, get_alerting_service
from .meta_catalog_client import MetaCatalogClient, get_meta_catalog_client
from .catalog_sync_processor import CatalogSyncProcessor, SyncResult
from .reconciliation_service import ReconciliationService
from .catalog_export_service import export_catalog_csv
from .auth_service import AuthService
from .catalog_service import CatalogService
from .cart_service import CartService
from .order_service import OrderService
from .payment_webhook_service import PaymentWebhookService
from .admin_service import AdminService

__all__ = [
    "AlertingService",
    "get_alerting_service",
    "MetaCatalogClient",
    "get_meta_catalog_client",
    # Catalog sync pipeline
    "CatalogSyncProcessor",
    "SyncResult",
    "ReconciliationService",
    "export_catalog_csv",
    # Storefront and back office
    "AuthService",
    "CatalogService",
    "CartService",
    "OrderService",
    "PaymentWebhookService",
    "AdminService",
]
