import pytest

from primepickz.config import Config
from primepickz.database import get_db
from primepickz.blueprints import catalog_sync as catalog_sync_blueprint
from primepickz.blueprints import cron as cron_blueprint
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor
from primepickz.services.meta_catalog_client import MetaApiResponse
from primepickz.services.reconciliation_service import ReconciliationService

ADDRESS = {"fullName": "Sam", "addressLine1": "1 Main", "city": "Austin", "state": "TX", "pincode": "73301"}


@pytest.fixture
def stubbed_sync(monkeypatch, stub_client, stub_alerts):
    def _processor():
        return CatalogSyncProcessor(get_db(), client=stub_client, alert_sender=stub_alerts)

    def _reconciliation():
        return ReconciliationService(get_db(), client=stub_client, alert_sender=stub_alerts)

    monkeypatch.setattr(catalog_sync_blueprint, "_get_sync_processor", _processor)
    monkeypatch.setattr(cron_blueprint, "_get_sync_processor", _processor)
    monkeypatch.setattr(cron_blueprint, "_get_reconciliation_service", _reconciliation)
    return stub_client


def _user_headers(client, email="shopper@example.com"):
    client.post("/api/auth/register", json={"email": email, "password": "password123"})
    token = client.post("/api/auth/login", json={"email": email, "password": "password123"}).get_json()["token"]
    return {"Authorization": f"Bearer {token}"}


def test_health_endpoint(client, db_session):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["components"]["database"]["status"] == "UP"
    assert body["components"]["catalogSync"]["status"] == "MISCONFIGURED"
    assert response.headers.get(Config.REQUEST_ID_HEADER)


def test_admin_metrics_requires_admin(client, db_session, admin_headers):
    assert client.get("/admin/metrics").status_code == 401
    response = client.get("/admin/metrics", headers=admin_headers)
    assert response.status_code == 200
    assert "counters" in response.get_json()


# ---------------------------
# Storefront
# ---------------------------


def test_product_endpoints(client, db_session, make_product):
    product = make_product(category="audio")

    listing = client.get("/api/products?category=audio").get_json()
    assert [item["id"] for item in listing] == [product.productID]
    assert listing[0]["price"] == 49.99

    assert client.get(f"/api/products/{product.productID}").get_json()["name"] == product.name
    assert client.get("/api/products/missing").status_code == 404


def test_cart_endpoints(client, db_session, make_product):
    product = make_product()

    created = client.post("/api/cart", json={"sessionId": "s1", "productId": product.productID, "quantity": 2})
    assert created.status_code == 201
    item_id = created.get_json()["id"]

    assert client.patch(f"/api/cart/{item_id}", json={"quantity": 0}).status_code == 400
    assert client.patch("/api/cart/99999", json={"quantity": 2}).status_code == 404
    assert client.patch(f"/api/cart/{item_id}", json={"quantity": 5}).get_json()["quantity"] == 5

    cart = client.get("/api/cart?sessionId=s1").get_json()
    assert cart[0]["product"]["id"] == product.productID

    assert client.delete(f"/api/cart/{item_id}").status_code == 200
    assert client.delete(f"/api/cart/{item_id}").status_code == 404


def test_review_endpoints(client, db_session, make_product):
    product = make_product()
    payload = {"productId": product.productID, "rating": 5, "comment": "<i>Great</i>", "customerName": "Ana"}

    response = client.post("/api/reviews", json=payload)
    assert response.status_code == 201
    assert response.get_json()["comment"] == "Great"
    assert client.post("/api/reviews", json=dict(payload, rating=0)).status_code == 400
    assert len(client.get(f"/api/reviews?productId={product.productID}").get_json()) == 1


# ---------------------------
# Account
# ---------------------------


def test_register_login_and_me(client, db_session):
    assert client.post("/api/auth/register", json={"email": "x@example.com", "password": "short"}).status_code == 400
    headers = _user_headers(client, "x@example.com")
    assert client.post("/api/auth/register", json={"email": "x@example.com", "password": "password123"}).status_code == 409

    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=headers).get_json()["user"]["email"] == "x@example.com"
    assert client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"}).status_code == 401


def test_wishlist_and_orders_flow(client, db_session, make_product):
    headers = _user_headers(client)
    product = make_product()

    assert client.post("/api/wishlist", json={"productId": product.productID}, headers=headers).status_code == 200
    assert client.get(f"/api/wishlist/{product.productID}", headers=headers).get_json() == {"inWishlist": True}
    assert len(client.get("/api/wishlist", headers=headers).get_json()["items"]) == 1

    address = client.post("/api/addresses", json=ADDRESS, headers=headers)
    assert address.status_code == 201
    address_id = address.get_json()["address"]["id"]

    order = client.post(
        "/api/orders",
        json={"shippingAddressId": address_id, "items": [{"productId": product.productID, "quantity": 2}]},
        headers=headers,
    )
    assert order.status_code == 201
    order_id = order.get_json()["order"]["id"]
    assert order.get_json()["order"]["totalAmount"] == 99.98

    assert client.get(f"/api/orders/{order_id}", headers=headers).status_code == 200
    other = _user_headers(client, "someone@example.com")
    assert client.get(f"/api/orders/{order_id}", headers=other).status_code == 404
    assert client.put(f"/api/addresses/{address_id}", json={"city": "X"}, headers=other).status_code == 404

    assert client.get("/api/orders").status_code == 400
    lookup = client.get("/api/orders?email=SHOPPER@example.com").get_json()["orders"]
    assert lookup[0]["items"][0]["quantity"] == 2


def test_guest_checkout(client, db_session, make_product):
    product = make_product()
    response = client.post("/api/payment/checkout", json={
        "items": [{"productId": product.productID, "quantity": 1}],
        "customerEmail": "guest@example.com",
        "shippingAddress": ADDRESS,
        "sessionId": "guest-1",
    })
    assert response.status_code == 201
    assert response.get_json()["orderNumber"].startswith("PP-")
    assert client.post("/api/payment/checkout", json={"items": []}).status_code == 400


def test_webhook_requires_signature(client, db_session):
    assert client.post("/api/payment/webhook", data=b"{}").status_code == 400


# ---------------------------
# Admin
# ---------------------------


def test_admin_login_and_product_crud(client, db_session):
    assert client.post("/api/admin/login", json={"username": "admin", "password": "wrong"}).status_code == 401
    token = client.post("/api/admin/login", json={"username": "admin", "password": "admin-pass"}).get_json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert client.post("/api/admin/products", json={"name": "x"}, headers=headers).status_code == 400
    created = client.post("/api/admin/products", headers=headers, json={
        "name": "Desk",
        "description": "Oak desk",
        "price": 120,
        "category": "office",
        "imageUrl": "https://cdn.example.com/desk.jpg",
    })
    assert created.status_code == 201
    product_id = created.get_json()["id"]

    assert client.put(f"/api/admin/products/{product_id}", json={"price": 99}, headers=headers).get_json()["price"] == 99
    stats = client.get("/api/admin/stats", headers=headers).get_json()
    assert stats["totalProducts"] == 1
    assert stats["pendingSyncs"] == 1

    assert client.delete(f"/api/admin/products/{product_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/admin/products/{product_id}", headers=headers).status_code == 404


def test_admin_routes_reject_customer_tokens(client, db_session):
    headers = _user_headers(client)
    response = client.get("/api/admin/stats", headers=headers)
    assert response.status_code == 401
    assert response.get_json()["error"] == "Unauthorized: admin access required"


# ---------------------------
# Catalog sync
# ---------------------------


def test_catalog_sync_requires_admin_token(client, db_session):
    assert client.get("/api/catalog-sync/status").get_json()["error"] == "Unauthorized: missing token"
    bad = client.get("/api/catalog-sync/status", headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401
    assert bad.get_json()["error"] == "Unauthorized: invalid or expired token"


def test_catalog_sync_endpoints(client, db_session, admin_headers, stubbed_sync, make_product):
    product = make_product()

    assert client.post("/api/catalog-sync/sync", json={}, headers=admin_headers).status_code == 400
    assert client.post("/api/catalog-sync/sync", json={"productId": product.productID, "operation": "MERGE"},
                       headers=admin_headers).status_code == 400

    synced = client.post("/api/catalog-sync/sync", json={"productId": product.productID}, headers=admin_headers)
    assert synced.status_code == 200
    assert synced.get_json()["metaProductId"] == "meta-1"

    status = client.get("/api/catalog-sync/status", headers=admin_headers).get_json()
    assert status["synced"] == 1
    assert status["items"][0]["productId"] == product.productID

    logs = client.get(f"/api/catalog-sync/logs?productId={product.productID}", headers=admin_headers).get_json()
    assert logs["logs"][0]["status"] == "SUCCESS"

    stubbed_sync.upsert_response = MetaApiResponse(success=False, error={"message": "bad", "code": 100})
    failed = client.post("/api/catalog-sync/sync", json={"productId": product.productID}, headers=admin_headers)
    assert failed.status_code == 500
    assert failed.get_json()["errorCode"] == "100"

    all_result = client.post("/api/catalog-sync/sync-all", json={"batchSize": 10}, headers=admin_headers)
    assert all_result.get_json()["failed"] == 1

    assert client.get("/api/catalog-sync/dead-letter", headers=admin_headers).get_json() == {"items": [], "total": 0}
    assert client.post("/api/catalog-sync/retry", json={}, headers=admin_headers).status_code == 400
    assert client.post("/api/catalog-sync/retry", json={"id": 12345}, headers=admin_headers).status_code == 404


def test_catalog_verify_and_export(client, db_session, admin_headers, stubbed_sync, make_product):
    make_product()
    verified = client.get("/api/catalog-sync/verify", headers=admin_headers)
    assert verified.get_json() == {"connected": True, "catalog": {"id": "cat-1", "name": "Main"}}

    stubbed_sync.configured = False
    missing = client.get("/api/catalog-sync/verify", headers=admin_headers)
    assert missing.status_code == 400
    assert missing.get_json()["connected"] is False

    export = client.get("/api/catalog-sync/export-csv", headers=admin_headers)
    assert export.status_code == 200
    assert export.mimetype == "text/csv"
    assert "attachment; filename=\"primepickz-catalog-" in export.headers["Content-Disposition"]
    assert export.get_data(as_text=True).startswith("retailer_id,name,description")


# ---------------------------
# Cron
# ---------------------------


def test_cron_reconciliation_checks_secret(client, db_session, monkeypatch, stubbed_sync):
    monkeypatch.setattr(Config, "CRON_SECRET", "s3cret")

    assert client.post("/api/cron/reconciliation").status_code == 401
    response = client.get("/api/cron/reconciliation", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.get_json()["success"] is True


def test_cron_reconciliation_reports_listing_failure(client, db_session, stubbed_sync):
    stubbed_sync.list_response = MetaApiResponse(success=False, error={"message": "down", "code": 2})
    response = client.post("/api/cron/reconciliation")
    assert response.status_code == 500
    assert response.get_json()["error"] == "Failed to fetch Meta catalog"


def test_checkout_clears_cart_and_confirms_by_number(client, db_session, make_product):
    product = make_product()
    client.post("/api/cart", json={"sessionId": "guest-2", "productId": product.productID})

    placed = client.post("/api/payment/checkout", json={
        "items": [{"productId": product.productID, "quantity": 1}],
        "customerEmail": "guest@example.com",
        "shippingAddress": ADDRESS,
        "sessionId": "guest-2",
    }).get_json()

    assert client.get("/api/cart?sessionId=guest-2").get_json() == []
    confirmation = client.get(f"/api/payment/orders/{placed['orderNumber']}")
    assert confirmation.get_json()["order"]["id"] == placed["orderId"]
    assert client.get("/api/payment/orders/PP-0-NOPE").status_code == 404


def test_my_orders_lists_only_own_orders(client, db_session, make_product):
    headers = _user_headers(client)
    product = make_product()
    address_id = client.post("/api/addresses", json=ADDRESS, headers=headers).get_json()["address"]["id"]
    client.post("/api/orders", json={"shippingAddressId": address_id, "items": [{"productId": product.productID}]},
                headers=headers)

    assert len(client.get("/api/orders/mine", headers=headers).get_json()["orders"]) == 1
    other = _user_headers(client, "someone@example.com")
    assert client.get("/api/orders/mine", headers=other).get_json()["orders"] == []


def test_admin_creates_categories_and_deals(client, db_session, admin_headers, make_product):
    product = make_product()

    category = client.post("/api/admin/categories", headers=admin_headers,
                           json={"name": "Smart Home", "imageUrl": "https://cdn.example.com/home.jpg"})
    assert category.status_code == 201
    assert category.get_json()["slug"] == "smart-home"

    assert client.post("/api/admin/deals", json={"productId": product.productID}, headers=admin_headers).status_code == 400
    deal = client.post("/api/admin/deals", headers=admin_headers, json={
        "productId": product.productID,
        "title": "Weekend deal",
        "endsAt": "2030-01-01T00:00:00Z",
    })
    assert deal.status_code == 201
    assert [d["title"] for d in client.get("/api/deals").get_json()] == ["Weekend deal"]


def test_cron_process_pending_drains_queue(client, db_session, stubbed_sync, make_product):
    product = make_product()
    CatalogSyncProcessor(db_session, client=stubbed_sync).mark_pending(product.productID)

    response = client.post("/api/cron/process-pending")

    assert response.get_json() == {"processed": 1, "success": 1, "failed": 0}
    assert stubbed_sync.upserts


def test_malformed_order_payloads_are_rejected(client, db_session, make_product):
    product = make_product()
    checkout = {"items": ["abc"], "customerEmail": "guest@example.com", "shippingAddress": ADDRESS}

    response = client.post("/api/payment/checkout", json=checkout)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid item"

    bad_address = dict(checkout, items=[{"productId": product.productID}], shippingAddress="1 Main St")
    assert client.post("/api/payment/checkout", json=bad_address).status_code == 400

    headers = _user_headers(client)
    address_id = client.post("/api/addresses", json=ADDRESS, headers=headers).get_json()["address"]["id"]
    order = client.post("/api/orders", json={"shippingAddressId": address_id, "items": [7]}, headers=headers)
    assert order.status_code == 400


def test_address_used_by_order_can_be_deleted(client, db_session, make_product):
    headers = _user_headers(client)
    product = make_product()
    address_id = client.post("/api/addresses", json=ADDRESS, headers=headers).get_json()["address"]["id"]
    order_id = client.post(
        "/api/orders",
        json={"shippingAddressId": address_id, "items": [{"productId": product.productID}]},
        headers=headers,
    ).get_json()["order"]["id"]

    assert client.delete(f"/api/addresses/{address_id}", headers=headers).status_code == 200
    order = client.get(f"/api/orders/{order_id}", headers=headers).get_json()["order"]
    assert order["shippingAddress"] is None


def test_admin_product_list_filters(client, db_session, admin_headers, make_product):
    desk = make_product(name="Desk", category="office")
    make_product(name="Speaker", category="audio")

    listing = client.get("/api/admin/products?category=office&search=desk", headers=admin_headers)
    assert [item["id"] for item in listing.get_json()] == [desk.productID]
    assert len(client.get("/api/admin/products?syncStatus=pending", headers=admin_headers).get_json()) == 2
    assert client.get("/api/admin/products?syncStatus=bogus", headers=admin_headers).status_code == 400
