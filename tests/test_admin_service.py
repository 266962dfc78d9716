from decimal import Decimal

import pytest

from primepickz.models import AuditLog, CartItem, MetaCatalogSync, Product, SyncStatus
from primepickz.services.admin_service import AdminService
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor
from primepickz.services.meta_catalog_client import MetaApiResponse

PRODUCT = {
    "name": "Standing Desk",
    "description": "Electric height adjustable desk",
    "price": "299.99",
    "category": "office",
    "imageUrl": "https://cdn.example.com/desk.jpg",
    "stockCount": 4,
}


@pytest.fixture
def admin(db_session, stub_client, stub_alerts):
    processor = CatalogSyncProcessor(db_session, client=stub_client, alert_sender=stub_alerts)
    return AdminService(db_session, sync_processor=processor)


def test_create_product_requires_fields(admin):
    assert admin.create_product({"name": "x"}) == (False, "Missing required fields", None)


def test_create_product_marks_pending_and_audits(db_session, admin):
    success, _, product = admin.create_product(PRODUCT)

    assert success is True
    assert product.price == Decimal("299.99")
    assert product.stock_count == 4
    record = db_session.query(MetaCatalogSync).filter_by(productID=product.productID).one()
    assert record.sync_status == SyncStatus.PENDING
    assert db_session.query(AuditLog).filter_by(action="create_product").count() == 1


def test_update_product_is_partial(db_session, admin):
    _, _, product = admin.create_product(PRODUCT)

    success, _, updated = admin.update_product(product.productID, {"price": "249.00"})

    assert success is True
    assert updated.price == Decimal("249.00")
    assert updated.name == "Standing Desk"
    assert admin.update_product("missing", {"price": "1"})[1] == "Product not found"
    assert admin.update_product(product.productID, {"price": "cheap"})[1] == "Invalid value for price"


def test_delete_product_enqueues_catalog_delete(db_session, admin, stub_client):
    _, _, product = admin.create_product(PRODUCT)
    stub_client.delete_response = MetaApiResponse(success=False, error={"message": "Not found", "code": 100})

    success, _, sync_result = admin.delete_product(product.productID)

    assert success is True
    assert db_session.get(Product, product.productID) is None
    assert stub_client.deletes == [product.productID]
    assert sync_result.success is False
    assert admin.delete_product(product.productID)[1] == "Product not found"


def test_clear_products_removes_carts(db_session, admin, make_product):
    product = make_product()
    db_session.add(CartItem(productID=product.productID, quantity=1, session_id="s"))
    db_session.commit()

    assert admin.clear_products() == 1
    assert db_session.query(CartItem).count() == 0
    assert db_session.query(Product).count() == 0


def test_stats(db_session, admin, stub_client, make_product):
    synced = make_product(name="A")
    admin.sync_processor.sync_product(synced.productID)
    admin.create_product(PRODUCT)

    stats = admin.get_stats()

    assert stats["totalProducts"] == 2
    assert stats["totalOrders"] == 0
    assert stats["totalRevenue"] == 0
    assert stats["pendingSyncs"] == 1
    assert stats["failedSyncs"] == 0
    assert stats["deadLetterCount"] == 0
    assert len(stats["recentSyncLogs"]) == 1


def test_list_products_filters(db_session, admin, stub_client, make_product):
    lamp = make_product(name="Desk Lamp", category="office")
    chair = make_product(name="Chair", description="Ergonomic office chair", category="office")
    buds = make_product(name="Earbuds", category="audio")
    admin.sync_processor.sync_product(lamp.productID)
    stub_client.upsert_response = MetaApiResponse(
        success=False, error={"message": "Invalid parameter", "code": 100, "type": "OAuthException"}
    )
    admin.sync_processor.sync_product(chair.productID)

    assert {p.productID for p in admin.list_products(category="office")} == {lamp.productID, chair.productID}
    assert [p.productID for p in admin.list_products(search="ergonomic")] == [chair.productID]
    assert [p.productID for p in admin.list_products(sync_status="synced")] == [lamp.productID]
    assert [p.productID for p in admin.list_products(sync_status="FAILED")] == [chair.productID]
    assert [p.productID for p in admin.list_products(sync_status="pending")] == [buds.productID]
    assert len(admin.list_products()) == 3

    with pytest.raises(ValueError):
        admin.list_products(sync_status="stuck")
