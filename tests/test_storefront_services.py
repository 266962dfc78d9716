from datetime import datetime, timedelta, timezone
from decimal import Decimal

from primepickz.models import Deal, Product
from primepickz.services.cart_service import CartService
from primepickz.services.catalog_service import CatalogService, clean_text


def test_clean_text_strips_markup():
    assert clean_text("<b>Great</b> <script>x</script>lamp") == "Great xlamp"
    assert clean_text(None) is None


def test_list_products_filters_by_category_and_search(db_session, make_product):
    make_product(name="Desk Lamp", category="home")
    make_product(name="Phone Case", category="electronics", description="Slim case")
    service = CatalogService(db_session)

    assert [p.name for p in service.list_products(category="home")] == ["Desk Lamp"]
    assert [p.name for p in service.list_products(search="slim")] == ["Phone Case"]
    assert len(service.list_products()) == 2


def test_create_category_derives_unique_slug(db_session):
    service = CatalogService(db_session)

    success, _, category = service.create_category("Home & Garden", "https://cdn.example.com/home.jpg")
    assert success is True
    assert category.slug == "home-garden"

    success, message, _ = service.create_category("Home Garden", "https://cdn.example.com/x.jpg")
    assert success is False
    assert "already exists" in message


def test_list_deals_only_active_with_product(db_session, make_product):
    product = make_product()
    ends = datetime.now(timezone.utc) + timedelta(days=1)
    db_session.add_all([
        Deal(productID=product.productID, title="Flash", ends_at=ends, is_active=True),
        Deal(productID=product.productID, title="Old", ends_at=ends, is_active=False),
    ])
    db_session.commit()

    deals = CatalogService(db_session).list_deals()

    assert [deal.title for deal in deals] == ["Flash"]


def test_create_review_updates_product_rating(db_session, make_product):
    product = make_product()
    service = CatalogService(db_session)
    base = {"productId": product.productID, "comment": "Nice", "customerName": "Sam"}

    assert service.create_review(dict(base, rating=5))[0] is True
    assert service.create_review(dict(base, rating=4))[0] is True
    assert service.create_review(dict(base, rating=4))[0] is True

    db_session.refresh(product)
    assert product.review_count == 3
    assert product.rating == Decimal("4.3")
    assert len(service.list_reviews(product.productID)) == 3


def test_create_review_validation(db_session, make_product):
    product = make_product()
    service = CatalogService(db_session)
    base = {"productId": product.productID, "comment": "Nice", "customerName": "Sam"}

    assert service.create_review(dict(base, rating=6))[1] == "Rating must be between 1 and 5"
    assert service.create_review(dict(base, rating=4.5))[1] == "Rating must be between 1 and 5"
    assert service.create_review({"productId": product.productID, "rating": 4})[1] == "Missing required fields"
    assert service.create_review(dict(base, productId="missing", rating=4))[1] == "Product not found"


def test_cart_merges_quantities_and_skips_deleted_products(db_session, make_product):
    service = CartService(db_session)
    keep = make_product(name="Keep")
    drop = make_product(name="Drop")

    service.add_to_cart("s1", keep.productID, 1)
    success, _, item = service.add_to_cart("s1", keep.productID, 2)
    service.add_to_cart("s1", drop.productID, 1)
    assert success is True
    assert item.quantity == 3

    db_session.delete(db_session.get(Product, drop.productID))
    db_session.commit()

    cart = service.get_cart("s1")
    assert [entry.productID for entry in cart] == [keep.productID]


def test_cart_defaults_session_and_validates(db_session, make_product):
    service = CartService(db_session)
    product = make_product()

    service.add_to_cart(None, product.productID)
    assert len(service.get_cart()) == 1
    assert service.add_to_cart("s1", product.productID, 0)[0] is False
    assert service.add_to_cart("s1", "missing")[1] == "Product not found"


def test_update_and_remove_cart_item(db_session, make_product):
    service = CartService(db_session)
    _, _, item = service.add_to_cart("s1", make_product().productID)

    assert service.update_quantity(item.cartItemID, 0)[1] == "Invalid quantity"
    assert service.update_quantity(99999, 2)[1] == "Cart item not found"
    assert service.update_quantity(item.cartItemID, 4)[2].quantity == 4
    assert service.remove_item(item.cartItemID) == (True, "Item removed")
    assert service.remove_item(item.cartItemID)[0] is False


def test_wishlist_is_idempotent(db_session, make_product):
    from primepickz.services.auth_service import AuthService

    _, _, user = AuthService(db_session).register("w@example.com", "password123")
    product = make_product()
    service = CartService(db_session)

    _, _, first = service.add_to_wishlist(user.userID, product.productID)
    _, message, second = service.add_to_wishlist(user.userID, product.productID)

    assert message == "Already in wishlist"
    assert first.wishlistItemID == second.wishlistItemID
    assert service.is_in_wishlist(user.userID, product.productID) is True
    assert service.remove_from_wishlist(user.userID, product.productID) is True
    assert service.remove_from_wishlist(user.userID, product.productID) is False
