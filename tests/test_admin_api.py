from __future__ import annotations

from decimal import Decimal

from conftest import login
from storefront.models import (
    Affiliate,
    AffiliateStatus,
    Coupon,
    Order,
    OrderStatus,
    Product,
    ProductVariant,
    VariantKind,
)


def _place_order(client, checkout_payload):
    return client.post("/api/checkout", json=checkout_payload()).get_json()["order_id"]


def test_admin_endpoints_require_admin_role(client, customer):
    assert client.patch("/api/admin/orders", json={}).status_code == 401

    login(client, customer.userID)
    for method, path in (
        ("patch", "/api/admin/orders"),
        ("get", "/api/admin/orders"),
        ("post", "/api/admin/coupons"),
        ("patch", "/api/admin/affiliates"),
        ("post", "/api/admin/products"),
        ("patch", "/api/admin/products"),
    ):
        response = getattr(client, method)(path, json={})
        assert response.status_code == 403, path
        assert response.get_json() == {"error": "Forbidden"}

    assert client.get("/admin/metrics").status_code == 403


def test_update_order_status(client, db_session, admin_user, products, checkout_payload):
    order_id = _place_order(client, checkout_payload)
    login(client, admin_user.userID)

    response = client.patch("/api/admin/orders", json={"order_id": order_id, "status": "shipped"})

    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "shipped"
    db_session.expire_all()
    assert db_session.get(Order, order_id).status == OrderStatus.SHIPPED


def test_update_order_status_errors(client, admin_user, products, checkout_payload):
    order_id = _place_order(client, checkout_payload)
    login(client, admin_user.userID)

    assert client.patch("/api/admin/orders", json={"order_id": order_id}).status_code == 400
    assert client.patch("/api/admin/orders", json={"order_id": order_id, "status": "teleported"}).status_code == 400
    missing = client.patch("/api/admin/orders", json={"order_id": "nope", "status": "shipped"})
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "Order not found"


def test_list_orders(client, admin_user, products, checkout_payload):
    _place_order(client, checkout_payload)
    login(client, admin_user.userID)

    assert len(client.get("/api/admin/orders").get_json()["orders"]) == 1
    assert client.get("/api/admin/orders?status=shipped").get_json()["orders"] == []
    assert client.get("/api/admin/orders?status=bogus").status_code == 400


def test_create_and_list_coupons(client, db_session, admin_user):
    login(client, admin_user.userID)

    response = client.post(
        "/api/admin/coupons",
        json={"code": "woof20", "discount_type": "percentage", "discount_value": 20, "max_discount": "15"},
    )
    assert response.status_code == 200
    coupon = response.get_json()["coupon"]
    assert coupon["code"] == "WOOF20"
    assert coupon["status"] == "active"
    assert coupon["used_count"] == 0
    assert coupon["max_discount"] == "15.00"

    duplicate = client.post(
        "/api/admin/coupons",
        json={"code": "WOOF20", "discount_type": "fixed", "discount_value": 5},
    )
    assert duplicate.status_code == 409

    invalid = client.post("/api/admin/coupons", json={"code": "BAD", "discount_type": "fixed"})
    assert invalid.status_code == 400

    listed = client.get("/api/admin/coupons").get_json()["coupons"]
    assert [entry["code"] for entry in listed] == ["WOOF20"]
    assert db_session.query(Coupon).count() == 1


def test_moderate_affiliate(client, db_session, admin_user, pending_affiliate):
    login(client, admin_user.userID)

    assert client.patch(
        "/api/admin/affiliates", json={"affiliate_id": pending_affiliate.affiliateID, "status": "pending"}
    ).status_code == 400
    assert client.patch(
        "/api/admin/affiliates", json={"affiliate_id": "missing", "status": "approved"}
    ).status_code == 404

    response = client.patch(
        "/api/admin/affiliates", json={"affiliate_id": pending_affiliate.affiliateID, "status": "approved"}
    )
    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.get(Affiliate, pending_affiliate.affiliateID).status == AffiliateStatus.APPROVED

    listed = client.get("/api/admin/affiliates?status=approved").get_json()["affiliates"]
    assert [entry["affiliate_code"] for entry in listed] == ["NEWPUP"]


def test_create_product_with_variants(client, db_session, admin_user):
    login(client, admin_user.userID)

    response = client.post(
        "/api/admin/products",
        json={
            "name": "Cozy Dog Bed",
            "price": "59.90",
            "stock": 12,
            "sizes": [{"name": "M", "stock": 5}, {"name": "XL", "stock": 2, "price": "69.90"}],
            "colors": ["Grey"],
        },
    )

    assert response.status_code == 200
    product = response.get_json()["product"]
    assert product["slug"] == "cozy-dog-bed"
    assert product["price"] == "59.90"
    assert [(v["kind"], v["name"], v["stock"]) for v in product["variants"]] == [
        ("size", "M", 5),
        ("size", "XL", 2),
        ("color", "Grey", 0),
    ]

    duplicate = client.post("/api/admin/products", json={"name": "Cozy Dog Bed", "price": 1, "stock": 1})
    assert duplicate.status_code == 409
    assert client.post("/api/admin/products", json={"name": "", "price": 1}).status_code == 400
    assert client.post(
        "/api/admin/products", json={"name": "Bowl", "price": 5, "sizes": [{"name": "S"}, {"name": "S"}]}
    ).status_code == 400
    assert db_session.query(Product).count() == 1


def test_admin_metrics_snapshot(client, admin_user, products, checkout_payload):
    _place_order(client, checkout_payload)
    login(client, admin_user.userID)

    snapshot = client.get("/admin/metrics").get_json()

    assert snapshot["counters"]["orders_created_total"][0]["value"] == 1
    assert "http_request_latency_ms" in snapshot["histograms"]


def test_update_product_restocks_and_reprices(client, db_session, admin_user, products):
    login(client, admin_user.userID)
    scarce = products["scarce"]

    response = client.patch(
        "/api/admin/products",
        json={"id": scarce.productID, "price": "39.99", "stock": 12, "name": "Cat Tower Deluxe"},
    )

    assert response.status_code == 200
    product = response.get_json()["product"]
    assert product["price"] == "39.99"
    assert product["stock"] == 12
    assert product["slug"] == "cat-tower-deluxe"

    db_session.expire_all()
    stored = db_session.get(Product, scarce.productID)
    assert (stored.name, stored.price, stored.stock) == ("Cat Tower Deluxe", Decimal("39.99"), 12)


def test_update_product_merges_variants_by_name(client, db_session, admin_user, products):
    login(client, admin_user.userID)
    harness = products["harness"]
    size_l = harness.find_variant(VariantKind.SIZE, "L")

    response = client.patch(
        "/api/admin/products",
        json={"product_id": harness.productID, "sizes": [{"name": "L", "stock": 9}, "XL"]},
    )

    assert response.status_code == 200
    variants = {(v["kind"], v["name"]): v for v in response.get_json()["product"]["variants"]}
    assert set(variants) == {("size", "L"), ("size", "XL"), ("color", "Red")}
    assert variants[("size", "L")]["id"] == size_l.variantID
    assert variants[("size", "L")]["stock"] == 9
    assert variants[("size", "L")]["price"] is None
    assert variants[("size", "XL")]["stock"] == 0
    assert variants[("color", "Red")]["stock"] == 6

    # A bare name keeps the stored stock of an existing variant
    response = client.patch("/api/admin/products", json={"id": harness.productID, "sizes": ["L"]})
    assert [(v["name"], v["stock"]) for v in response.get_json()["product"]["variants"] if v["kind"] == "size"] == [
        ("L", 9)
    ]
    db_session.expire_all()
    assert db_session.query(ProductVariant).filter_by(productID=harness.productID).count() == 2


def test_update_product_errors(client, db_session, admin_user, products):
    login(client, admin_user.userID)
    toy = products["toy"]

    assert client.patch("/api/admin/products", json={"price": "5"}).status_code == 400
    assert client.patch("/api/admin/products", json={"id": 99999, "price": "5"}).status_code == 404
    assert client.patch("/api/admin/products", json={"id": toy.productID, "slug": "cat-tower"}).status_code == 409
    for updates in ({"price": "NaN"}, {"price": "1e40"}, {"stock": -1}, {"name": ""}, {"sizes": "S"}):
        response = client.patch("/api/admin/products", json={"id": toy.productID, **updates})
        assert response.status_code == 400, updates

    db_session.expire_all()
    stored = db_session.get(Product, toy.productID)
    assert (stored.name, stored.slug, stored.price, stored.stock) == ("Chew Toy", "chew-toy", Decimal("10.00"), 20)


def test_create_product_rejects_unstorable_amounts(client, db_session, admin_user):
    login(client, admin_user.userID)

    for body in (
        {"name": "Bowl", "price": "NaN", "stock": 1},
        {"name": "Bowl", "price": "Infinity", "stock": 1},
        {"name": "Bowl", "price": "1e40", "stock": 1},
        {"name": "Bowl", "price": "5", "stock": 1, "sizes": [{"name": "S", "price": "NaN"}]},
    ):
        response = client.post("/api/admin/products", json=body)
        assert response.status_code == 400, body
    assert db_session.query(Product).count() == 0


def test_create_coupon_rejects_unstorable_amounts(client, db_session, admin_user):
    login(client, admin_user.userID)

    for field, value in (("discount_value", "NaN"), ("discount_value", "1e40"), ("min_purchase", "-Infinity")):
        body = {"code": "ODD", "discount_type": "fixed", "discount_value": 5, field: value}
        response = client.post("/api/admin/coupons", json=body)
        assert response.status_code == 400, body
    assert db_session.query(Coupon).count() == 0
