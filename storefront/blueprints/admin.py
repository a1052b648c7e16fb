from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.config import Config
from storefront.database import get_db
from storefront.blueprints.common import (
    forbidden_unless_admin,
    json_result,
    serialize_affiliate,
    serialize_coupon,
    serialize_order,
    serialize_product,
)
from storefront.services.affiliate_service import AffiliateService
from storefront.services.catalog_service import CatalogService
from storefront.services.coupon_service import CouponService
from storefront.services.order_service import OrderService

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.before_request
def _require_admin():
    return forbidden_unless_admin()


# ---------------------------
# Orders
# ---------------------------


@admin_bp.route("/orders", methods=["GET"])
def list_orders():
    success, message, orders = OrderService(get_db()).list_orders(request.args.get("status"))
    if not success:
        return jsonify({"error": message}), 400
    return jsonify({"orders": [serialize_order(order) for order in orders]})


@admin_bp.route("/orders", methods=["PATCH"])
def update_order_status():
    payload = request.get_json(silent=True) or {}
    order_id = payload.get("order_id")
    status = payload.get("status")
    if not order_id or not status:
        return jsonify({"error": "order_id and status are required"}), 400

    success, message, order = OrderService(get_db()).update_status(str(order_id), str(status))
    failure_status = 404 if message == "Order not found" else 400
    if not success and message.startswith("Failed"):
        failure_status = 500
    return json_result(success, message, "order", order, serialize_order, failure_status)


# ---------------------------
# Coupons
# ---------------------------


@admin_bp.route("/coupons", methods=["GET"])
def list_coupons():
    coupons = CouponService(get_db(), config=Config).list_coupons()
    return jsonify({"coupons": [serialize_coupon(coupon) for coupon in coupons]})


@admin_bp.route("/coupons", methods=["POST"])
def create_coupon():
    payload = request.get_json(silent=True) or {}
    success, message, coupon = CouponService(get_db(), config=Config).create_coupon(payload)
    failure_status = 409 if message.endswith("already exists") else 400
    return json_result(success, message, "coupon", coupon, serialize_coupon, failure_status)


# ---------------------------
# Affiliates
# ---------------------------


@admin_bp.route("/affiliates", methods=["GET"])
def list_affiliates():
    affiliates = AffiliateService(get_db(), config=Config).list_affiliates(request.args.get("status"))
    return jsonify(
        {"affiliates": [serialize_affiliate(affiliate, include_payout=True) for affiliate in affiliates]}
    )


@admin_bp.route("/affiliates", methods=["PATCH"])
def moderate_affiliate():
    payload = request.get_json(silent=True) or {}
    affiliate_id = payload.get("affiliate_id")
    status = payload.get("status")
    if not affiliate_id or not status:
        return jsonify({"error": "affiliate_id and status are required"}), 400

    success, message, affiliate = AffiliateService(get_db(), config=Config).set_status(
        str(affiliate_id), str(status)
    )
    failure_status = 404 if message == "Affiliate not found" else 400
    return json_result(success, message, "affiliate", affiliate, serialize_affiliate, failure_status)


# ---------------------------
# Products
# ---------------------------


@admin_bp.route("/products", methods=["POST"])
def create_product():
    payload = request.get_json(silent=True) or {}
    success, message, product = CatalogService(get_db()).create_product(payload)
    failure_status = 409 if message.endswith("already exists") else 400
    return json_result(success, message, "product", product, serialize_product, failure_status)


@admin_bp.route("/products", methods=["PATCH"])
def update_product():
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("id", payload.get("product_id"))
    updates = {key: value for key, value in payload.items() if key not in ("id", "product_id")}
    success, message, product = CatalogService(get_db()).update_product(product_id, updates)
    failure_status = 404 if message == "Product not found" else 400
    if message.endswith("already exists"):
        failure_status = 409
    elif message.startswith("Failed"):
        failure_status = 500
    return json_result(success, message, "product", product, serialize_product, failure_status)
