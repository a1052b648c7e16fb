from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from storefront.config import Config
from storefront.database import get_db
from storefront.errors import CheckoutError
from storefront.models import parse_money
from storefront.observability import increment_counter
from storefront.blueprints.common import current_user, money, serialize_order
from storefront.services.checkout_service import CheckoutRequest, CheckoutService
from storefront.services.coupon_service import CouponService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentVerifier

checkout_bp = Blueprint("checkout", __name__)
logger = logging.getLogger(__name__)


def _get_payment_verifier() -> PaymentVerifier:
    return PaymentVerifier(config=Config)


def _get_checkout_service() -> CheckoutService:
    return CheckoutService(get_db(), payment_verifier=_get_payment_verifier(), config=Config)


@checkout_bp.route("/api/checkout", methods=["POST"])
def api_checkout():
    payload = request.get_json(silent=True) or {}
    user = current_user()

    try:
        checkout = CheckoutRequest.from_payload(
            payload,
            fallback_affiliate_id=request.cookies.get(Config.AFFILIATE_COOKIE_NAME),
        )
    except CheckoutError as exc:
        increment_counter("checkout_failures_total", labels={"code": exc.code})
        return jsonify(exc.to_dict()), exc.http_status

    try:
        result = _get_checkout_service().place_order(
            checkout,
            user_id=user.userID if user else None,
        )
    except CheckoutError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    except Exception:
        get_db().rollback()
        logger.exception("Unexpected checkout failure")
        increment_counter("checkout_failures_total", labels={"code": "INTERNAL_ERROR"})
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500

    return jsonify(
        {
            "success": True,
            "order_id": result.order_id,
            "order_number": result.order_number,
            "order": serialize_order(result.order),
        }
    )


@checkout_bp.route("/api/track", methods=["GET"])
def api_track_order():
    order = OrderService(get_db()).find_for_tracking(
        request.args.get("order_number"),
        request.args.get("email"),
    )
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": serialize_order(order)})


@checkout_bp.route("/api/orders", methods=["GET"])
def api_my_orders():
    user = current_user()
    if user is None:
        return jsonify({"error": "Not authenticated"}), 401
    orders = OrderService(get_db()).orders_for_user(user.userID)
    return jsonify({"orders": [serialize_order(order) for order in orders]})


@checkout_bp.route("/api/coupons/validate", methods=["POST"])
def api_validate_coupon():
    payload = request.get_json(silent=True) or {}
    code = payload.get("code")
    if not code:
        return jsonify({"error": "Coupon code is required"}), 400
    try:
        subtotal = parse_money(payload.get("subtotal"))
    except ValueError:
        return jsonify({"error": "subtotal must be numeric"}), 400
    if subtotal < 0:
        return jsonify({"error": "subtotal must be a non-negative amount"}), 400

    application = CouponService(get_db(), config=Config).apply(code, subtotal)
    return jsonify(
        {
            "valid": application.applied,
            "code": application.code,
            "reason": application.reason,
            "subtotal": money(application.subtotal),
            "discount": money(application.discount),
            "total": money(application.total),
        }
    )
