from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from storefront.config import Config
from storefront.errors import PaymentError
from storefront.models import parse_money
from storefront.services.payment_service import PayPalClient

paypal_bp = Blueprint("paypal", __name__, url_prefix="/api/paypal")
logger = logging.getLogger(__name__)


def _get_paypal_client() -> PayPalClient:
    return PayPalClient(Config)


@paypal_bp.route("/create-order", methods=["POST"])
def create_order():
    payload = request.get_json(silent=True) or {}
    try:
        amount = parse_money(payload.get("amount"))
    except ValueError:
        return jsonify({"error": "Invalid amount"}), 400
    if amount <= 0:
        return jsonify({"error": "Invalid amount"}), 400

    try:
        paypal_order = _get_paypal_client().create_order(amount)
    except PaymentError as exc:
        logger.error("PayPal create order failed: %s", exc.message)
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"id": paypal_order.get("id")})


@paypal_bp.route("/capture-order", methods=["POST"])
def capture_order():
    payload = request.get_json(silent=True) or {}
    paypal_order_id = payload.get("orderID") or payload.get("order_id")
    if not paypal_order_id:
        return jsonify({"error": "Order ID is required"}), 400

    try:
        capture = _get_paypal_client().capture_order(str(paypal_order_id))
    except PaymentError as exc:
        logger.error("PayPal capture failed: %s", exc.message)
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify(capture)
