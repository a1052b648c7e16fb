from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.config import Config
from storefront.database import get_db
from storefront.blueprints.common import (
    current_user,
    serialize_affiliate,
    serialize_affiliate_sale,
)
from storefront.services.affiliate_service import AffiliateService

affiliate_bp = Blueprint("affiliate", __name__, url_prefix="/api/affiliate")


def _get_affiliate_service() -> AffiliateService:
    return AffiliateService(get_db(), config=Config)


@affiliate_bp.route("", methods=["POST"])
def signup():
    user = current_user()
    if user is None:
        return jsonify({"error": "Not authenticated"}), 401

    payload = request.get_json(silent=True) or {}
    success, message, affiliate = _get_affiliate_service().signup(user.userID, payload)
    if not success:
        status = 500 if message.startswith("Failed") else 400
        return jsonify({"error": message}), status
    return jsonify({"affiliate": serialize_affiliate(affiliate, include_payout=True)}), 201


@affiliate_bp.route("/stats", methods=["GET"])
def stats():
    user = current_user()
    if user is None:
        return jsonify({"error": "Not authenticated"}), 401

    success, message, data = _get_affiliate_service().stats(user.userID)
    if not success:
        return jsonify({"error": message}), 404
    return jsonify(
        {
            "affiliate": serialize_affiliate(data["affiliate"], include_payout=True),
            "sales": [serialize_affiliate_sale(sale) for sale in data["sales"]],
        }
    )


@affiliate_bp.route("/click", methods=["POST"])
def track_click():
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("product_id")
    try:
        product_id = int(product_id) if product_id not in (None, "") else None
    except (TypeError, ValueError):
        product_id = None

    success, message, affiliate = _get_affiliate_service().track_click(
        payload.get("affiliate_code"),
        product_id=product_id,
        referrer_url=request.referrer,
        user_agent=request.user_agent.string if request.user_agent else None,
    )
    if not success:
        status = 404 if message == "Affiliate not found" else 400
        return jsonify({"error": message}), status

    response = jsonify({"success": True, "affiliate_id": affiliate.affiliateID})
    response.set_cookie(
        Config.AFFILIATE_COOKIE_NAME,
        affiliate.affiliateID,
        max_age=Config.AFFILIATE_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="Lax",
    )
    return response
