from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import g, jsonify

from storefront.models import (
    Affiliate,
    AffiliateSale,
    Coupon,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    User,
    to_money,
)


def current_user() -> Optional[User]:
    return getattr(g, "current_user", None)


def is_admin() -> bool:
    user = current_user()
    return bool(user and user.is_admin)


def forbidden_unless_admin():
    """Return a 401/403 JSON response for non-admins, None otherwise."""
    if current_user() is None:
        return jsonify({"error": "Not authenticated"}), 401
    if not is_admin():
        return jsonify({"error": "Forbidden"}), 403
    return None


def json_result(success: bool, message: str, key: str, obj: Any, serializer, failure_status: int = 400):
    body: Dict[str, Any] = {"success": success, "message": message}
    if not success:
        body["error"] = message
    if obj is not None:
        body[key] = serializer(obj)
    return jsonify(body), 200 if success else failure_status


# ---------------------------
# Serializers
# ---------------------------


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.orderID,
        "order_number": order.order_number,
        "email": order.email,
        "status": _enum_value(order.status),
        "subtotal": money(order.subtotal),
        "discount_amount": money(order.discount_amount),
        "total": money(order.total),
        "coupon_code": order.coupon_code,
        "affiliate_id": order.affiliateID,
        "courier": order.courier,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "created_at": serialize_dt(order.created_at),
        "updated_at": serialize_dt(order.updated_at),
        "items": [serialize_order_item(item) for item in order.items],
    }


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.orderItemID,
        "product_id": item.productID,
        "product_name": item.product.name if item.product else None,
        "quantity": item.quantity,
        "price": money(item.price),
        "subtotal": money(item.subtotal),
        "size": item.size,
        "color": item.color,
    }


def serialize_coupon(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.couponID,
        "code": coupon.code,
        "discount_type": _enum_value(coupon.discount_type),
        "discount_value": money(coupon.discount_value),
        "min_purchase": money(coupon.min_purchase) if coupon.min_purchase is not None else None,
        "max_discount": money(coupon.max_discount) if coupon.max_discount is not None else None,
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count,
        "valid_from": serialize_dt(coupon.valid_from),
        "valid_until": serialize_dt(coupon.valid_until),
        "status": _enum_value(coupon.status),
    }


def serialize_affiliate(affiliate: Affiliate, include_payout: bool = False) -> Dict[str, Any]:
    body = {
        "id": affiliate.affiliateID,
        "user_id": affiliate.userID,
        "affiliate_code": affiliate.affiliate_code,
        "status": _enum_value(affiliate.status),
        "country": affiliate.country,
        "traffic_source": affiliate.traffic_source,
        "traffic_source_other": affiliate.traffic_source_other,
        "payment_method": _enum_value(affiliate.payment_method),
        "total_clicks": affiliate.total_clicks,
        "total_sales": affiliate.total_sales,
        "total_earnings": money(affiliate.total_earnings),
        "created_at": serialize_dt(affiliate.created_at),
    }
    if include_payout:
        body.update(
            {
                "address": affiliate.address,
                "phone_number": affiliate.phone_number,
                "paypal_email": affiliate.paypal_email,
                "bank_name": affiliate.bank_name,
                "bank_account_holder_name": affiliate.bank_account_holder_name,
            }
        )
    return body


def serialize_affiliate_sale(sale: AffiliateSale) -> Dict[str, Any]:
    order = sale.order
    return {
        "id": sale.affiliateSaleID,
        "order_id": sale.orderID,
        "commission_rate": str(sale.commission_rate),
        "commission_amount": money(sale.commission_amount),
        "status": _enum_value(sale.status),
        "created_at": serialize_dt(sale.created_at),
        "order": {
            "order_number": order.order_number,
            "total": money(order.total),
            "status": _enum_value(order.status),
            "created_at": serialize_dt(order.created_at),
        } if order else None,
    }


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.productID,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "price": money(product.price),
        "stock": product.stock,
        "variants": [serialize_variant(variant) for variant in product.variants],
    }


def serialize_variant(variant: ProductVariant) -> Dict[str, Any]:
    return {
        "id": variant.variantID,
        "kind": _enum_value(variant.kind),
        "name": variant.name,
        "stock": variant.stock,
        "price": money(variant.price_override) if variant.price_override is not None else None,
    }


def money(value: Any) -> str:
    return str(to_money(value if value is not None else Decimal("0")))


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value
