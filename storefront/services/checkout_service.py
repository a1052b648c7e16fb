from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import (
    CheckoutError,
    CheckoutValidationError,
    EmptyCart,
    IncompleteAddress,
    MissingField,
)
from storefront.models import AffiliateSale, Order
from storefront.observability import increment_counter, observe_latency, record_event
from storefront.services.cart_service import CartLine, CartValidator
from storefront.services.commission_service import CommissionService
from storefront.services.coupon_service import CouponApplication, CouponService
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import ADDRESS_FIELDS, Address, OrderDraft, OrderService
from storefront.services.payment_service import PaymentVerifier


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_address(payload: Any, label: str) -> Address:
    if not isinstance(payload, dict):
        raise IncompleteAddress(
            f"{label.replace('_', ' ').capitalize()} is required",
            details={"address": label, "missing": list(ADDRESS_FIELDS)},
        )
    missing = [field for field in ADDRESS_FIELDS if not _text(payload.get(field))]
    if missing:
        raise IncompleteAddress(
            f"{label.replace('_', ' ').capitalize()} is missing: {', '.join(missing)}",
            details={"address": label, "missing": missing},
        )
    return Address(**{field: _text(payload.get(field)) for field in ADDRESS_FIELDS})


@dataclass(frozen=True)
class CheckoutRequest:
    lines: List[CartLine]
    email: str
    shipping_address: Address
    billing_address: Address
    courier: str
    coupon_code: Optional[str] = None
    affiliate_id: Optional[str] = None
    payment_reference: Optional[str] = None

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        fallback_affiliate_id: Optional[str] = None,
    ) -> "CheckoutRequest":
        if not isinstance(payload, dict):
            raise CheckoutValidationError("Request body must be a JSON object")
        items = payload.get("items")
        if not isinstance(items, list) or not items:
            raise EmptyCart("Cart is empty")
        lines = [CartLine.from_payload(item) for item in items]

        email = _text(payload.get("email"))
        if not email:
            raise MissingField("Email is required", details={"field": "email"})

        shipping = parse_address(payload.get("shipping_address"), "shipping_address")
        billing = parse_address(payload.get("billing_address"), "billing_address")

        courier = _text(payload.get("courier"))
        if not courier:
            raise MissingField("Courier is required", details={"field": "courier"})

        return cls(
            lines=lines,
            email=email,
            shipping_address=shipping,
            billing_address=billing,
            courier=courier,
            coupon_code=_text(payload.get("coupon_code")) or None,
            affiliate_id=_text(payload.get("affiliate_id")) or _text(fallback_affiliate_id) or None,
            payment_reference=_text(payload.get("paypal_order_id")) or None,
        )


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    coupon: CouponApplication
    payment_verified: bool
    affiliate_sale: Optional[AffiliateSale] = None

    @property
    def order_id(self) -> str:
        return self.order.orderID

    @property
    def order_number(self) -> str:
        return self.order.order_number


class CheckoutService:
    """
    Orchestrates a checkout from cart validation to commission.

    Stages up to and including the order write raise ``CheckoutError``
    subclasses and leave nothing behind. Stock adjustment and commission run
    after the order is committed and only ever log their failures.
    """

    def __init__(
        self,
        db_session: Session,
        payment_verifier: Optional[PaymentVerifier] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.cart_validator = CartValidator(db_session)
        self.coupon_service = CouponService(db_session, config=config)
        self.payment_verifier = payment_verifier or PaymentVerifier(config=config)
        self.order_service = OrderService(db_session, coupon_service=self.coupon_service, config=config)
        self.inventory_service = InventoryService(db_session)
        self.commission_service = CommissionService(db_session, config=config)

    def place_order(self, checkout: CheckoutRequest, user_id: Optional[int] = None) -> CheckoutResult:
        started = time.perf_counter()
        increment_counter("checkouts_submitted_total")
        try:
            result = self._place_order(checkout, user_id)
        except CheckoutError as exc:
            increment_counter("checkout_failures_total", labels={"code": exc.code})
            self.logger.warning(
                "Checkout rejected: %s",
                exc.message,
                extra={"code": exc.code, "details": exc.details},
            )
            raise
        finally:
            observe_latency("checkout_latency_ms", (time.perf_counter() - started) * 1000)
        return result

    def _place_order(self, checkout: CheckoutRequest, user_id: Optional[int]) -> CheckoutResult:
        validation = self.cart_validator.validate(checkout.lines)
        coupon = self.coupon_service.apply(checkout.coupon_code, validation.subtotal)
        payment_verified = self.payment_verifier.verify(checkout.payment_reference, coupon.total)
        affiliate_id = self.commission_service.resolve_affiliate(checkout.affiliate_id)

        order = self.order_service.write_order(
            OrderDraft(
                email=checkout.email,
                shipping_address=checkout.shipping_address,
                billing_address=checkout.billing_address,
                courier=checkout.courier,
                lines=validation.lines,
                subtotal=validation.subtotal,
                discount=coupon.discount,
                total=coupon.total,
                user_id=user_id,
                coupon_id=coupon.coupon_id,
                coupon_code=coupon.code if coupon.applied else None,
                affiliate_id=affiliate_id,
                payment_reference=checkout.payment_reference,
            )
        )
        # Snapshot before the best-effort stages commit and expire the instance
        order_id, order_total = order.orderID, Decimal(order.total)

        self.inventory_service.adjust_for_order(order_id, checkout.lines)

        sale = None
        if affiliate_id:
            sale = self.commission_service.record_commission(affiliate_id, order_id, order_total)

        record_event(
            "checkout_completed",
            {
                "order_id": order_id,
                "order_number": order.order_number,
                "coupon_applied": coupon.applied,
                "payment_verified": payment_verified,
                "affiliate_attributed": affiliate_id is not None,
            },
        )
        return CheckoutResult(
            order=order,
            coupon=coupon,
            payment_verified=payment_verified,
            affiliate_sale=sale,
        )
