from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.config import Config
from storefront.errors import (
    OrderItemsPersistFailed,
    OrderNumberConflict,
    OrderPersistFailed,
)
from storefront.models import Order, OrderItem, OrderStatus, to_money
from storefront.observability import increment_counter, record_event
from storefront.services.cart_service import PricedLine
from storefront.services.coupon_service import CouponService

ADDRESS_FIELDS = ("name", "street", "city", "state", "zip", "country")


@dataclass(frozen=True)
class Address:
    name: str
    street: str
    city: str
    state: str
    zip: str
    country: str

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class OrderDraft:
    """Everything the writer needs; amounts are already validated and priced."""

    email: str
    shipping_address: Address
    billing_address: Address
    courier: str
    lines: Sequence[PricedLine]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    user_id: Optional[int] = None
    coupon_id: Optional[int] = None
    coupon_code: Optional[str] = None
    affiliate_id: Optional[str] = None
    payment_reference: Optional[str] = None


def generate_order_number(prefix: str = Config.ORDER_NUMBER_PREFIX, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now.strftime('%Y%m%d')}-{secrets.token_hex(4).upper()}"


class OrderService:
    """Order persistence, customer tracking lookups and admin status changes."""

    def __init__(
        self,
        db_session: Session,
        coupon_service: Optional[CouponService] = None,
        config: type[Config] = Config,
        number_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.coupon_service = coupon_service or CouponService(db_session, config=config)
        self.number_factory = number_factory or (
            lambda: generate_order_number(prefix=config.ORDER_NUMBER_PREFIX)
        )
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def write_order(self, draft: OrderDraft) -> Order:
        """
        Persist the order header, its items and the coupon claim in a single
        transaction. Nothing is visible unless all of it commits.
        """
        order = Order(
            order_number=self.number_factory(),
            userID=draft.user_id,
            email=draft.email,
            status=OrderStatus.PROCESSING,
            subtotal=to_money(draft.subtotal),
            discount_amount=to_money(draft.discount),
            total=to_money(draft.total),
            shipping_address=draft.shipping_address.to_dict(),
            billing_address=draft.billing_address.to_dict(),
            coupon_code=draft.coupon_code,
            affiliateID=draft.affiliate_id,
            courier=draft.courier,
            payment_reference=draft.payment_reference,
        )

        try:
            self.db.add(order)
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            if self._order_number_taken(order.order_number):
                increment_counter("order_persist_failures_total", labels={"stage": "number"})
                raise OrderNumberConflict(
                    "Order number already in use, please retry",
                    details={"order_number": order.order_number},
                )
            self.logger.error("Order creation error: %s", exc, extra={"email": draft.email})
            increment_counter("order_persist_failures_total", labels={"stage": "header"})
            raise OrderPersistFailed("Failed to create order")
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Order creation error: %s", exc, extra={"email": draft.email})
            increment_counter("order_persist_failures_total", labels={"stage": "header"})
            raise OrderPersistFailed("Failed to create order")

        try:
            for priced in draft.lines:
                self.db.add(
                    OrderItem(
                        orderID=order.orderID,
                        productID=priced.line.product_id,
                        quantity=priced.line.quantity,
                        price=priced.unit_price,
                        subtotal=priced.subtotal,
                        size=priced.line.size,
                        color=priced.line.color,
                    )
                )
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error(
                "Order items creation error: %s",
                exc,
                extra={"order_number": order.order_number},
            )
            increment_counter("order_persist_failures_total", labels={"stage": "items"})
            raise OrderItemsPersistFailed("Failed to create order items")

        if draft.coupon_id is not None:
            self._claim_coupon(draft.coupon_id, order.order_number)

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Order commit failed: %s", exc, extra={"order_number": order.order_number})
            increment_counter("order_persist_failures_total", labels={"stage": "commit"})
            raise OrderPersistFailed("Failed to create order")

        increment_counter("orders_created_total")
        record_event(
            "order_created",
            {
                "order_id": order.orderID,
                "order_number": order.order_number,
                "total": str(order.total),
                "items": len(draft.lines),
            },
        )
        self.logger.info(
            "Order %s created",
            order.order_number,
            extra={"order_id": order.orderID, "total": str(order.total)},
        )
        return order

    def _claim_coupon(self, coupon_id: int, order_number: str) -> None:
        # A failed claim must not take the order down with it
        try:
            with self.db.begin_nested():
                claimed = self.coupon_service.claim_usage(coupon_id)
        except SQLAlchemyError as exc:
            self.logger.error(
                "Coupon usage increment failed: %s",
                exc,
                extra={"coupon_id": coupon_id, "order_number": order_number},
            )
            increment_counter("coupon_claim_failures_total", labels={"reason": "error"})
            return

        if not claimed:
            # Order keeps the discount it was priced with
            increment_counter("coupon_claim_failures_total", labels={"reason": "limit_reached"})
            record_event("coupon_claim_missed", {"coupon_id": coupon_id, "order_number": order_number})

    def _order_number_taken(self, order_number: str) -> bool:
        try:
            return (
                self.db.query(Order.orderID).filter(Order.order_number == order_number).first()
                is not None
            )
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # Customer lookups
    # ------------------------------------------------------------------
    def find_for_tracking(self, order_number: Optional[str], email: Optional[str]) -> Optional[Order]:
        """
        Return the order only when both the number and the email match.

        This is the sole authorization for the tracking endpoint, so an
        absent or blank value never matches anything.
        """
        order_number = (order_number or "").strip()
        email = (email or "").strip().lower()
        if not order_number or not email:
            return None
        return (
            self.db.query(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .filter(Order.order_number == order_number, func.lower(Order.email) == email)
            .first()
        )

    def orders_for_user(self, user_id: int) -> List[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.userID == user_id)
            .order_by(Order.created_at.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def list_orders(self, status: Optional[str] = None) -> Tuple[bool, str, List[Order]]:
        query = self.db.query(Order).options(selectinload(Order.items))
        if status:
            try:
                query = query.filter(Order.status == OrderStatus(status))
            except ValueError:
                return False, f"Invalid status '{status}'", []
        return True, "OK", query.order_by(Order.created_at.desc()).all()

    def update_status(self, order_id: str, status: str) -> Tuple[bool, str, Optional[Order]]:
        try:
            new_status = OrderStatus(status)
        except ValueError:
            return False, "Invalid status", None

        order = self.db.query(Order).filter_by(orderID=order_id).first()
        if not order:
            return False, "Order not found", None

        old_status = order.status
        order.status = new_status
        order.updated_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error updating order %s: %s", order_id, exc)
            return False, "Failed to update order status", None

        increment_counter("order_status_transition_total", labels={"status": new_status.value})
        record_event(
            "order_status_changed",
            {
                "order_id": order.orderID,
                "order_number": order.order_number,
                "old_status": _enum_value(old_status),
                "new_status": new_status.value,
            },
        )
        return True, "Order status updated", order


def _enum_value(value):
    return value.value if hasattr(value, "value") else value
